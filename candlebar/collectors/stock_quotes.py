"""Stock quote collector — one batched yfinance download per poll.

Price is the last daily close; change% is measured against the previous
close, or against the session open when Yahoo only returns one bar.
"""

from __future__ import annotations

import asyncio
import math
from functools import wraps
from typing import Any, Callable, TypeVar

import pandas as pd
import yfinance as yf

from candlebar.config import settings
from candlebar.models.dashboard import Stock
from candlebar.utils.errors import TransportFailure
from candlebar.utils.logger import logger

# ---------------------------------------------------------------------------
# Retry decorator: exponential backoff on Yahoo rate-limits
# ---------------------------------------------------------------------------
F = TypeVar("F", bound=Callable[..., Any])


def _retry_on_rate_limit(max_retries: int = 2, base_delay: float = 1.0):
    """Retry an async method when Yahoo Finance returns a rate-limit error."""

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except TransportFailure:
                    raise
                except Exception as exc:
                    err_str = str(exc).lower()
                    is_rate_limit = "429" in err_str or "too many requests" in err_str
                    if is_rate_limit and attempt < max_retries:
                        delay = base_delay * (2 ** attempt)
                        logger.warning(
                            "[Quotes] Rate-limited (attempt %d/%d), retrying in %.1fs",
                            attempt + 1, max_retries, delay,
                        )
                        await asyncio.sleep(delay)
                        continue
                    raise TransportFailure(
                        f"Stock quote request failed: {exc}", cause=exc,
                    ) from exc
            raise TransportFailure("Stock quote request failed")  # pragma: no cover

        return wrapper  # type: ignore[return-value]

    return decorator


class StockQuoteCollector:
    """Fetches the latest quote for a batch of symbols."""

    def __init__(self, period: str | None = None) -> None:
        self.period = period or settings.STOCK_HISTORY_PERIOD

    @_retry_on_rate_limit()
    async def fetch_quotes(self, symbols: list[str]) -> list[Stock]:
        """Return quotes in the order of ``symbols``.

        Symbols Yahoo has no bars for are left out. Raises TransportFailure
        when the request fails or not a single quote came back.
        """
        if not symbols:
            return []

        loop = asyncio.get_running_loop()
        frame = await loop.run_in_executor(None, self._download, list(symbols))

        if frame is None or frame.empty:
            raise TransportFailure(
                "Failed to fetch any stock data", context={"symbols": symbols},
            )

        stocks: list[Stock] = []
        for symbol in symbols:
            bars = self._bars_for(frame, symbol, single=len(symbols) == 1)
            stock = self._quote_from_bars(symbol, bars)
            if stock is None:
                logger.debug("[Quotes] No bars for %s", symbol)
                continue
            stocks.append(stock)

        if not stocks:
            raise TransportFailure(
                "Failed to fetch any stock data", context={"symbols": symbols},
            )
        logger.debug("[Quotes] Fetched %d/%d quotes", len(stocks), len(symbols))
        return stocks

    def _download(self, symbols: list[str]) -> pd.DataFrame:
        return yf.download(
            tickers=symbols,
            period=self.period,
            interval="1d",
            group_by="ticker",
            auto_adjust=False,
            progress=False,
            threads=True,
        )

    @staticmethod
    def _bars_for(frame: pd.DataFrame, symbol: str, single: bool) -> pd.DataFrame | None:
        """Slice one symbol's OHLC columns out of a (possibly multi-level) frame."""
        if isinstance(frame.columns, pd.MultiIndex):
            if symbol not in frame.columns.get_level_values(0):
                return None
            bars = frame[symbol]
        elif single:
            bars = frame
        else:
            return None
        if "Close" not in bars.columns:
            return None
        return bars

    @staticmethod
    def _quote_from_bars(symbol: str, bars: pd.DataFrame | None) -> Stock | None:
        if bars is None:
            return None
        closes = bars["Close"].dropna()
        if closes.empty:
            return None

        price = float(closes.iloc[-1])
        if len(closes) >= 2:
            reference = float(closes.iloc[-2])
        elif "Open" in bars.columns and not bars["Open"].dropna().empty:
            reference = float(bars["Open"].dropna().iloc[-1])
        else:
            reference = 0.0

        change_percent = 0.0
        if reference and not math.isnan(reference):
            change_percent = (price - reference) / reference * 100
        return Stock(symbol=symbol, price=price, change_percent=change_percent)
