"""Source Fetcher — one poll cycle over every configured source.

Stocks go out as one batched request; every custom source gets its own
request. All of them run concurrently and the cycle only finishes when
every fetch has settled. A failing custom source turns into an error
value for that source alone; a failing stock batch is reported as
``stocks=None`` so the caller keeps the quotes it already has.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from candlebar.collectors.json_api import fetch_json
from candlebar.collectors.stock_quotes import StockQuoteCollector
from candlebar.models.dashboard import (
    ERROR_MARKER,
    CustomDataSource,
    CustomDataValue,
    Stock,
)
from candlebar.services.extractor import ExtractionFailure, extract, resolve
from candlebar.utils.errors import TransportFailure
from candlebar.utils.logger import logger

JsonFetcher = Callable[[str], Awaitable[Any]]


@dataclass
class CycleResult:
    """Everything one poll cycle produced."""

    stocks: list[Stock] | None = None  # None = stock batch failed, keep old
    custom_values: dict[str, CustomDataValue] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    elapsed_s: float = 0.0

    @property
    def stock_batch_failed(self) -> bool:
        return self.stocks is None


def compute_change_percent(current: Any, previous: Any) -> float | None:
    """(current - previous) / previous * 100, or None when undefined."""
    if not _is_number(current) or not _is_number(previous):
        return None
    if previous == 0:
        return None
    return (current - previous) / previous * 100


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def error_value(message: str) -> CustomDataValue:
    return CustomDataValue(value=ERROR_MARKER, decimals=0, error=message)


class SourceFetcher:
    """Fetches stocks and custom sources for one cycle."""

    def __init__(
        self,
        quote_collector: StockQuoteCollector | None = None,
        json_fetcher: JsonFetcher | None = None,
    ) -> None:
        self.quotes = quote_collector or StockQuoteCollector()
        self._fetch_json = json_fetcher or fetch_json

    # ── Stocks ────────────────────────────────────────────────────

    async def fetch_stocks(self, symbols: list[str]) -> list[Stock]:
        """Batched quote request. Raises TransportFailure on failure."""
        return await self.quotes.fetch_quotes(symbols)

    # ── Custom sources ────────────────────────────────────────────

    async def fetch_custom(self, source: CustomDataSource) -> CustomDataValue:
        """Poll one custom source. Never raises."""
        try:
            document = await self._fetch_json(source.url)
        except TransportFailure as exc:
            logger.warning("[Fetcher] %s: %s", source.name, exc.message)
            return error_value(exc.message)
        except Exception as exc:
            logger.warning("[Fetcher] %s: unexpected error %s", source.name, exc)
            return error_value(str(exc) or exc.__class__.__name__)

        value = extract(document, source.path)
        if isinstance(value, ExtractionFailure):
            logger.warning("[Fetcher] %s: %s", source.name, value)
            return error_value(str(value))

        change_percent = None
        if source.previous_path:
            previous = extract(document, source.previous_path)
            if not isinstance(previous, ExtractionFailure):
                change_percent = compute_change_percent(value, previous)

        return CustomDataValue(
            value=value,
            decimals=source.decimals,
            change_percent=change_percent,
        )

    async def test_source(self, url: str, path: str) -> Any:
        """Fetch + extract once without touching the store.

        Raises TransportFailure or ExtractionError so the caller can show why.
        """
        document = await self._fetch_json(url)
        return resolve(document, path)

    # ── Whole cycle ───────────────────────────────────────────────

    async def fetch_all(
        self,
        symbols: list[str],
        sources: list[CustomDataSource],
    ) -> CycleResult:
        """Fetch every source concurrently and wait for all of them."""
        t0 = time.perf_counter()
        result = CycleResult()

        async def _stocks() -> None:
            if not symbols:
                result.stocks = []
                return
            try:
                result.stocks = await self.fetch_stocks(symbols)
            except TransportFailure as exc:
                logger.warning("[Fetcher] Stock batch failed: %s", exc.message)
                result.errors.append(exc.message)
            except Exception as exc:
                logger.exception("[Fetcher] Stock batch crashed")
                result.errors.append(str(exc))

        async def _custom(source: CustomDataSource) -> None:
            value = await self.fetch_custom(source)
            result.custom_values[source.name] = value
            if value.is_error:
                result.errors.append(f"{source.name}: {value.error}")

        await asyncio.gather(_stocks(), *[_custom(s) for s in sources])

        result.elapsed_s = round(time.perf_counter() - t0, 3)
        logger.info(
            "[Fetcher] Cycle done in %.2fs: %s stocks, %d sources, %d errors",
            result.elapsed_s,
            "stale" if result.stocks is None else len(result.stocks),
            len(result.custom_values),
            len(result.errors),
        )
        return result
