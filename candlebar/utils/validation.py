"""Input validation for everything a user can type into the dashboard.

Every function either returns the normalized value or raises
ValidationFailure with a message fit for display.
"""

from __future__ import annotations

import ipaddress
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from pydantic import ValidationError

from candlebar.utils.errors import ValidationFailure

if TYPE_CHECKING:
    from candlebar.models.dashboard import CustomDataSource

SYMBOL_RE = re.compile(r"^[A-Z0-9]+$")
SOURCE_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]{1,50}$")

MAX_SYMBOL_LEN = 5
MAX_ALIAS_LEN = 50
MIN_REFRESH_INTERVAL = 10
MAX_REFRESH_INTERVAL = 300
MIN_DECIMALS = 0
MAX_DECIMALS = 10


def normalize_symbol(symbol: Any) -> str:
    """Uppercase + trim a ticker, then check it is 1-5 of [A-Z0-9]."""
    if not isinstance(symbol, str):
        raise ValidationFailure("Stock symbol must be a string")
    symbol = symbol.strip().upper()
    if not symbol:
        raise ValidationFailure("Stock symbol is required")
    if len(symbol) > MAX_SYMBOL_LEN:
        raise ValidationFailure("Stock symbol must be 5 characters or less")
    if not SYMBOL_RE.match(symbol):
        raise ValidationFailure(
            "Stock symbol must contain only uppercase letters and numbers"
        )
    return symbol


def sanitize_input(text: str) -> str:
    """Strip markup and script fragments from free text."""
    text = re.sub(r"[<>]", "", text)
    text = re.sub(r"javascript:", "", text, flags=re.IGNORECASE)
    text = re.sub(r"on\w+=", "", text, flags=re.IGNORECASE)
    return text.strip()


def normalize_alias(alias: Any) -> str:
    """Return a cleaned display name; "" means "no alias"."""
    if alias is None:
        return ""
    if not isinstance(alias, str):
        raise ValidationFailure("Display name must be a string")
    alias = sanitize_input(alias)
    if len(alias) > MAX_ALIAS_LEN:
        raise ValidationFailure("Display name must be 50 characters or less")
    return alias


def check_source_name(name: Any) -> str:
    if not isinstance(name, str) or not SOURCE_NAME_RE.match(name.strip()):
        raise ValidationFailure(
            "Name must be 1-50 letters, numbers, hyphens, and underscores"
        )
    return name.strip()


def check_source_url(url: Any) -> str:
    """Only public HTTPS endpoints are allowed as custom sources."""
    if not isinstance(url, str):
        raise ValidationFailure("Must be a valid URL")
    url = url.strip()
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        raise ValidationFailure("Must be a valid URL")
    if parsed.scheme != "https":
        raise ValidationFailure("URL must use HTTPS for security")

    host = parsed.hostname
    if host == "localhost" or host.endswith(".localhost"):
        raise ValidationFailure("Cannot use local or private network URLs")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return url  # a DNS name
    if ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified:
        raise ValidationFailure("Cannot use local or private network URLs")
    return url


def check_refresh_interval(interval: Any) -> int:
    if isinstance(interval, bool) or not isinstance(interval, int):
        raise ValidationFailure("Refresh interval must be a whole number of seconds")
    if interval < MIN_REFRESH_INTERVAL:
        raise ValidationFailure("Refresh interval must be at least 10 seconds")
    if interval > MAX_REFRESH_INTERVAL:
        raise ValidationFailure("Refresh interval must be at most 300 seconds")
    return interval


def check_decimals(decimals: Any) -> int:
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise ValidationFailure("Decimals must be a whole number")
    if not MIN_DECIMALS <= decimals <= MAX_DECIMALS:
        raise ValidationFailure("Decimals must be between 0 and 10")
    return decimals


def first_error_message(exc: ValidationError) -> str:
    """Human-readable text for the first problem pydantic found."""
    err = exc.errors()[0]
    ctx_error = (err.get("ctx") or {}).get("error")
    msg = str(ctx_error) if ctx_error else err.get("msg", "Invalid value")
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {msg}" if loc else msg


def parse_source(data: Any) -> CustomDataSource:
    """Validate a raw mapping (or model) into a CustomDataSource."""
    from candlebar.models.dashboard import CustomDataSource

    if isinstance(data, CustomDataSource):
        data = data.model_dump(by_alias=True)
    if not isinstance(data, dict):
        raise ValidationFailure("Custom source must be an object")
    try:
        return CustomDataSource.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailure(first_error_message(exc), cause=exc) from exc
