"""Error taxonomy for the data pipeline.

TransportFailure  — a source could not be reached / returned garbage.
ExtractionError   — a path or expression did not resolve to a scalar.
ValidationFailure — user input rejected before it reaches the store.
ImportFailure     — a configuration document that is not a JSON object.
"""

from __future__ import annotations

from typing import Any


class CandlebarError(Exception):
    """Base application error with optional context payload."""

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.__cause__ = cause


class TransportFailure(CandlebarError):
    """Network / HTTP / decode error while fetching a source."""


class ExtractionError(CandlebarError):
    """Extraction path or expression did not resolve."""


class ValidationFailure(CandlebarError, ValueError):
    """User-supplied value outside its allowed domain."""


class ImportFailure(CandlebarError):
    """Persisted configuration document is unusable as a whole."""
