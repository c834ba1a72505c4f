"""Pydantic models for the dashboard.

Stock            — one quote row from the stock provider.
CustomDataSource — user-authored JSON API definition.
CustomDataValue  — result of one poll of a CustomDataSource.
DashboardConfig  — the persisted configuration document.
DashboardState   — immutable snapshot held by ConfigStore.
"""

from __future__ import annotations

from typing import Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from candlebar.utils.validation import (
    check_source_name,
    check_source_url,
    normalize_alias,
)

DisplayMode = Literal["all", "cycle"]
ValueDisplay = Literal["price", "percentage", "both"]
EntrySpacing = Literal["compact", "normal", "relaxed"]
SymbolDisplay = Literal["show", "hide", "symbol-only", "alias-only"]

DEFAULT_SYMBOLS: tuple[str, ...] = ("AAPL", "GOOGL", "MSFT", "TSLA")

# Value shown in place of a custom source's reading after a failed fetch
ERROR_MARKER = "Error"


class Stock(BaseModel):
    """Latest quote for one symbol."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    symbol: str
    price: float
    change_percent: float = Field(
        default=0.0,
        validation_alias=AliasChoices("changePercent", "change_percent"),
        serialization_alias="changePercent",
    )


class CustomDataSource(BaseModel):
    """A JSON HTTP API the dashboard polls. Identity is ``name``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    alias: str = Field(default="", max_length=50)
    url: str
    path: str = Field(min_length=1, max_length=200)
    previous_path: str | None = Field(
        default=None, alias="previousPath", max_length=200,
    )
    decimals: int = Field(default=2, ge=0, le=10)

    @field_validator("name", mode="before")
    @classmethod
    def _check_name(cls, v: object) -> str:
        return check_source_name(v)

    @field_validator("path", mode="before")
    @classmethod
    def _strip(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @field_validator("alias", mode="before")
    @classmethod
    def _clean_alias(cls, v: object) -> object:
        if v is None:
            return ""
        return normalize_alias(v) if isinstance(v, str) else v

    @field_validator("previous_path", mode="before")
    @classmethod
    def _blank_to_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("url")
    @classmethod
    def _check_url(cls, v: str) -> str:
        return check_source_url(v)

    @property
    def display_name(self) -> str:
        return self.alias or self.name


class CustomDataValue(BaseModel):
    """One poll result for a custom source. Replaced whole every cycle."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    value: Union[int, float, str]
    decimals: int = Field(default=0, ge=0, le=10)
    change_percent: float | None = Field(default=None, alias="changePercent")
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class DashboardConfig(BaseModel):
    """Everything that survives a restart (and export/import)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    symbols: list[str] = Field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    aliases: dict[str, str] = Field(default_factory=dict)
    custom_data: list[CustomDataSource] = Field(
        default_factory=list, alias="customData",
    )
    display_mode: DisplayMode = Field(default="all", alias="displayMode")
    value_display: ValueDisplay = Field(default="both", alias="valueDisplay")
    stock_value_displays: dict[str, ValueDisplay] = Field(
        default_factory=dict, alias="stockValueDisplays",
    )
    entry_spacing: EntrySpacing = Field(default="normal", alias="entrySpacing")
    symbol_display: SymbolDisplay = Field(default="show", alias="symbolDisplay")
    global_decimals: int = Field(default=2, ge=0, le=10, alias="globalDecimals")
    stock_decimals: dict[str, int] = Field(
        default_factory=dict, alias="stockDecimals",
    )
    refresh_interval: int = Field(
        default=30, ge=10, le=300, alias="refreshInterval",
    )
    autostart: bool = False

    def entry_ids(self) -> set[str]:
        """Every id an override may reference: symbols + source names."""
        return set(self.symbols) | {s.name for s in self.custom_data}

    def source(self, name: str) -> CustomDataSource | None:
        for src in self.custom_data:
            if src.name == name:
                return src
        return None

    def to_document(self) -> dict:
        """Portable JSON document (camelCase keys)."""
        doc = self.model_dump(by_alias=True, exclude={"custom_data"})
        doc["customData"] = [
            s.model_dump(by_alias=True, exclude_none=True) for s in self.custom_data
        ]
        return doc


class DashboardState(BaseModel):
    """Configuration plus the ephemeral values fetched at runtime."""

    model_config = ConfigDict(frozen=True)

    config: DashboardConfig = Field(default_factory=DashboardConfig)
    current_stocks: list[Stock] = Field(default_factory=list)
    custom_values: dict[str, CustomDataValue] = Field(default_factory=dict)
    rotation_index: int = 0
    is_loading: bool = False
