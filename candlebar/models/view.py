"""Pydantic models for rendered output (what the host shell displays)."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ItemView(BaseModel):
    """One formatted dashboard entry."""

    id: str
    kind: Literal["stock", "custom"]
    name: str | None = None  # None when names are hidden
    caption: str | None = None  # raw id under an alias ("show" mode)
    value_text: str | None = None
    percent_text: str | None = None
    is_positive: bool | None = None
    is_error: bool = False
    line: str = ""


class DashboardView(BaseModel):
    """Everything the host needs for one repaint."""

    items: list[ItemView] = Field(default_factory=list)
    summary: str = ""
    display_mode: str = "all"
    entry_spacing: str = "normal"

    @property
    def lines(self) -> list[str]:
        return [item.line for item in self.items]
