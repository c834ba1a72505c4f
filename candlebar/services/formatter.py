"""Presentation formatter — DashboardState in, display strings out.

Pure functions only: nothing here reads the clock (unless given ``now``),
touches the store, or does I/O.

Lookup order for per-entry settings:
    value display → per-entry override, else global
    decimals      → per-entry override, else source default, else global
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from candlebar.models.dashboard import (
    CustomDataValue,
    DashboardConfig,
    DashboardState,
    Stock,
)
from candlebar.models.view import DashboardView, ItemView

NO_DATA = "No data"
ERROR_TEXT = "Error"
EMPTY_LIST_TEXT = "No data to display"

# Blank lines between entries in render_list()
SPACING_GAPS = {"compact": 0, "normal": 1, "relaxed": 2}


# ── Per-entry resolution ──────────────────────────────────────────


def value_visibility(show_price: bool, show_percentage: bool) -> tuple[bool, bool]:
    """Hiding both is not a valid choice; treat it as showing both."""
    if not show_price and not show_percentage:
        return True, True
    return show_price, show_percentage


def visibility_for(mode: str | None) -> tuple[bool, bool]:
    return value_visibility(
        mode in ("price", "both"),
        mode in ("percentage", "both"),
    )


def effective_value_display(config: DashboardConfig, entry_id: str) -> str:
    return config.stock_value_displays.get(entry_id, config.value_display)


def effective_decimals(
    config: DashboardConfig, entry_id: str, provided: int | None = None,
) -> int:
    override = config.stock_decimals.get(entry_id)
    if override is not None:
        return override
    if provided is not None:
        return provided
    return config.global_decimals


def resolve_names(
    symbol_display: str, entry_id: str, alias: str | None,
) -> tuple[str | None, str | None]:
    """Return (name, caption) for an entry."""
    if symbol_display == "hide":
        return None, None
    if symbol_display == "symbol-only":
        return entry_id, None
    if symbol_display == "alias-only":
        return alias or entry_id, None
    # "show"
    return alias or entry_id, (entry_id if alias else None)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def format_number(value: Any, decimals: int) -> str:
    if _is_number(value):
        return f"{value:.{decimals}f}"
    return str(value)


def format_percent(change_percent: float) -> str:
    sign = "+" if change_percent >= 0 else ""
    return f"{sign}{change_percent:.2f}%"


def format_item(
    config: DashboardConfig,
    *,
    entry_id: str,
    kind: str,
    value: Any,
    change_percent: float | None = None,
    alias: str | None = None,
    provided_decimals: int | None = None,
    error: str | None = None,
) -> ItemView:
    """Render one entry following the display preferences in ``config``."""
    name, caption = resolve_names(config.symbol_display, entry_id, alias)

    if error is not None:
        value_text, percent_text, positive = ERROR_TEXT, None, None
    else:
        show_price, show_pct = visibility_for(effective_value_display(config, entry_id))
        decimals = effective_decimals(config, entry_id, provided_decimals)

        value_text = None
        if show_price and value is not None:
            value_text = f"${format_number(value, decimals)}" if _is_number(value) else str(value)

        percent_text, positive = None, None
        if show_pct and change_percent is not None:
            percent_text = format_percent(change_percent)
            positive = change_percent >= 0

    parts = [name, f"({caption})" if caption else None, value_text, percent_text]
    return ItemView(
        id=entry_id,
        kind=kind,
        name=name,
        caption=caption,
        value_text=value_text,
        percent_text=percent_text,
        is_positive=positive,
        is_error=error is not None,
        line=" ".join(p for p in parts if p),
    )


# ── Item list ─────────────────────────────────────────────────────


def _entries(state: DashboardState) -> list[tuple[str, Stock | CustomDataValue]]:
    """Combined display order: quoted stocks, then sources with a value."""
    cfg = state.config
    quotes = {s.symbol: s for s in state.current_stocks}
    entries: list[tuple[str, Stock | CustomDataValue]] = [
        (symbol, quotes[symbol]) for symbol in cfg.symbols if symbol in quotes
    ]
    for source in cfg.custom_data:
        value = state.custom_values.get(source.name)
        if value is not None:
            entries.append((source.name, value))
    return entries


def build_items(state: DashboardState) -> list[ItemView]:
    cfg = state.config
    items = []
    for entry_id, entry in _entries(state):
        if isinstance(entry, Stock):
            items.append(format_item(
                cfg,
                entry_id=entry_id,
                kind="stock",
                value=entry.price,
                change_percent=entry.change_percent,
                alias=cfg.aliases.get(entry_id),
            ))
        else:
            source = cfg.source(entry_id)
            items.append(format_item(
                cfg,
                entry_id=entry_id,
                kind="custom",
                value=entry.value,
                change_percent=entry.change_percent,
                alias=source.alias if source else None,
                provided_decimals=entry.decimals,
                error=entry.error,
            ))
    return items


# ── Summary line ──────────────────────────────────────────────────


def _signed_one_decimal(change_percent: float) -> str:
    sign = "-" if change_percent < 0 else ""
    return f"{sign}{abs(change_percent):.1f}%"


def _summary_name(state: DashboardState, entry_id: str, is_stock: bool) -> str:
    cfg = state.config
    if is_stock:
        return cfg.aliases.get(entry_id) or entry_id
    source = cfg.source(entry_id)
    return source.display_name if source else entry_id


def _custom_summary(state: DashboardState, entry_id: str, value: CustomDataValue) -> str:
    if value.is_error:
        return ""
    decimals = effective_decimals(state.config, entry_id, value.decimals)
    name = _summary_name(state, entry_id, is_stock=False)
    return f"{name} {format_number(value.value, decimals)}"


def summary_line(state: DashboardState) -> str:
    """Single line for the tray title."""
    entries = _entries(state)
    if not entries:
        return NO_DATA

    if state.config.display_mode == "cycle":
        entry_id, entry = entries[state.rotation_index % len(entries)]
        if isinstance(entry, Stock):
            name = _summary_name(state, entry_id, is_stock=True)
            return f"{name} ${entry.price:.2f} {_signed_one_decimal(entry.change_percent)}"
        return _custom_summary(state, entry_id, entry)

    parts = []
    for entry_id, entry in entries:
        if isinstance(entry, Stock):
            name = _summary_name(state, entry_id, is_stock=True)
            parts.append(f"{name} {_signed_one_decimal(entry.change_percent)}")
        else:
            parts.append(_custom_summary(state, entry_id, entry))
    return " ".join(p for p in parts if p)


def current_cycle_index(state: DashboardState) -> int | None:
    """Index the rotation cursor resolves to right now (None when empty)."""
    count = len(_entries(state))
    return state.rotation_index % count if count else None


# ── Whole view ────────────────────────────────────────────────────


def format_dashboard(state: DashboardState) -> DashboardView:
    return DashboardView(
        items=build_items(state),
        summary=summary_line(state),
        display_mode=state.config.display_mode,
        entry_spacing=state.config.entry_spacing,
    )


def render_list(view: DashboardView) -> str:
    """Plain-text list with the configured gap between entries."""
    if not view.items:
        return EMPTY_LIST_TEXT
    gap = SPACING_GAPS.get(view.entry_spacing, 1)
    return ("\n" * (gap + 1)).join(view.lines)


def describe_last_updated(last_updated: datetime | None, now: datetime) -> str:
    """'Updated 12s ago' style label for the status footer."""
    if last_updated is None:
        return "Never updated"
    diff = int((now - last_updated).total_seconds())
    if diff < 60:
        return f"Updated {max(diff, 0)}s ago"
    if diff < 3600:
        return f"Updated {diff // 60}m ago"
    return last_updated.strftime("%H:%M")
