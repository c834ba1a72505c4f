"""ConfigStore — the single owner of dashboard state.

Holds one immutable DashboardState. Every operation validates its input,
builds a new snapshot and swaps it in under a lock, so readers only ever
see a complete before- or after-state. After a swap the configuration is
persisted (when a path is set) and subscribers are notified.

Usage:
    store = ConfigStore(path=settings.CONFIG_PATH)
    store.load()
    store.add_stock("nvda", alias="Nvidia")
    doc = store.export_config()
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Callable, get_args

from pydantic import ValidationError

from candlebar.models.dashboard import (
    CustomDataSource,
    CustomDataValue,
    DashboardConfig,
    DashboardState,
    DisplayMode,
    EntrySpacing,
    Stock,
    SymbolDisplay,
    ValueDisplay,
)
from candlebar.services.source_fetcher import CycleResult
from candlebar.utils.errors import ImportFailure, ValidationFailure
from candlebar.utils.logger import logger
from candlebar.utils.validation import (
    check_decimals,
    check_refresh_interval,
    first_error_message,
    normalize_alias,
    normalize_symbol,
    parse_source,
)

Listener = Callable[[DashboardState, DashboardState], None]
Mutation = Callable[[DashboardState], "tuple[DashboardState, dict]"]


def _one_of(kind: Any, label: str) -> Callable[[Any], str]:
    allowed = get_args(kind)

    def check(value: Any) -> str:
        if value not in allowed:
            raise ValidationFailure(
                f"{label} must be one of: {', '.join(allowed)}"
            )
        return value

    return check


def _check_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationFailure("autostart must be true or false")
    return value


# document key → (DashboardConfig field, validator)
_SETTINGS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "displayMode": ("display_mode", _one_of(DisplayMode, "displayMode")),
    "valueDisplay": ("value_display", _one_of(ValueDisplay, "valueDisplay")),
    "entrySpacing": ("entry_spacing", _one_of(EntrySpacing, "entrySpacing")),
    "symbolDisplay": ("symbol_display", _one_of(SymbolDisplay, "symbolDisplay")),
    "globalDecimals": ("global_decimals", check_decimals),
    "refreshInterval": ("refresh_interval", check_refresh_interval),
    "autostart": ("autostart", _check_bool),
}

_check_value_display = _one_of(ValueDisplay, "valueDisplay")


def _with_config(state: DashboardState, **changes: Any) -> DashboardState:
    return state.model_copy(update={"config": state.config.model_copy(update=changes)})


def _prune(state: DashboardState) -> DashboardState:
    """Drop overrides, aliases and cached values whose id no longer exists."""
    cfg = state.config
    symbols = set(cfg.symbols)
    ids = cfg.entry_ids()
    source_names = {s.name for s in cfg.custom_data}

    quotes = {s.symbol: s for s in state.current_stocks}
    config = cfg.model_copy(update={
        "aliases": {k: v for k, v in cfg.aliases.items() if k in symbols},
        "stock_value_displays": {
            k: v for k, v in cfg.stock_value_displays.items() if k in ids
        },
        "stock_decimals": {k: v for k, v in cfg.stock_decimals.items() if k in ids},
    })
    return state.model_copy(update={
        "config": config,
        # Quotes follow the configured (display) order
        "current_stocks": [quotes[s] for s in cfg.symbols if s in quotes],
        "custom_values": {
            k: v for k, v in state.custom_values.items() if k in source_names
        },
    })


class ConfigStore:
    """Owns the DashboardState; all mutation goes through its methods."""

    def __init__(
        self,
        path: Path | None = None,
        state: DashboardState | None = None,
    ) -> None:
        self.path = path
        self._state = _prune(state or DashboardState())
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []

    # ── Read operations ───────────────────────────────────────────

    @property
    def state(self) -> DashboardState:
        """Current snapshot. Never mutated after it is published."""
        return self._state

    @property
    def config(self) -> DashboardConfig:
        return self._state.config

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(old, new)`` after every committed change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ── Commit machinery ──────────────────────────────────────────

    def _mutate(self, mutation: Mutation, *, persist: bool = True) -> dict:
        """Run ``mutation`` atomically; it returns (new_state, result)."""
        with self._lock:
            old = self._state
            new, result = mutation(old)
            if new is old:
                return result
            new = _prune(new)
            self._state = new

        if persist and new.config != old.config:
            self._persist()
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                logger.exception("[Store] Listener %r failed", listener)
        return result

    def _persist(self) -> None:
        if self.path is None:
            return
        try:
            self.save()
        except OSError as exc:
            logger.error("[Store] Could not save config to %s: %s", self.path, exc)

    # ── Stocks ────────────────────────────────────────────────────

    def add_stock(self, symbol: str, alias: str | None = None) -> dict:
        """Append a symbol (and optional alias). Duplicates are rejected."""
        symbol = normalize_symbol(symbol)
        alias = normalize_alias(alias)

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            cfg = state.config
            if symbol in cfg.symbols:
                logger.info("[Store] %s already tracked", symbol)
                return state, {"status": "already_exists", "symbol": symbol}
            aliases = {**cfg.aliases, symbol: alias} if alias else cfg.aliases
            new = _with_config(
                state, symbols=[*cfg.symbols, symbol], aliases=aliases,
            )
            logger.info("[Store] Added %s", symbol)
            return new, {"status": "added", "symbol": symbol}

        return self._mutate(mutation)

    def remove_stock(self, symbol: str) -> dict:
        """Remove a symbol together with its alias, overrides and quote."""
        symbol = str(symbol).strip().upper()

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            cfg = state.config
            if symbol not in cfg.symbols:
                return state, {"error": "not_found", "symbol": symbol}
            new = _with_config(
                state, symbols=[s for s in cfg.symbols if s != symbol],
            )
            logger.info("[Store] Removed %s", symbol)
            return new, {"status": "removed", "symbol": symbol}

        return self._mutate(mutation)

    def update_alias(self, symbol: str, alias: str | None) -> dict:
        """Set a display name; a blank alias removes it."""
        symbol = str(symbol).strip().upper()
        alias = normalize_alias(alias)

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            cfg = state.config
            if symbol not in cfg.symbols:
                return state, {"error": "not_found", "symbol": symbol}
            aliases = {k: v for k, v in cfg.aliases.items() if k != symbol}
            if alias:
                aliases[symbol] = alias
            return _with_config(state, aliases=aliases), {
                "status": "updated", "symbol": symbol, "alias": alias,
            }

        return self._mutate(mutation)

    def reorder_stocks(self, symbols: list[str]) -> dict:
        """Replace the display order. Must be a permutation of the current list."""
        if not isinstance(symbols, list):
            raise ValidationFailure("symbols must be a list")
        order = [str(s).strip().upper() for s in symbols]

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            current = state.config.symbols
            if len(order) != len(current) or set(order) != set(current):
                raise ValidationFailure(
                    "New order must contain exactly the tracked symbols",
                    context={"expected": current, "got": order},
                )
            if order == current:
                return state, {"status": "unchanged", "symbols": order}
            return _with_config(state, symbols=order), {
                "status": "reordered", "symbols": order,
            }

        return self._mutate(mutation)

    def set_stocks(self, stocks: list[Stock | dict]) -> dict:
        """Replace the fetched quotes wholesale."""
        parsed = [s if isinstance(s, Stock) else Stock.model_validate(s) for s in stocks]

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            new = state.model_copy(update={"current_stocks": parsed})
            return new, {"status": "updated", "count": len(parsed)}

        return self._mutate(mutation)

    # ── Custom sources ────────────────────────────────────────────

    def add_custom_source(self, source: CustomDataSource | dict) -> dict:
        parsed = parse_source(source)

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            cfg = state.config
            if cfg.source(parsed.name) is not None:
                return state, {"status": "already_exists", "name": parsed.name}
            logger.info("[Store] Added source %s (%s)", parsed.name, parsed.url)
            return _with_config(state, custom_data=[*cfg.custom_data, parsed]), {
                "status": "added", "name": parsed.name,
            }

        return self._mutate(mutation)

    def update_custom_source(self, name: str, source: CustomDataSource | dict) -> dict:
        """Edit a source in place. The name is its identity and cannot change."""
        parsed = parse_source(source)
        if parsed.name != name:
            raise ValidationFailure("Source name cannot be changed")

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            cfg = state.config
            if cfg.source(name) is None:
                return state, {"error": "not_found", "name": name}
            sources = [parsed if s.name == name else s for s in cfg.custom_data]
            new = _with_config(state, custom_data=sources)
            # The old reading came from the old url/path
            values = {k: v for k, v in state.custom_values.items() if k != name}
            new = new.model_copy(update={"custom_values": values})
            return new, {"status": "updated", "name": name}

        return self._mutate(mutation)

    def remove_custom_source(self, name: str) -> dict:
        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            cfg = state.config
            if cfg.source(name) is None:
                return state, {"error": "not_found", "name": name}
            sources = [s for s in cfg.custom_data if s.name != name]
            logger.info("[Store] Removed source %s", name)
            return _with_config(state, custom_data=sources), {
                "status": "removed", "name": name,
            }

        return self._mutate(mutation)

    def set_custom_value(self, name: str, value: CustomDataValue) -> dict:
        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            if state.config.source(name) is None:
                return state, {"error": "not_found", "name": name}
            values = {**state.custom_values, name: value}
            return state.model_copy(update={"custom_values": values}), {
                "status": "updated", "name": name,
            }

        return self._mutate(mutation)

    def apply_cycle(self, result: CycleResult) -> dict:
        """Write a whole poll cycle back in one transition.

        ``result.stocks is None`` means the stock batch failed: the quotes
        already on screen stay as they are.
        """

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            update: dict[str, Any] = {
                "custom_values": {**state.custom_values, **result.custom_values},
                "is_loading": False,
            }
            if result.stocks is not None:
                update["current_stocks"] = list(result.stocks)
            return state.model_copy(update=update), {
                "status": "applied",
                "stocks_updated": result.stocks is not None,
                "sources_updated": len(result.custom_values),
            }

        return self._mutate(mutation)

    # ── Display preferences ───────────────────────────────────────

    def update_settings(self, changes: dict[str, Any]) -> dict:
        """Apply several global settings as one transition.

        Keys are document keys (``displayMode``, ``refreshInterval`` ...).
        Everything is validated before anything is written.
        """
        update = self.validate_settings(changes)

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            if all(getattr(state.config, k) == v for k, v in update.items()):
                return state, {"status": "unchanged"}
            return _with_config(state, **update), {
                "status": "updated", "changed": sorted(changes),
            }

        return self._mutate(mutation)

    @staticmethod
    def validate_settings(changes: dict[str, Any]) -> dict[str, Any]:
        """Check every key and value; returns {field_name: value}. Writes nothing."""
        if not isinstance(changes, dict):
            raise ValidationFailure("Settings must be an object")
        unknown = sorted(set(changes) - set(_SETTINGS))
        if unknown:
            raise ValidationFailure(f"Unknown setting(s): {', '.join(unknown)}")
        update = {}
        for key, raw in changes.items():
            field_name, check = _SETTINGS[key]
            update[field_name] = check(raw)
        return update

    def set_display_mode(self, mode: str) -> dict:
        return self.update_settings({"displayMode": mode})

    def set_value_display(self, display: str) -> dict:
        return self.update_settings({"valueDisplay": display})

    def set_entry_spacing(self, spacing: str) -> dict:
        return self.update_settings({"entrySpacing": spacing})

    def set_symbol_display(self, display: str) -> dict:
        return self.update_settings({"symbolDisplay": display})

    def set_global_decimals(self, decimals: int) -> dict:
        return self.update_settings({"globalDecimals": decimals})

    def set_refresh_interval(self, interval: int) -> dict:
        return self.update_settings({"refreshInterval": interval})

    def set_autostart(self, enabled: bool) -> dict:
        return self.update_settings({"autostart": enabled})

    def set_entry_value_display(self, entry_id: str, display: str | None) -> dict:
        """Per-entry price/percentage override; None reverts to global."""
        if display is not None:
            display = _check_value_display(display)
        return self._set_override("stock_value_displays", entry_id, display)

    def set_entry_decimals(self, entry_id: str, decimals: int | None) -> dict:
        """Per-entry decimals override; None reverts to the inherited value."""
        if decimals is not None:
            decimals = check_decimals(decimals)
        return self._set_override("stock_decimals", entry_id, decimals)

    def _set_override(self, field_name: str, entry_id: str, value: Any) -> dict:
        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            current: dict = getattr(state.config, field_name)
            if value is None:
                if entry_id not in current:
                    return state, {"status": "unchanged", "id": entry_id}
                overrides = {k: v for k, v in current.items() if k != entry_id}
            else:
                if entry_id not in state.config.entry_ids():
                    return state, {"error": "not_found", "id": entry_id}
                overrides = {**current, entry_id: value}
            return _with_config(state, **{field_name: overrides}), {
                "status": "updated", "id": entry_id,
            }

        return self._mutate(mutation)

    # ── Ephemeral state ───────────────────────────────────────────

    def advance_rotation(self) -> dict:
        """Move the cycle-mode cursor one step. Wrapped at read time only."""

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            index = state.rotation_index + 1
            return state.model_copy(update={"rotation_index": index}), {
                "rotation_index": index,
            }

        return self._mutate(mutation, persist=False)

    def set_loading(self, loading: bool) -> dict:
        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            if state.is_loading == loading:
                return state, {"is_loading": loading}
            return state.model_copy(update={"is_loading": loading}), {
                "is_loading": loading,
            }

        return self._mutate(mutation, persist=False)

    # ── Import / export ───────────────────────────────────────────

    def export_config(self) -> dict:
        """The persisted document: configuration only, no fetched values."""
        return self.config.to_document()

    def import_config(self, doc: Any, *, persist: bool = True) -> dict:
        """Replace the whole configuration from a document.

        Missing or invalid fields take their defaults; nothing is merged
        with the configuration being replaced.
        """
        if not isinstance(doc, dict):
            raise ImportFailure("Configuration must be a JSON object")
        config, warnings = config_from_document(doc)

        def mutation(state: DashboardState) -> tuple[DashboardState, dict]:
            return DashboardState(config=config), {
                "status": "imported",
                "symbols": len(config.symbols),
                "sources": len(config.custom_data),
                "warnings": warnings,
            }

        result = self._mutate(mutation, persist=persist)
        logger.info(
            "[Store] Imported config: %d symbols, %d sources, %d warnings",
            result["symbols"], result["sources"], len(warnings),
        )
        return result

    # ── Persistence ───────────────────────────────────────────────

    def load(self) -> dict:
        """Load the persisted document, falling back to defaults."""
        if self.path is None or not self.path.exists():
            return {"status": "defaults"}
        try:
            doc = json.loads(self.path.read_text(encoding="utf-8"))
            return self.import_config(doc, persist=False)
        except (json.JSONDecodeError, OSError, ImportFailure) as exc:
            logger.warning("[Store] Unreadable config %s (%s); using defaults", self.path, exc)
            return {"status": "defaults", "error": str(exc)}

    def save(self) -> None:
        """Write the persisted document to ``path`` (atomic replace)."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps(self.export_config(), indent=4) + "\n", encoding="utf-8",
        )
        tmp.replace(self.path)


# ── Document parsing ──────────────────────────────────────────────


def config_from_document(doc: dict) -> tuple[DashboardConfig, list[str]]:
    """Build a DashboardConfig field by field; bad fields take defaults."""
    warnings: list[str] = []
    fields: dict[str, Any] = {}

    def warn(message: str) -> None:
        warnings.append(message)
        logger.warning("[Store] Import: %s", message)

    # symbols: None or missing means the default set; [] stays empty
    raw = doc.get("symbols")
    if raw is not None:
        if isinstance(raw, list):
            symbols: list[str] = []
            for item in raw:
                try:
                    symbol = normalize_symbol(item)
                except ValidationFailure as exc:
                    warn(f"symbols: dropped {item!r} ({exc.message})")
                    continue
                if symbol not in symbols:
                    symbols.append(symbol)
            fields["symbols"] = symbols
        else:
            warn("symbols: not a list, using defaults")

    raw = doc.get("aliases")
    if isinstance(raw, dict):
        aliases: dict[str, str] = {}
        for key, value in raw.items():
            try:
                alias = normalize_alias(value)
                if alias:
                    aliases[normalize_symbol(key)] = alias
            except ValidationFailure as exc:
                warn(f"aliases: dropped {key!r} ({exc.message})")
        fields["aliases"] = aliases
    elif raw is not None:
        warn("aliases: not an object, ignored")

    raw = doc.get("customData")
    if isinstance(raw, list):
        sources: list[CustomDataSource] = []
        for item in raw:
            try:
                source = parse_source(item)
            except ValidationFailure as exc:
                warn(f"customData: dropped entry ({exc.message})")
                continue
            if any(s.name == source.name for s in sources):
                warn(f"customData: duplicate name {source.name!r} dropped")
                continue
            sources.append(source)
        fields["custom_data"] = sources
    elif raw is not None:
        warn("customData: not a list, ignored")

    raw = doc.get("stockValueDisplays")
    if isinstance(raw, dict):
        displays = {}
        for key, value in raw.items():
            try:
                displays[str(key)] = _check_value_display(value)
            except ValidationFailure as exc:
                warn(f"stockValueDisplays: dropped {key!r} ({exc.message})")
        fields["stock_value_displays"] = displays
    elif raw is not None:
        warn("stockValueDisplays: not an object, ignored")

    raw = doc.get("stockDecimals")
    if isinstance(raw, dict):
        decimals = {}
        for key, value in raw.items():
            try:
                decimals[str(key)] = check_decimals(value)
            except ValidationFailure as exc:
                warn(f"stockDecimals: dropped {key!r} ({exc.message})")
        fields["stock_decimals"] = decimals
    elif raw is not None:
        warn("stockDecimals: not an object, ignored")

    for key, (field_name, _check) in _SETTINGS.items():
        if doc.get(key) is None:
            continue
        try:
            parsed = DashboardConfig.model_validate({key: doc[key]})
        except ValidationError as exc:
            warn(f"{key}: {first_error_message(exc)}, using default")
            continue
        fields[field_name] = getattr(parsed, field_name)

    return DashboardConfig(**fields), warnings
