"""Tests for ConfigStore — mutations, pruning, import/export, persistence.

Run: python -m pytest tests/test_config_store.py -v -s
"""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock

import pytest

from candlebar.models.dashboard import (
    DEFAULT_SYMBOLS,
    CustomDataValue,
    DashboardConfig,
    Stock,
)
from candlebar.services.config_store import ConfigStore, config_from_document
from candlebar.services.formatter import current_cycle_index, summary_line
from candlebar.services.source_fetcher import CycleResult
from candlebar.utils.errors import ImportFailure, ValidationFailure

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)-7s | %(message)s",
)
log = logging.getLogger(__name__)

SOURCE = {
    "name": "btc",
    "alias": "Bitcoin",
    "url": "https://api.example.com/btc",
    "path": "data.price",
    "decimals": 0,
}


# ══════════════════════════════════════════════════════════════════
# 1. DEFAULTS
# ══════════════════════════════════════════════════════════════════


class TestDefaults:

    def test_default_config(self, store: ConfigStore) -> None:
        cfg = store.config
        assert cfg.symbols == list(DEFAULT_SYMBOLS)
        assert cfg.display_mode == "all"
        assert cfg.value_display == "both"
        assert cfg.entry_spacing == "normal"
        assert cfg.symbol_display == "show"
        assert cfg.global_decimals == 2
        assert cfg.refresh_interval == 30
        assert cfg.autostart is False
        assert store.state.current_stocks == []
        assert store.state.custom_values == {}


# ══════════════════════════════════════════════════════════════════
# 2. STOCKS
# ══════════════════════════════════════════════════════════════════


class TestStocks:

    def test_add_normalizes(self, store: ConfigStore) -> None:
        result = store.add_stock("  nvda ", alias="Nvidia")
        log.info("add_stock → %s", result)
        assert result == {"status": "added", "symbol": "NVDA"}
        assert store.config.symbols[-1] == "NVDA"
        assert store.config.aliases["NVDA"] == "Nvidia"

    def test_duplicate_is_rejected_without_change(self, store: ConfigStore) -> None:
        before = store.state
        result = store.add_stock("aapl")
        assert result["status"] == "already_exists"
        assert store.state is before

    @pytest.mark.parametrize("bad", ["", "   ", "TOOLONG", "BRK.B", "A-B", 42, None])
    def test_invalid_symbol_leaves_store_unchanged(self, store: ConfigStore, bad) -> None:
        before = store.state
        with pytest.raises(ValidationFailure):
            store.add_stock(bad)
        assert store.state is before

    def test_alias_too_long(self, store: ConfigStore) -> None:
        with pytest.raises(ValidationFailure):
            store.add_stock("NVDA", alias="x" * 51)
        assert "NVDA" not in store.config.symbols

    def test_remove_cleans_alias_overrides_and_quote(self, store: ConfigStore) -> None:
        store.update_alias("AAPL", "Apple")
        store.set_entry_decimals("AAPL", 4)
        store.set_entry_value_display("AAPL", "price")
        store.set_stocks([Stock(symbol="AAPL", price=1.0), Stock(symbol="MSFT", price=2.0)])

        store.remove_stock("aapl")

        cfg = store.config
        assert "AAPL" not in cfg.symbols
        assert "AAPL" not in cfg.aliases
        assert "AAPL" not in cfg.stock_decimals
        assert "AAPL" not in cfg.stock_value_displays
        assert [s.symbol for s in store.state.current_stocks] == ["MSFT"]

    def test_remove_unknown(self, store: ConfigStore) -> None:
        assert store.remove_stock("ZZZ") == {"error": "not_found", "symbol": "ZZZ"}

    def test_remove_then_readd_has_no_stale_overrides(self, store: ConfigStore) -> None:
        store.set_entry_decimals("TSLA", 5)
        store.remove_stock("TSLA")
        store.add_stock("TSLA")
        assert "TSLA" not in store.config.stock_decimals

    def test_update_alias_and_clear(self, store: ConfigStore) -> None:
        store.update_alias("msft", "Microsoft")
        assert store.config.aliases == {"MSFT": "Microsoft"}
        store.update_alias("MSFT", "   ")
        assert store.config.aliases == {}

    def test_alias_is_sanitized(self, store: ConfigStore) -> None:
        store.update_alias("MSFT", "<b>Micro</b>")
        assert store.config.aliases["MSFT"] == "bMicro/b"

    def test_reorder_is_a_permutation(self, store: ConfigStore) -> None:
        result = store.reorder_stocks(["tsla", "MSFT", "GOOGL", "AAPL"])
        assert result["status"] == "reordered"
        assert store.config.symbols == ["TSLA", "MSFT", "GOOGL", "AAPL"]

    def test_reorder_rejects_non_permutation(self, store: ConfigStore) -> None:
        before = store.config.symbols
        with pytest.raises(ValidationFailure):
            store.reorder_stocks(["AAPL", "MSFT"])
        with pytest.raises(ValidationFailure):
            store.reorder_stocks(["AAPL", "MSFT", "GOOGL", "NVDA"])
        assert store.config.symbols == before

    def test_reorder_also_orders_quotes(self, store: ConfigStore) -> None:
        store.set_stocks([
            Stock(symbol=s, price=1.0) for s in ("AAPL", "GOOGL", "MSFT", "TSLA")
        ])
        store.reorder_stocks(["TSLA", "MSFT", "GOOGL", "AAPL"])
        assert [s.symbol for s in store.state.current_stocks] == ["TSLA", "MSFT", "GOOGL", "AAPL"]


# ══════════════════════════════════════════════════════════════════
# 3. CUSTOM SOURCES
# ══════════════════════════════════════════════════════════════════


class TestCustomSources:

    def test_add(self, store: ConfigStore) -> None:
        assert store.add_custom_source(SOURCE)["status"] == "added"
        src = store.config.source("btc")
        assert src.display_name == "Bitcoin"
        assert src.previous_path is None

    def test_duplicate_name(self, store: ConfigStore) -> None:
        store.add_custom_source(SOURCE)
        assert store.add_custom_source(SOURCE)["status"] == "already_exists"
        assert len(store.config.custom_data) == 1

    @pytest.mark.parametrize("field, value", [
        ("url", "http://api.example.com/btc"),
        ("url", "https://localhost/x"),
        ("url", "https://127.0.0.1/x"),
        ("url", "https://192.168.1.10/x"),
        ("url", "not a url"),
        ("name", "has space"),
        ("name", ""),
        ("path", ""),
        ("decimals", 11),
    ])
    def test_invalid_source_rejected(self, store: ConfigStore, field, value) -> None:
        before = store.state
        with pytest.raises(ValidationFailure):
            store.add_custom_source({**SOURCE, field: value})
        assert store.state is before

    def test_update_keeps_name_and_drops_cached_value(self, store: ConfigStore) -> None:
        store.add_custom_source(SOURCE)
        store.set_custom_value("btc", CustomDataValue(value=1.0, decimals=0))
        result = store.update_custom_source("btc", {**SOURCE, "path": "data.last"})
        assert result["status"] == "updated"
        assert store.config.source("btc").path == "data.last"
        assert "btc" not in store.state.custom_values

    def test_update_cannot_rename(self, store: ConfigStore) -> None:
        store.add_custom_source(SOURCE)
        with pytest.raises(ValidationFailure):
            store.update_custom_source("btc", {**SOURCE, "name": "eth"})

    def test_update_unknown(self, store: ConfigStore) -> None:
        assert store.update_custom_source("btc", SOURCE)["error"] == "not_found"

    def test_remove_prunes_value_and_overrides(self, store: ConfigStore) -> None:
        store.add_custom_source(SOURCE)
        store.set_custom_value("btc", CustomDataValue(value=1.0))
        store.set_entry_decimals("btc", 3)
        store.remove_custom_source("btc")
        assert store.config.custom_data == []
        assert "btc" not in store.state.custom_values
        assert "btc" not in store.config.stock_decimals


# ══════════════════════════════════════════════════════════════════
# 4. SETTINGS + OVERRIDES
# ══════════════════════════════════════════════════════════════════


class TestSettings:

    def test_update_many_at_once(self, store: ConfigStore) -> None:
        listener = MagicMock()
        store.subscribe(listener)
        result = store.update_settings({"displayMode": "cycle", "globalDecimals": 4})
        assert result["status"] == "updated"
        assert store.config.display_mode == "cycle"
        assert store.config.global_decimals == 4
        assert listener.call_count == 1

    def test_one_bad_value_rejects_all(self, store: ConfigStore) -> None:
        with pytest.raises(ValidationFailure):
            store.update_settings({"displayMode": "cycle", "globalDecimals": 11})
        assert store.config.display_mode == "all"

    def test_unknown_key(self, store: ConfigStore) -> None:
        with pytest.raises(ValidationFailure, match="Unknown setting"):
            store.update_settings({"theme": "dark"})

    def test_validate_settings_writes_nothing(self, store: ConfigStore) -> None:
        before = store.state
        update = store.validate_settings({"autostart": True, "refreshInterval": 60})
        assert update == {"autostart": True, "refresh_interval": 60}
        assert store.state is before

        with pytest.raises(ValidationFailure):
            store.validate_settings({"autostart": True, "refreshInterval": 5})
        assert store.state is before

    @pytest.mark.parametrize("interval", [9, 301, 30.5, "30", True])
    def test_refresh_interval_bounds(self, store: ConfigStore, interval) -> None:
        with pytest.raises(ValidationFailure):
            store.set_refresh_interval(interval)
        assert store.config.refresh_interval == 30

    def test_refresh_interval_edges(self, store: ConfigStore) -> None:
        store.set_refresh_interval(10)
        assert store.config.refresh_interval == 10
        store.set_refresh_interval(300)
        assert store.config.refresh_interval == 300

    def test_same_value_is_unchanged(self, store: ConfigStore) -> None:
        listener = MagicMock()
        store.subscribe(listener)
        assert store.set_display_mode("all")["status"] == "unchanged"
        listener.assert_not_called()

    def test_override_for_unknown_id(self, store: ConfigStore) -> None:
        assert store.set_entry_decimals("NOPE", 2)["error"] == "not_found"
        assert store.set_entry_value_display("NOPE", "price")["error"] == "not_found"

    def test_override_clear(self, store: ConfigStore) -> None:
        store.set_entry_value_display("AAPL", "percentage")
        assert store.config.stock_value_displays == {"AAPL": "percentage"}
        store.set_entry_value_display("AAPL", None)
        assert store.config.stock_value_displays == {}

    def test_bad_override_values(self, store: ConfigStore) -> None:
        with pytest.raises(ValidationFailure):
            store.set_entry_value_display("AAPL", "neither")
        with pytest.raises(ValidationFailure):
            store.set_entry_decimals("AAPL", -1)


# ══════════════════════════════════════════════════════════════════
# 5. CYCLES + EPHEMERAL STATE
# ══════════════════════════════════════════════════════════════════


class TestApplyCycle:

    def test_failed_stock_batch_keeps_previous_quotes(self, store: ConfigStore) -> None:
        quotes = [Stock(symbol="AAPL", price=190.0, change_percent=1.0)]
        store.set_stocks(quotes)
        before = store.state.current_stocks

        store.apply_cycle(CycleResult(stocks=None, errors=["Failed to fetch any stock data"]))
        assert store.state.current_stocks == before

    def test_successful_cycle_replaces_values(self, store: ConfigStore) -> None:
        store.add_custom_source(SOURCE)
        store.apply_cycle(CycleResult(
            stocks=[Stock(symbol="MSFT", price=2.0)],
            custom_values={"btc": CustomDataValue(value=5)},
        ))
        assert [s.symbol for s in store.state.current_stocks] == ["MSFT"]
        assert store.state.custom_values["btc"].value == 5

    def test_values_for_removed_source_are_dropped(self, store: ConfigStore) -> None:
        store.apply_cycle(CycleResult(
            stocks=[], custom_values={"ghost": CustomDataValue(value=1)},
        ))
        assert store.state.custom_values == {}

    def test_rotation_and_loading_do_not_persist(self, config_path) -> None:
        store = ConfigStore(path=config_path)
        store.advance_rotation()
        store.set_loading(True)
        assert store.state.rotation_index == 1
        assert store.state.is_loading
        assert not config_path.exists()

    def test_rotation_wraps_as_entries_are_removed(self, populated_state) -> None:
        """The cursor is never reset; it wraps against whatever count is left."""
        state = populated_state.model_copy(update={
            "rotation_index": 7,
            "config": populated_state.config.model_copy(update={"display_mode": "cycle"}),
        })
        store = ConfigStore(state=state)

        steps = [
            (None, 1, "MSFT $410.00 -0.6%"),
            (lambda: store.remove_stock("MSFT"), 1, "Bitcoin 64251"),
            (lambda: store.remove_custom_source("btc"), 0, "Apple $190.50 1.2%"),
            (lambda: store.remove_stock("AAPL"), None, "No data"),
        ]
        for remove, index, summary in steps:
            if remove is not None:
                remove()
            log.info("Rotation %d → %s / %r",
                     store.state.rotation_index, current_cycle_index(store.state),
                     summary_line(store.state))
            assert store.state.rotation_index == 7
            assert current_cycle_index(store.state) == index
            assert summary_line(store.state) == summary


# ══════════════════════════════════════════════════════════════════
# 6. SUBSCRIPTIONS
# ══════════════════════════════════════════════════════════════════


class TestSubscriptions:

    def test_listener_gets_old_and_new(self, store: ConfigStore) -> None:
        seen = []
        store.subscribe(lambda old, new: seen.append((old.config.symbols, new.config.symbols)))
        store.add_stock("NVDA")
        assert seen == [(list(DEFAULT_SYMBOLS), [*DEFAULT_SYMBOLS, "NVDA"])]

    def test_unsubscribe(self, store: ConfigStore) -> None:
        listener = MagicMock()
        unsubscribe = store.subscribe(listener)
        unsubscribe()
        store.add_stock("NVDA")
        listener.assert_not_called()

    def test_failing_listener_does_not_break_commit(self, store: ConfigStore) -> None:
        store.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        store.add_stock("NVDA")
        assert "NVDA" in store.config.symbols


# ══════════════════════════════════════════════════════════════════
# 7. IMPORT / EXPORT / PERSISTENCE
# ══════════════════════════════════════════════════════════════════


class TestImportExport:

    def test_export_shape(self, store: ConfigStore) -> None:
        store.add_custom_source(SOURCE)
        doc = store.export_config()
        log.info("Exported: %s", json.dumps(doc))
        assert set(doc) == {
            "symbols", "aliases", "customData", "displayMode", "valueDisplay",
            "stockValueDisplays", "entrySpacing", "symbolDisplay",
            "globalDecimals", "stockDecimals", "refreshInterval", "autostart",
        }
        assert "previousPath" not in doc["customData"][0]

    def test_export_import_round_trip(self, store: ConfigStore) -> None:
        store.add_stock("NVDA", alias="Nvidia")
        store.add_custom_source({**SOURCE, "previousPath": "data.open"})
        store.update_settings({"displayMode": "cycle", "refreshInterval": 60})
        store.set_entry_decimals("btc", 3)
        doc = store.export_config()

        other = ConfigStore()
        other.import_config(doc)
        assert other.export_config() == doc

    def test_missing_fields_take_defaults(self, store: ConfigStore) -> None:
        store.update_settings({"displayMode": "cycle"})
        result = store.import_config({"symbols": ["nvda"]})
        assert store.config.symbols == ["NVDA"]
        assert store.config.display_mode == "all"
        assert result["warnings"] == []

    def test_bad_fields_fall_back_individually(self) -> None:
        config, warnings = config_from_document({
            "symbols": ["AAPL", "bad symbol", "aapl"],
            "displayMode": "sideways",
            "refreshInterval": 5,
            "globalDecimals": 3,
            "customData": [SOURCE, {"name": "x"}],
            "stockDecimals": {"AAPL": 99},
        })
        log.info("Warnings: %s", warnings)
        assert config.symbols == ["AAPL"]
        assert config.display_mode == "all"
        assert config.refresh_interval == 30
        assert config.global_decimals == 3
        assert [s.name for s in config.custom_data] == ["btc"]
        assert config.stock_decimals == {}
        assert len(warnings) >= 5

    def test_non_object_raises(self, store: ConfigStore) -> None:
        before = store.state
        with pytest.raises(ImportFailure):
            store.import_config(["AAPL"])
        assert store.state is before

    def test_import_clears_runtime_values(self, store: ConfigStore) -> None:
        store.set_stocks([Stock(symbol="AAPL", price=1.0)])
        store.import_config({})
        assert store.state.current_stocks == []
        assert store.config == DashboardConfig()

    def test_save_and_load(self, config_path) -> None:
        store = ConfigStore(path=config_path)
        store.add_stock("NVDA")
        assert config_path.exists()
        assert json.loads(config_path.read_text())["symbols"][-1] == "NVDA"

        fresh = ConfigStore(path=config_path)
        assert fresh.load()["status"] == "imported"
        assert fresh.config.symbols[-1] == "NVDA"

    def test_load_missing_file(self, config_path) -> None:
        store = ConfigStore(path=config_path)
        assert store.load() == {"status": "defaults"}
        assert store.config == DashboardConfig()

    def test_load_corrupt_file(self, config_path) -> None:
        config_path.write_text("{not json", encoding="utf-8")
        store = ConfigStore(path=config_path)
        assert store.load()["status"] == "defaults"
        assert store.config.symbols == list(DEFAULT_SYMBOLS)
