"""DashboardService — wires store, fetcher, poller and host together.

Usage (from main.py):
    service = DashboardService()
    service.start()          # load config, publish, start polling
    ...
    await service.stop()
"""

from __future__ import annotations

from datetime import datetime

from candlebar.collectors.json_api import close_shared_client
from candlebar.config import settings
from candlebar.services.config_store import ConfigStore
from candlebar.services.formatter import (
    current_cycle_index,
    describe_last_updated,
    format_dashboard,
    render_list,
)
from candlebar.services.host import ConsoleHost, HostShell, SummaryPublisher
from candlebar.services.poller import PollingScheduler
from candlebar.services.source_fetcher import SourceFetcher
from candlebar.utils.logger import logger


class DashboardService:
    """Owns one instance of every component for the process lifetime."""

    def __init__(
        self,
        store: ConfigStore | None = None,
        fetcher: SourceFetcher | None = None,
        host: HostShell | None = None,
        poller: PollingScheduler | None = None,
    ) -> None:
        if store is None:
            store = ConfigStore(
                path=settings.CONFIG_PATH if settings.PERSIST_CONFIG else None,
            )
        self.store = store
        self.fetcher = fetcher or SourceFetcher()
        self.host = host or ConsoleHost()
        self.publisher = SummaryPublisher(self.host)
        self.poller = poller or PollingScheduler(self.store, self.fetcher)
        self._unsubscribe = None

    # ── Lifecycle ─────────────────────────────────────────────────

    def start(self) -> dict:
        loaded = self.store.load()
        self._sync_autostart()
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self.publisher.on_change)
        self.publisher.publish(self.store.state)
        poller = self.poller.start()
        logger.info(
            "[Dashboard] Started with %d symbols, %d sources (%s)",
            len(self.store.config.symbols),
            len(self.store.config.custom_data),
            loaded.get("status"),
        )
        return {"status": "started", "config": loaded.get("status"), "poller": poller}

    async def stop(self) -> dict:
        result = self.poller.stop()
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        await close_shared_client()
        return result

    def _sync_autostart(self) -> None:
        """The stored flag wins; ask the host to match it."""
        wanted = self.store.config.autostart
        try:
            if self.host.is_autostart_enabled() != wanted:
                self.host.set_autostart(wanted)
        except Exception:
            logger.exception("[Dashboard] Could not sync autostart with host")

    # ── Operations that span components ───────────────────────────

    def set_autostart(self, enabled: bool) -> dict:
        """Ask the host first, then record what it actually did."""
        effective = self.host.set_autostart(enabled)
        result = self.store.set_autostart(bool(effective))
        return {**result, "autostart": bool(effective)}

    def update_settings(self, changes: dict) -> dict:
        """Validate everything, ask the host about autostart, then commit once.

        Nothing reaches the host or the store when any value is rejected.
        """
        self.store.validate_settings(changes)
        changes = dict(changes)
        if "autostart" in changes:
            changes["autostart"] = bool(self.host.set_autostart(changes["autostart"]))
        return self.store.update_settings(changes)

    def view(self, now: datetime | None = None) -> dict:
        """Everything a repaint needs: items, summary and timing."""
        now = now or datetime.now()
        state = self.store.state
        view = format_dashboard(state)
        return {
            "summary": view.summary,
            "items": [item.model_dump() for item in view.items],
            "text": render_list(view),
            "display_mode": view.display_mode,
            "entry_spacing": view.entry_spacing,
            "cycle_index": current_cycle_index(state),
            "is_loading": state.is_loading,
            "last_updated_text": describe_last_updated(self.poller.last_updated, now),
            "time_until_next_refresh": self.poller.time_until_next_refresh(now),
        }
