"""Polling scheduler — APScheduler-driven refresh and rotation.

Two independent interval jobs:
  - poll   (every ``refreshInterval`` s): fetch every source, write the
           whole cycle back to the store in one transition
  - rotate (every ROTATION_INTERVAL s): advance the cycle-mode cursor

At most one poll cycle is ever in flight. A manual refresh that arrives
while a cycle is running waits for that cycle instead of starting another.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from candlebar.config import settings
from candlebar.models.dashboard import DashboardState
from candlebar.services.config_store import ConfigStore
from candlebar.services.formatter import current_cycle_index
from candlebar.services.source_fetcher import CycleResult, SourceFetcher
from candlebar.utils.logger import logger

IDLE = "idle"
POLLING = "polling"


class PollingScheduler:
    """Runs poll cycles on a fixed interval and on demand."""

    def __init__(
        self,
        store: ConfigStore,
        fetcher: SourceFetcher,
        rotation_interval: float | None = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.rotation_interval = rotation_interval or settings.ROTATION_INTERVAL
        self._scheduler: AsyncIOScheduler | None = None
        self._cycle_task: asyncio.Task | None = None
        self._unsubscribe = None
        self.is_running = False
        self.phase = IDLE
        self.last_updated: datetime | None = None
        self.last_result: CycleResult | None = None
        self.cycle_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> dict:
        """Register the poll and rotation jobs and start ticking."""
        if self.is_running:
            return {"status": "already_running"}

        self._scheduler = AsyncIOScheduler()
        interval = self.store.config.refresh_interval

        # First poll fires immediately, then every `interval` seconds
        self._scheduler.add_job(
            self._poll_tick,
            IntervalTrigger(seconds=interval),
            id="poll",
            name="Poll Sources",
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._rotate_tick,
            IntervalTrigger(seconds=self.rotation_interval),
            id="rotate",
            name="Rotate Summary",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self._unsubscribe = self.store.subscribe(self._on_store_change)
        self._scheduler.start()
        self.is_running = True
        logger.info(
            "[Poller] Started — poll every %ds, rotate every %.0fs",
            interval, self.rotation_interval,
        )
        return {"status": "started", "jobs": len(self._scheduler.get_jobs())}

    def stop(self) -> dict:
        """Stop both jobs. An in-flight cycle is left to settle on its own."""
        if not self.is_running or not self._scheduler:
            return {"status": "not_running"}

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        self.is_running = False
        logger.info("[Poller] Stopped")
        return {"status": "stopped"}

    # ------------------------------------------------------------------
    # Timing (derived, never tracked separately)
    # ------------------------------------------------------------------

    def seconds_since_update(self, now: datetime | None = None) -> int | None:
        if self.last_updated is None:
            return None
        now = now or datetime.now()
        return max(0, int((now - self.last_updated).total_seconds()))

    def time_until_next_refresh(self, now: datetime | None = None) -> int:
        """interval - elapsed since the last completed cycle, floored at 0."""
        elapsed = self.seconds_since_update(now)
        if elapsed is None:
            return 0
        return max(0, self.store.config.refresh_interval - elapsed)

    def get_status(self, now: datetime | None = None) -> dict:
        """Scheduler state for the host / API."""
        jobs = []
        if self._scheduler and self.is_running:
            for job in self._scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": next_run.isoformat() if next_run else None,
                })

        return {
            "is_running": self.is_running,
            "phase": self.phase,
            "refresh_interval": self.store.config.refresh_interval,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "seconds_since_update": self.seconds_since_update(now),
            "time_until_next_refresh": self.time_until_next_refresh(now),
            "cycle_count": self.cycle_count,
            "last_errors": list(self.last_result.errors) if self.last_result else [],
            "jobs": jobs,
        }

    # ------------------------------------------------------------------
    # Poll cycles
    # ------------------------------------------------------------------

    async def refresh(self) -> dict:
        """Manual refresh. Joins the running cycle if there is one."""
        return await self.run_cycle()

    async def run_cycle(self) -> dict:
        if self._cycle_task is not None and not self._cycle_task.done():
            logger.info("[Poller] Cycle already in flight — coalescing")
            await asyncio.shield(self._cycle_task)
            return {"status": "coalesced"}

        self._cycle_task = asyncio.ensure_future(self._do_cycle())
        return await asyncio.shield(self._cycle_task)

    async def _do_cycle(self) -> dict:
        self.phase = POLLING
        cfg = self.store.config  # snapshot for the whole cycle
        self.store.set_loading(True)
        try:
            result = await self.fetcher.fetch_all(list(cfg.symbols), list(cfg.custom_data))
            self.store.apply_cycle(result)
            self.last_updated = datetime.now()
            self.last_result = result
            self.cycle_count += 1
        finally:
            self.phase = IDLE
            self.store.set_loading(False)

        return {
            "status": "completed",
            "elapsed_s": result.elapsed_s,
            "stocks_updated": not result.stock_batch_failed,
            "sources": len(result.custom_values),
            "errors": result.errors,
        }

    async def _poll_tick(self) -> None:
        """Scheduled poll. Failures are logged, never raised into APScheduler."""
        try:
            await self.run_cycle()
        except Exception:
            logger.exception("[Poller] Poll cycle failed")

    async def _rotate_tick(self) -> None:
        state = self.store.state
        if state.config.display_mode != "cycle":
            return
        if current_cycle_index(state) is None:
            return
        self.store.advance_rotation()

    # ------------------------------------------------------------------
    # Config changes
    # ------------------------------------------------------------------

    def _on_store_change(self, old: DashboardState, new: DashboardState) -> None:
        interval = new.config.refresh_interval
        if interval == old.config.refresh_interval:
            return
        if self._scheduler and self.is_running:
            # Applies from the next scheduling decision; a running cycle is untouched
            self._scheduler.reschedule_job("poll", trigger=IntervalTrigger(seconds=interval))
            logger.info("[Poller] Refresh interval now %ds", interval)
