"""In-process periodic trigger for refresh ticks."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Optional, Sequence

from linkrefresh.config.settings import settings
from linkrefresh.crawlers.log_sanitizer import sanitize_for_log, sanitize_log_extra
from linkrefresh.orchestrator_refresh import RefreshOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class TickStatus:
    """Outcome of the most recent tick, exposed to operational tooling."""

    last_tick_at: Optional[datetime] = None
    records_processed: int = 0
    records_failed: int = 0
    records_skipped_rate_limited: int = 0
    records_due: int = 0
    running: bool = False
    last_error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "records_skipped_rate_limited": self.records_skipped_rate_limited,
            "records_due": self.records_due,
            "running": self.running,
            "last_error": self.last_error,
        }


class RefreshScheduler:
    """Fires a refresh tick every ``tick_seconds`` until asked to stop.

    Stopping is cooperative: once ``request_stop`` is called no further record
    is dispatched, while records already being refreshed finish and persist.
    """

    def __init__(
        self,
        orchestrator: RefreshOrchestrator | None = None,
        *,
        tick_seconds: float | None = None,
    ) -> None:
        self.orchestrator = orchestrator or RefreshOrchestrator()
        self._tick_seconds = tick_seconds or settings.REFRESH_TICK_SECONDS
        self._stop_event = asyncio.Event()
        self._tick_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self.status = TickStatus()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info("Refresh scheduler started", extra=sanitize_log_extra(tick_seconds=self._tick_seconds))

    def request_stop(self) -> None:
        self._stop_event.set()

    async def shutdown(self) -> None:
        self.request_stop()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Refresh scheduler stopped")

    async def run_tick(
        self,
        now: datetime | None = None,
        *,
        record_ids: Sequence[int] | None = None,
    ) -> dict[str, Any]:
        """Run one tick; ticks never overlap."""
        async with self._tick_lock:
            self.status.running = True
            tick_at = now or datetime.now(UTC)
            try:
                result = await self.orchestrator.run_tick(
                    tick_at,
                    record_ids=record_ids,
                    stop_event=self._stop_event,
                )
            except Exception as exc:
                sanitized_error = sanitize_for_log(str(exc), key="error")
                logger.exception("Refresh tick raised exception", extra=sanitize_log_extra(error=sanitized_error))
                result = {"success": False, "error": sanitized_error}
            finally:
                self.status.running = False

            self._record(tick_at, result)
            return result

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_tick()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._tick_seconds)

    def _record(self, tick_at: datetime, result: dict[str, Any]) -> None:
        self.status.last_tick_at = tick_at
        self.status.records_processed = int(result.get("records_processed", 0))
        self.status.records_failed = int(result.get("records_failed", 0))
        self.status.records_skipped_rate_limited = int(result.get("records_skipped_rate_limited", 0))
        self.status.records_due = int(result.get("records_due", 0))
        self.status.last_error = result.get("error")
