# tracedock/services/cleanup.py
"""
Background maintenance tasks.

Two asyncio tasks live for the lifetime of the app:

1) Retention cleanup: runs `Repository.run_cleanup()` every
   `cleanupIntervalHours` while `cleanupEnabled` is on. Started in the app
   lifespan; restarted when PATCH /settings changes either value.
2) Stale span sweep: every SWEEP_INTERVAL_SECONDS, force-ends spans still
   running after SPAN_TIMEOUT_MS (disabled when the timeout is 0).

Failures inside a tick are logged and the loop keeps going; a broken
database should not kill the scheduler for good.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from tracedock.db.repository import Repository
from tracedock.schemas.settings import RetentionSettings

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 60.0


class CleanupScheduler:
    def __init__(
        self,
        repository: Repository,
        *,
        span_timeout_ms: int = 0,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ):
        self.repository = repository
        self.span_timeout_ms = span_timeout_ms
        self.sweep_interval = sweep_interval

        self._cleanup_task: Optional[asyncio.Task] = None
        self._sweep_task: Optional[asyncio.Task] = None
        self._interval_hours: Optional[int] = None

    @property
    def running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    @property
    def interval_hours(self) -> Optional[int]:
        return self._interval_hours

    async def start(self) -> None:
        """Start both loops according to the stored retention settings."""
        settings = await self.repository.get_retention_settings()
        self._start_cleanup(settings)

        if self.span_timeout_ms > 0 and self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="tracedock-span-sweep")
            logger.info("Stale span sweep every %.0fs (timeout=%d ms)", self.sweep_interval, self.span_timeout_ms)

    async def restart(self, settings: Optional[RetentionSettings] = None) -> None:
        """Re-read (or take) the settings and restart the cleanup loop only."""
        if settings is None:
            settings = await self.repository.get_retention_settings()
        await self._stop_cleanup()
        self._start_cleanup(settings)

    async def stop(self) -> None:
        await self._stop_cleanup()
        if self._sweep_task is not None:
            await _cancel(self._sweep_task)
            self._sweep_task = None

    def _start_cleanup(self, settings: RetentionSettings) -> None:
        if not settings.cleanup_enabled:
            self._interval_hours = None
            logger.info("Retention cleanup disabled")
            return

        self._interval_hours = max(int(settings.cleanup_interval_hours), 1)
        self._cleanup_task = asyncio.create_task(
            self._cleanup_loop(self._interval_hours * 3600.0), name="tracedock-cleanup"
        )
        logger.info("Retention cleanup scheduled every %d hour(s)", self._interval_hours)

    async def _stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            await _cancel(self._cleanup_task)
            self._cleanup_task = None

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.run_cleanup_once()

    async def run_cleanup_once(self) -> None:
        try:
            await self.repository.run_cleanup()
        except SQLAlchemyError:
            logger.exception("Scheduled cleanup failed")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            await self.sweep_once()

    async def sweep_once(self) -> int:
        try:
            return await self.repository.end_stale_spans(self.span_timeout_ms)
        except SQLAlchemyError:
            logger.exception("Stale span sweep failed")
            return 0


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
