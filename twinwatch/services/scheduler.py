from __future__ import annotations

import asyncio
import logging
from typing import Optional

from twinwatch.services.faults import FaultDetectionService

logger = logging.getLogger("twinwatch.scheduler")


async def sweep_loop(
    service: FaultDetectionService,
    interval_minutes: float,
    window_seconds: Optional[int] = None,
) -> None:
    """Runs the fault sweep every ``interval_minutes``; an interval <= 0 runs it once."""
    interval = max(0.0, interval_minutes) * 60
    while True:
        try:
            logger.info("Running fault detection check...")
            await service.run_scheduled_check(window_seconds)
        except Exception:
            logger.exception("Error in fault detection sweep")
        if interval <= 0:
            break
        await asyncio.sleep(interval)


class FaultSweepScheduler:
    """Owns the background task that drives ``sweep_loop`` inside the API process."""

    def __init__(self, service: FaultDetectionService, interval_minutes: float, window_seconds: Optional[int] = None):
        self._service = service
        self._interval_minutes = interval_minutes
        self._window_seconds = window_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            sweep_loop(self._service, self._interval_minutes, self._window_seconds)
        )
        logger.info("Fault sweep scheduled every %s minutes", self._interval_minutes)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
