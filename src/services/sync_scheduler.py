"""
Sync scheduler - runs the due-source sweep on a fixed cadence.

Fires SyncService.sync_due_sources() every sweep_interval_minutes plus
one warm-up sweep shortly after start. A tick that arrives while a sweep
is still running is skipped, never queued.
"""

from datetime import timedelta
from typing import Any

import structlog

from src.services.periodic import PeriodicTask
from src.sync.config import SyncConfig
from src.sync.service import SweepResult, SyncService

logger = structlog.get_logger(__name__)


class SyncScheduler:
    """
    Periodic driver for due-source sweeps.

    Usage:
        scheduler = SyncScheduler(service)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self, service: SyncService, config: SyncConfig | None = None):
        self._service = service
        self._config = config or service.config
        self._task = PeriodicTask(
            name="sync_sweep",
            func=service.sync_due_sources,
            interval=timedelta(minutes=self._config.sweep_interval_minutes),
            warmup_delay=self._config.warmup_delay_seconds,
        )

    @property
    def task(self) -> PeriodicTask:
        return self._task

    async def start(self) -> None:
        await self._task.start()
        logger.info(
            "Sync scheduler started",
            cadence=self._task.cadence,
            warmup_delay_seconds=self._config.warmup_delay_seconds,
        )

    async def stop(self) -> None:
        await self._task.stop()
        logger.info("Sync scheduler stopped")

    async def run_now(self) -> SweepResult | None:
        """Run a sweep immediately; None when one is already running."""
        return await self._task.run_now()

    def get_status(self) -> dict[str, Any]:
        last_result = self._task.last_result
        return {
            "running": self._task.running,
            "syncing": self._task.in_flight,
            "cadence": self._task.cadence,
            "active_syncs": self._service.active_syncs(),
            "last_run_at": (
                self._task.last_run_at.isoformat() if self._task.last_run_at else None
            ),
            "last_result": last_result.to_dict() if last_result is not None else None,
            "last_error": self._task.last_error,
            "skipped_ticks": self._task.skipped_ticks,
        }
