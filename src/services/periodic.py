"""
Wall-clock aligned periodic task runner.

Fires a coroutine function on a fixed cadence (e.g. every 15 minutes, or
hourly at :05). Each tick starts a run in the background; a tick that
fires while the previous run is still going is skipped and logged rather
than queued, so a slow run never causes a backlog.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

# Early wake-ups of asyncio.sleep land just short of the boundary that fired.
MIN_TICK_GAP_SECONDS = 1.0


def seconds_until_next(
    now: datetime,
    interval: timedelta,
    offset: timedelta = timedelta(0),
) -> float:
    """
    Seconds from ``now`` until the next boundary of ``interval`` shifted by ``offset``.

    Boundaries are aligned to the Unix epoch, so an hourly interval with a
    5 minute offset fires at :05 of every hour. Exactly on a boundary the
    next one is a full interval away; a boundary closer than
    MIN_TICK_GAP_SECONDS is passed over for the one after it.
    """
    period = interval.total_seconds()
    if period <= 0:
        raise ValueError("interval must be positive")

    phase = offset.total_seconds() % period
    elapsed = (now.timestamp() - phase) % period
    delay = period - elapsed
    if delay < MIN_TICK_GAP_SECONDS:
        delay += period
    return delay


class PeriodicTask:
    """
    Runs ``func`` on a cadence with single-flight semantics.

    Usage:
        task = PeriodicTask("sync_sweep", service.sync_due_sources, timedelta(minutes=15))
        await task.start()
        ...
        await task.stop()
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval: timedelta,
        offset: timedelta = timedelta(0),
        warmup_delay: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize periodic task.

        Args:
            name: Task name used in logs and metrics
            func: Coroutine function run on every tick
            interval: Cadence between ticks
            offset: Shift of the tick boundaries within the interval
            warmup_delay: Seconds after start() for one extra early run; None disables
            clock: Source of "now" (default: UTC wall clock)
        """
        self.name = name
        self._func = func
        self.interval = interval
        self.offset = offset
        self.warmup_delay = warmup_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._metrics = get_metrics()

        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._current: asyncio.Task | None = None

        self.runs = 0
        self.skipped_ticks = 0
        self.last_run_at: datetime | None = None
        self.last_result: Any = None
        self.last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        return self._current is not None and not self._current.done()

    @property
    def cadence(self) -> str:
        minutes = int(self.interval.total_seconds() // 60)
        offset = int(self.offset.total_seconds() // 60)
        if offset:
            return f"every {minutes} minutes (offset {offset} minutes)"
        return f"every {minutes} minutes"

    async def start(self) -> None:
        """Start the tick loop in the background."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._loop(), name=f"periodic_{self.name}")
        logger.info("Periodic task started", task=self.name, cadence=self.cadence)

    async def stop(self) -> None:
        """Stop ticking and wait for an in-flight run to finish."""
        self._running = False

        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        if self._current is not None:
            await asyncio.gather(self._current, return_exceptions=True)

        logger.info("Periodic task stopped", task=self.name)

    def tick(self) -> bool:
        """
        Start a run unless one is already in flight.

        Returns:
            True if a run was started, False if the tick was skipped
        """
        if self.in_flight:
            self.skipped_ticks += 1
            self._metrics.record_tick(self.name, "skipped")
            logger.warning("Previous run still in progress, skipping tick", task=self.name)
            return False
        self._current = asyncio.create_task(self._run(), name=f"{self.name}_run")
        return True

    async def run_now(self) -> Any:
        """
        Run immediately and wait for the result.

        Returns:
            The function's result, or None when skipped or failed
        """
        if not self.tick():
            return None
        return await self._current

    async def _run(self) -> Any:
        try:
            result = await self._func()
        except Exception as e:
            self.last_error = str(e)
            self._metrics.record_tick(self.name, "failed")
            logger.error("Periodic run failed", task=self.name, error=str(e), exc_info=True)
            return None
        finally:
            self.runs += 1
            self.last_run_at = self._clock()

        self.last_result = result
        self.last_error = None
        self._metrics.record_tick(self.name, "ran")
        return result

    async def _loop(self) -> None:
        try:
            if self.warmup_delay is not None:
                await asyncio.sleep(self.warmup_delay)
                self.tick()

            while self._running:
                delay = seconds_until_next(self._clock(), self.interval, self.offset)
                await asyncio.sleep(delay)
                self.tick()
        except asyncio.CancelledError:
            pass

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "in_flight": self.in_flight,
            "cadence": self.cadence,
            "runs": self.runs,
            "skipped_ticks": self.skipped_ticks,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }
