"""
Interval Scheduler with In-Flight Guard

Provides ScheduledLoop, which fires an async callback at a fixed interval
and never lets two executions of the same loop overlap.

Each tick launches the callback as its own task. If the previous execution
is still running when the next tick is due, that tick is skipped and logged
instead of queueing a second concurrent execution. Ticks are scheduled
relative to the original schedule, not to when the callback finished.

Usage:
    async def poll_once():
        ...

    loop = ScheduledLoop(2.0, poll_once, name="device-1")
    await loop.start()

    # Later:
    loop.stop()               # no further ticks; a running cycle completes
    await loop.wait_idle()
"""

import asyncio
import time
from typing import Awaitable, Callable

from gateway.common.logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class ScheduledLoop:
    """
    Fixed-interval scheduler with at-most-one in-flight execution.

    Attributes:
        interval: The interval in seconds between ticks
        callback: Async function to call each tick
        name: Identifier used in logs and stats
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
        fire_immediately: bool = True,
    ):
        """
        Initialize a scheduled loop.

        Args:
            interval_seconds: Time between ticks (supports sub-second)
            callback: Async function to call each tick
            name: Name for logging/identification
            fire_immediately: Fire the first tick on start instead of
                after one interval
        """
        if interval_seconds <= 0:
            raise ValueError(f"Interval must be positive, got {interval_seconds}")

        self.interval = interval_seconds
        self.callback = callback
        self.name = name
        self.fire_immediately = fire_immediately

        self._next_run: float = 0
        self._running = False
        self._task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None

        # Observability metrics
        self._drift_total: float = 0
        self._execution_count: int = 0
        self._skipped_ticks: int = 0
        self._missed_intervals: int = 0
        self._last_execution_time: float = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        """True while an execution started by this loop is still running."""
        return self._inflight is not None and not self._inflight.done()

    async def start(self) -> None:
        """Start the scheduled loop in a background task."""
        self.launch()

    def launch(self) -> None:
        """Start ticking from synchronous code running inside the event loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"schedule:{self.name}")

    def stop(self) -> None:
        """
        Stop ticking.

        An execution already in flight is not cancelled; it runs to
        completion. Use wait_idle() to wait for it.
        """
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait for the in-flight execution (if any) to finish."""
        task = self._inflight
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Scheduler '{self.name}' still busy after {timeout}s")

    async def _run(self) -> None:
        """Main loop that fires ticks at fixed intervals."""
        self._next_run = time.monotonic()
        if not self.fire_immediately:
            self._next_run += self.interval

        while self._running:
            sleep_duration = self._next_run - time.monotonic()
            if sleep_duration > 0:
                try:
                    await asyncio.sleep(sleep_duration)
                except asyncio.CancelledError:
                    break

            if not self._running:
                break

            self._drift_total += max(0.0, time.monotonic() - self._next_run)
            self._fire()

            # Skip missed intervals to catch up (don't queue up missed ticks)
            now = time.monotonic()
            skipped = 0
            while self._next_run <= now:
                self._next_run += self.interval
                skipped += 1

            # First skip is expected (the tick we just fired)
            if skipped > 1:
                self._missed_intervals += skipped - 1
                logger.warning(
                    f"Scheduler '{self.name}' missed {skipped - 1} intervals"
                )

    def _fire(self) -> None:
        """Launch one execution unless the previous one is still running."""
        if self.in_flight:
            self._skipped_ticks += 1
            logger.warning(
                f"Scheduler '{self.name}' tick skipped: previous cycle still in flight",
                extra={"scheduler": self.name, "skipped_ticks": self._skipped_ticks},
            )
            return

        self._inflight = asyncio.create_task(
            self._execute(), name=f"cycle:{self.name}"
        )

    async def _execute(self) -> None:
        start = time.monotonic()
        try:
            await self.callback()
            self._execution_count += 1
        except Exception as e:
            logger.error(f"Scheduled callback '{self.name}' error: {e}", exc_info=True)
        finally:
            self._last_execution_time = time.monotonic() - start

    @property
    def drift_seconds(self) -> float:
        """Total accumulated tick lateness in seconds."""
        return self._drift_total

    @property
    def execution_count(self) -> int:
        """Total number of successful executions."""
        return self._execution_count

    @property
    def skipped_ticks(self) -> int:
        """Ticks dropped because the previous execution was still running."""
        return self._skipped_ticks

    @property
    def last_execution_time(self) -> float:
        """Duration of last callback execution in seconds."""
        return self._last_execution_time

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "running": self._running,
            "in_flight": self.in_flight,
            "execution_count": self._execution_count,
            "skipped_ticks": self._skipped_ticks,
            "missed_intervals": self._missed_intervals,
            "drift_total_s": round(self._drift_total, 3),
            "last_execution_s": round(self._last_execution_time, 3),
        }


class SchedulerGroup:
    """
    Manage multiple scheduled loops together, keyed by name.

    Provides a single interface to start/stop loops and aggregate
    their statistics.
    """

    def __init__(self):
        self._schedulers: dict[str, ScheduledLoop] = {}

    def add(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
    ) -> ScheduledLoop:
        """Add a scheduler to the group, replacing (and stopping) any with the same name."""
        existing = self._schedulers.pop(name, None)
        if existing:
            existing.stop()
        scheduler = ScheduledLoop(interval_seconds, callback, name)
        self._schedulers[name] = scheduler
        return scheduler

    def remove(self, name: str) -> ScheduledLoop | None:
        """Stop and forget a scheduler. Returns it so callers can wait_idle()."""
        scheduler = self._schedulers.pop(name, None)
        if scheduler:
            scheduler.stop()
        return scheduler

    async def start_all(self) -> None:
        """Start all schedulers."""
        for scheduler in self._schedulers.values():
            await scheduler.start()

    def stop_all(self) -> None:
        """Stop all schedulers."""
        for scheduler in self._schedulers.values():
            scheduler.stop()

    async def wait_idle_all(self, timeout: float | None = None) -> None:
        """Wait for every in-flight execution to finish."""
        await asyncio.gather(
            *(s.wait_idle(timeout) for s in list(self._schedulers.values()))
        )

    def get_stats(self) -> dict:
        """Get aggregated statistics for all schedulers."""
        return {
            name: scheduler.get_stats()
            for name, scheduler in self._schedulers.items()
        }

    def __contains__(self, name: str) -> bool:
        return name in self._schedulers

    def __len__(self) -> int:
        return len(self._schedulers)
