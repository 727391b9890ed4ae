"""
Fixed-Interval Scheduler

Provides ScheduledLoop, which fires an async callback at exact
intervals, accounting for callback execution time to prevent drift.

Unlike asyncio.sleep()-based loops, this scheduler:
- Fires at exact wall-clock boundaries
- Never overlaps two executions of the same callback
- Skips missed intervals instead of queueing them
- Catches and logs callback errors so one bad tick never ends the loop

Usage:
    async def tick():
        ...

    scheduler = ScheduledLoop(5.0, tick, name="config.poll")
    await scheduler.start()

    # Later:
    await scheduler.aclose()
"""

import asyncio
import time
from typing import Awaitable, Callable

from .logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class ScheduledLoop:
    """
    Interval scheduler that accounts for execution time.

    Attributes:
        interval: The interval in seconds between executions
        callback: Async function to call each interval
        run_immediately: Fire once right after start instead of waiting
            for the first boundary
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
        run_immediately: bool = False,
        align_to_interval: bool = True,
    ):
        self.interval = interval_seconds
        self.callback = callback
        self.name = name
        self.run_immediately = run_immediately
        self.align_to_interval = align_to_interval

        self._next_run: float = 0
        self._running = False
        self._task: asyncio.Task | None = None

        # Observability metrics
        self._drift_total: float = 0
        self._skipped_count: int = 0
        self._execution_count: int = 0
        self._error_count: int = 0
        self._last_execution_time: float = 0
        self._last_drift_ms: float = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduled loop in a background task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"scheduler:{self.name}")

    async def run(self) -> None:
        """
        Run the loop in the calling task until stop().

        For use as a SupervisedTask target; start() is the standalone way.
        """
        self._running = True
        await self._run()

    def stop(self) -> None:
        """Stop the scheduled loop without waiting for it."""
        self._running = False
        if self._task:
            self._task.cancel()

    async def aclose(self) -> None:
        """Stop the loop and wait until its task has finished."""
        task = self._task
        self.stop()
        self._task = None
        if task:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _first_run(self, now: float) -> float:
        if self.run_immediately:
            return now
        if self.align_to_interval:
            # Align first run to next interval boundary
            return ((now // self.interval) + 1) * self.interval
        return now + self.interval

    async def _run(self) -> None:
        """Main loop that fires callback at exact intervals."""
        self._next_run = self._first_run(time.time())

        while self._running:
            now = time.time()

            sleep_duration = self._next_run - now
            if sleep_duration > 0:
                await asyncio.sleep(sleep_duration)

            if not self._running:
                break

            # Track drift (how late we are)
            actual_time = time.time()
            drift = actual_time - self._next_run

            if drift > max(30, self.interval * 2):
                # Clock jump (suspend/resume, NTP correction), not real drift
                logger.info(
                    f"Scheduler '{self.name}' clock jump detected ({drift:.0f}s), realigning"
                )
                self._last_drift_ms = 0
            else:
                self._drift_total += max(0, drift)
                self._last_drift_ms = drift * 1000

            try:
                start = time.time()
                await self.callback()
                self._last_execution_time = time.time() - start
                self._execution_count += 1
            except asyncio.CancelledError:
                if not self._running or asyncio.current_task().cancelling():
                    raise
                # Raised by the callback itself, not a stop() of this loop
                self._error_count += 1
                logger.error(f"Scheduled callback '{self.name}' was cancelled", exc_info=True)
            except Exception as e:
                self._error_count += 1
                logger.error(
                    f"Scheduled callback '{self.name}' error: {e}",
                    exc_info=True,
                )

            # Skip missed intervals to catch up
            now = time.time()
            skipped = 0
            while self._next_run <= now:
                self._next_run += self.interval
                skipped += 1

            # First skip is expected (the one we just executed)
            if skipped > 1:
                self._skipped_count += skipped - 1
                logger.warning(
                    f"Scheduler '{self.name}' skipped {skipped - 1} intervals "
                    f"(execution took {self._last_execution_time:.3f}s)"
                )

    @property
    def drift_seconds(self) -> float:
        """Total accumulated drift in seconds."""
        return self._drift_total

    @property
    def skipped_count(self) -> int:
        return self._skipped_count

    @property
    def execution_count(self) -> int:
        """Total number of successful executions."""
        return self._execution_count

    @property
    def error_count(self) -> int:
        return self._error_count

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "running": self._running,
            "execution_count": self._execution_count,
            "error_count": self._error_count,
            "drift_total_s": round(self._drift_total, 3),
            "drift_last_ms": round(self._last_drift_ms, 1),
            "skipped_count": self._skipped_count,
            "last_execution_s": round(self._last_execution_time, 3),
        }
