"""
Background Task Supervisor

Runs long-lived coroutines and restarts them when they crash, so an
unexpected error inside one subscriber is logged instead of silently
ending it or propagating to the host process.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable

from diamond.common.logging_setup import get_service_logger

logger = get_service_logger("supervisor")

DEFAULT_RESTART_COOLDOWN_S = 1.0


class SupervisedTask:
    """
    A supervised asyncio task.

    The target coroutine function is awaited in a loop: a normal return
    ends supervision, an exception is logged and the target is started
    again after restart_cooldown_s. max_restarts=None restarts forever.
    """

    def __init__(
        self,
        name: str,
        target: Callable[[], Awaitable[None]],
        restart_cooldown_s: float = DEFAULT_RESTART_COOLDOWN_S,
        max_restarts: int | None = None,
        on_failure: Callable[[BaseException], None] | None = None,
    ):
        self.name = name
        self.target = target
        self.restart_cooldown_s = restart_cooldown_s
        self.max_restarts = max_restarts
        self.on_failure = on_failure

        self.restart_count = 0
        self.last_error: str | None = None
        self.last_restart: datetime | None = None

        self._running = False
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        """Start the supervised task"""
        if self.is_running():
            logger.warning(f"Task {self.name} already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._supervise(), name=f"supervised:{self.name}")
        logger.debug(f"Started task {self.name}")

    async def stop(self) -> None:
        """Cancel the task and wait for it to finish"""
        self._running = False
        task = self._task
        self._task = None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Stopped task {self.name}")

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _supervise(self) -> None:
        while self._running:
            try:
                await self.target()
                logger.debug(f"Task {self.name} finished")
                return
            except asyncio.CancelledError as e:
                if not self._running or asyncio.current_task().cancelling():
                    raise
                # Cancellation leaked out of the target, not a stop()
                self._record_failure(e)
            except Exception as e:
                self._record_failure(e)

            if self.max_restarts is not None and self.restart_count > self.max_restarts:
                logger.critical(
                    f"Task {self.name} failed after {self.max_restarts} restarts, giving up"
                )
                return

            logger.warning(
                f"Restarting {self.name} in {self.restart_cooldown_s:.1f}s "
                f"(restart {self.restart_count})"
            )
            await asyncio.sleep(self.restart_cooldown_s)

    def _record_failure(self, error: BaseException) -> None:
        self.last_error = str(error) or type(error).__name__
        self.restart_count += 1
        self.last_restart = datetime.now(timezone.utc)
        logger.error(
            f"Task {self.name} crashed: {self.last_error}",
            exc_info=error,
            extra={"task": self.name, "restart_count": self.restart_count},
        )
        if self.on_failure:
            try:
                self.on_failure(error)
            except Exception as hook_error:
                logger.error(f"Failure hook for {self.name} raised: {hook_error}")

    def to_dict(self) -> dict:
        """Convert to dictionary for status reporting"""
        return {
            "name": self.name,
            "is_running": self.is_running(),
            "restart_count": self.restart_count,
            "last_error": self.last_error,
            "last_restart": self.last_restart.isoformat() if self.last_restart else None,
        }
