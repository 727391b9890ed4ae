"""
Configuration Poll Loop

Every poll interval, asks the resolved servers for the current value of
one key, compares its fingerprint to the last known value and, on
change, persists it, publishes it to the manager and notifies watchers.
"""

import asyncio
import inspect
from datetime import datetime, timezone
from typing import Callable, Sequence

from diamond.common.exceptions import FetchFailedError, StorageUnavailableError, WatcherError
from diamond.common.logging_setup import get_service_logger, log_config_change, log_fetch
from diamond.common.models import (
    ConfigKey,
    ConfigValue,
    ConfigWatcher,
    PollPhase,
    SubscriberState,
)
from diamond.common.scheduler import ScheduledLoop
from diamond.storage.snapshot import SnapshotStore
from diamond.supervisor import SupervisedTask

from .sync import ConfigFetcher

logger = get_service_logger("config.poll")


def _watcher_name(watcher: ConfigWatcher) -> str:
    return getattr(watcher, "__qualname__", None) or repr(watcher)


class ConfigPollLoop:
    """
    Fixed-interval poll loop for one ConfigKey.

    Ticks never overlap, so watcher notifications are delivered in
    detection order and a watcher is never invoked concurrently with
    itself.
    """

    def __init__(
        self,
        key: ConfigKey,
        fetcher: ConfigFetcher,
        address_source: Callable[[], Sequence[str]],
        store: SnapshotStore,
        watchers: Sequence[ConfigWatcher] = (),
        on_change: Callable[[ConfigValue], None] | None = None,
        interval_s: float = 5.0,
        restart_cooldown_s: float = 1.0,
    ):
        self.key = key
        self.interval_s = interval_s

        self._fetcher = fetcher
        self._address_source = address_source
        self._store = store
        self._watchers = tuple(watchers)
        self._on_change = on_change

        self._last_value: ConfigValue | None = None
        self._last_changed_at: datetime | None = None
        self._warned_no_servers = False

        self.state = SubscriberState.CREATED
        self.phase = PollPhase.IDLE
        self.last_error: str | None = None
        self.last_watcher_error: str | None = None

        # Counters
        self._tick_count = 0
        self._change_count = 0
        self._failed_ticks = 0
        self._skipped_ticks = 0
        self._watcher_failures = 0

        self._timer = ScheduledLoop(
            interval_s,
            self.tick,
            name="config.poll",
            run_immediately=True,
        )
        self._task = SupervisedTask(
            "config.poll",
            self._timer.run,
            restart_cooldown_s=restart_cooldown_s,
        )

    @property
    def last_value(self) -> ConfigValue | None:
        return self._last_value

    async def start(self) -> None:
        """Start polling; the first tick runs immediately"""
        if self._task.is_running():
            return
        self.state = SubscriberState.RUNNING
        self._task.start()
        logger.info(
            f"Poll loop started for {self.key} (every {self.interval_s:g}s)",
            extra={"group": self.key.group, "data_id": self.key.data_id},
        )

    async def stop(self) -> None:
        """Stop polling and wait for any tick in progress to be cancelled"""
        self._timer.stop()
        await self._task.stop()
        self.phase = PollPhase.IDLE
        if self.state != SubscriberState.STOPPED:
            self.state = SubscriberState.STOPPED
            logger.info(f"Poll loop stopped for {self.key}")

    async def tick(self) -> None:
        """Run one poll cycle"""
        self._tick_count += 1
        servers = tuple(self._address_source())

        if not servers:
            self._skipped_ticks += 1
            if not self._warned_no_servers:
                logger.warning(f"No config servers known, skipping poll of {self.key}")
                self._warned_no_servers = True
            return
        self._warned_no_servers = False

        try:
            await self._poll(servers)
        finally:
            self.phase = PollPhase.IDLE

    async def _poll(self, servers: Sequence[str]) -> None:
        self.phase = PollPhase.FETCHING
        value = await self._fetch_with_failover(servers)
        if value is None:
            return

        previous = self._last_value
        if previous is not None and previous.fingerprint == value.fingerprint:
            # Keep the newest Last-Modified for conditional requests
            self._last_value = value
            return

        log_config_change(
            logger,
            self.key.group,
            self.key.data_id,
            previous.fingerprint if previous else None,
            value.fingerprint,
        )

        self.phase = PollPhase.PERSISTING
        self._persist(value)

        self._last_value = value
        self._last_changed_at = datetime.now(timezone.utc)
        self._change_count += 1
        if self._on_change:
            self._on_change(value)

        self.phase = PollPhase.NOTIFYING
        await self._notify_watchers(value)

    async def _fetch_with_failover(self, servers: Sequence[str]) -> ConfigValue | None:
        """Try servers in order; None when every server failed"""
        for server in servers:
            try:
                value = await self._fetcher.fetch_config(server, self.key, self._last_value)
            except FetchFailedError as e:
                log_fetch(logger, server, self.key.group, self.key.data_id, success=False, error=e)
                self.last_error = str(e)
                continue
            except Exception as e:
                # A fetcher outside the FetchFailedError contract still only fails this server
                logger.error(f"Unexpected error fetching {self.key} from {server}: {e}", exc_info=True)
                self.last_error = str(e)
                continue

            log_fetch(logger, server, self.key.group, self.key.data_id)
            self.state = SubscriberState.RUNNING
            return value

        self._failed_ticks += 1
        self.state = SubscriberState.DEGRADED
        logger.warning(
            f"All {len(servers)} servers failed for {self.key}, keeping last value",
            extra={"group": self.key.group, "data_id": self.key.data_id},
        )
        return None

    def _persist(self, value: ConfigValue) -> None:
        """Best effort: a failed write is logged and polling continues"""
        try:
            if value.found:
                self._store.write_config_snapshot(self.key, value)
            else:
                self._store.delete_config_snapshot(self.key)
        except StorageUnavailableError as e:
            logger.error(f"Failed to persist {self.key}: {e}")

    async def _notify_watchers(self, value: ConfigValue) -> None:
        """Invoke each watcher in registration order, isolating failures"""
        for watcher in self._watchers:
            try:
                result = watcher(value.content)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError as e:
                if asyncio.current_task().cancelling():
                    raise
                # The watcher's own await was cancelled, not this loop
                self._record_watcher_failure(watcher, e)
            except Exception as e:
                self._record_watcher_failure(watcher, e)

    def _record_watcher_failure(self, watcher: ConfigWatcher, error: BaseException) -> None:
        failure = WatcherError(_watcher_name(watcher), error)
        self._watcher_failures += 1
        self.last_watcher_error = failure.message
        logger.error(failure.message, exc_info=error)

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "phase": self.phase.value,
            "md5": self._last_value.fingerprint if self._last_value else None,
            "last_changed_at": (
                self._last_changed_at.isoformat() if self._last_changed_at else None
            ),
            "tick_count": self._tick_count,
            "change_count": self._change_count,
            "failed_ticks": self._failed_ticks,
            "skipped_ticks": self._skipped_ticks,
            "watcher_failures": self._watcher_failures,
            "last_error": self.last_error,
            "last_watcher_error": self.last_watcher_error,
            "scheduler": self._timer.get_stats(),
            "task": self._task.to_dict(),
        }
