"""
Diamond Manager

The object callers hold. Owns the configuration identity, the watcher
list and the lifecycle of the background subscribers:

    manager = await DiamondManager.create("group", "data.id", on_change)
    value = await manager.available_configure_information(timeout=10)
    ...
    await manager.shutdown()
"""

import asyncio
from typing import Any

import httpx

from diamond.common.config import DiamondSettings
from diamond.common.exceptions import ConfigTimeoutError, StorageUnavailableError
from diamond.common.http import create_http_client
from diamond.common.logging_setup import get_service_logger
from diamond.common.models import ConfigKey, ConfigValue, ConfigVersion, ConfigWatcher
from diamond.services.address import ServerAddressSubscriber
from diamond.services.config import ConfigFetcher, ConfigPollLoop, HttpConfigFetcher
from diamond.storage import SnapshotStore

logger = get_service_logger("manager")


class DiamondManager:
    """
    Facade over the synchronization engine for one (group, data_id).

    Watchers are fixed at construction. Use create() (or
    new_diamond_manager()) to get a started manager; the constructor
    alone does no I/O beyond resolving the storage root.
    """

    def __init__(
        self,
        group: str,
        data_id: str,
        *watchers: ConfigWatcher,
        settings: DiamondSettings | None = None,
        fetcher: ConfigFetcher | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.key = ConfigKey(group, data_id)
        self.settings = settings or DiamondSettings()
        self._watchers = tuple(watchers)

        self.store = SnapshotStore(
            self.settings.resolve_root(),
            max_versions=self.settings.snapshot_max_versions,
        )

        # Only close the client if we created it
        self._owns_client = http_client is None
        self._client = http_client or create_http_client(self.settings)

        self.fetcher = fetcher or HttpConfigFetcher(
            self._client,
            config_path=self.settings.config_path,
            default_port=self.settings.server_port,
        )
        self.resolver = ServerAddressSubscriber(
            endpoint=self.settings.address_endpoint,
            client=self._client,
            store=self.store,
            refresh_interval_s=self.settings.server_address_refresh_interval_s,
            initial_timeout_s=self.settings.initial_resolve_timeout_s,
            fallback_to_persisted=self.settings.fallback_to_persisted_addresses,
            restart_cooldown_s=self.settings.restart_cooldown_s,
        )
        self.poller = ConfigPollLoop(
            key=self.key,
            fetcher=self.fetcher,
            address_source=lambda: self.resolver.addresses,
            store=self.store,
            watchers=self._watchers,
            on_change=self._apply_value,
            interval_s=self.settings.config_poll_interval_s,
            restart_cooldown_s=self.settings.restart_cooldown_s,
        )

        self._current: ConfigValue | None = None
        self._available = asyncio.Event()
        self._started = False
        self._closed = False

    @classmethod
    async def create(
        cls,
        group: str,
        data_id: str,
        *watchers: ConfigWatcher,
        settings: DiamondSettings | None = None,
        fetcher: ConfigFetcher | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "DiamondManager":
        """
        Build and start a manager.

        Blocks until local directories exist and the first server list
        has been resolved; the poll loop then runs in the background.

        Raises:
            StorageUnavailableError: if the local directories cannot be prepared
            ResolutionFailedError: if the first address resolution fails
        """
        manager = cls(
            group,
            data_id,
            *watchers,
            settings=settings,
            fetcher=fetcher,
            http_client=http_client,
        )
        try:
            await manager.start()
        except BaseException:
            await manager.shutdown()
            raise
        return manager

    async def start(self) -> None:
        """Prepare storage, resolve servers and start polling"""
        if self._started:
            return
        if self._closed:
            raise RuntimeError("DiamondManager has been shut down")

        self.store.ensure_directories()
        self._load_cached_value()

        await self.resolver.start()
        await self.poller.start()
        self._started = True

        logger.info(
            f"Diamond manager started for {self.key}",
            extra={
                "group": self.key.group,
                "data_id": self.key.data_id,
                "root": str(self.store.root),
                "watchers": len(self._watchers),
            },
        )

    async def shutdown(self) -> None:
        """Stop all background tasks and release the HTTP client"""
        if self._closed:
            return
        self._closed = True

        # Poller first: it is the one issuing config requests
        await self.poller.stop()
        await self.resolver.stop()

        if self._owns_client:
            await self._client.aclose()

        logger.info(f"Diamond manager for {self.key} shut down")

    async def __aenter__(self) -> "DiamondManager":
        try:
            await self.start()
        except BaseException:
            await self.shutdown()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    def _load_cached_value(self) -> None:
        """Serve the last persisted value until the first live fetch"""
        try:
            cached = self.store.read_config_snapshot(self.key)
        except StorageUnavailableError as e:
            logger.warning(f"Cached config unreadable, will fetch from servers: {e}")
            return

        if cached is None:
            logger.info(f"No cached config for {self.key}, will fetch from servers")
            return

        self._apply_value(cached)
        logger.info(
            f"Loaded cached config for {self.key} (md5: {cached.md5[:8]})",
            extra={"group": self.key.group, "data_id": self.key.data_id},
        )

    def _apply_value(self, value: ConfigValue) -> None:
        self._current = value
        self._available.set()

    @property
    def current_value(self) -> ConfigValue | None:
        """Latest known value, or None before anything is available"""
        return self._current

    async def available_configure_information(self, timeout: float) -> str:
        """
        Get the current configuration content.

        Args:
            timeout: Seconds to wait when no value has been fetched yet

        Returns:
            Current content ("" when the server reports the key as absent)

        Raises:
            ConfigTimeoutError: if no value became available within timeout
        """
        if self._current is None:
            try:
                await asyncio.wait_for(self._available.wait(), timeout)
            except asyncio.TimeoutError:
                raise ConfigTimeoutError(timeout) from None
        return self._current.content

    def list_versions(self) -> list[ConfigVersion]:
        """Point-in-time snapshots of this key, newest first"""
        return self.store.list_versions(self.key)

    def get_status(self) -> dict[str, Any]:
        """Get manager and subscriber status for observability"""
        return {
            "group": self.key.group,
            "data_id": self.key.data_id,
            "started": self._started,
            "closed": self._closed,
            "md5": self._current.fingerprint if self._current else None,
            "resolver": self.resolver.get_stats(),
            "poller": self.poller.get_stats(),
        }


async def new_diamond_manager(
    group: str,
    data_id: str,
    *watchers: ConfigWatcher,
    **kwargs: Any,
) -> DiamondManager:
    """Create and start a DiamondManager (see DiamondManager.create)"""
    return await DiamondManager.create(group, data_id, *watchers, **kwargs)
