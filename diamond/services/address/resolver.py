"""
Server Address Resolver

Keeps the list of configuration servers fresh by querying the bootstrap
endpoint. A single worker task owns the only outstanding bootstrap
request; callers enqueue a future and wait for the worker to fulfil it,
so the startup refresh, the periodic refresh and on-demand refreshes
share one worker without re-entrancy.
"""

import asyncio
from datetime import datetime, timezone

import httpx

from diamond.common.exceptions import ResolutionFailedError, StorageUnavailableError
from diamond.common.logging_setup import get_service_logger
from diamond.common.models import SubscriberState
from diamond.common.scheduler import ScheduledLoop
from diamond.storage.snapshot import SnapshotStore
from diamond.supervisor import SupervisedTask

logger = get_service_logger("address")

# At most one request waiting behind the one in flight
REQUEST_QUEUE_SIZE = 1


def parse_address_list(body: str) -> list[str]:
    """Split a bootstrap response into addresses (order kept, blanks dropped)"""
    return [line.strip() for line in body.splitlines() if line.strip()]


class ServerAddressSubscriber:
    """
    Resolves and refreshes the server address list.

    Lifecycle:
    - start(): load the persisted list, start the worker, resolve once
      (blocking), then refresh every refresh_interval_s in the background
    - stop(): stop the timer and the worker, fail pending requests
    """

    def __init__(
        self,
        endpoint: str,
        client: httpx.AsyncClient,
        store: SnapshotStore,
        refresh_interval_s: float = 300.0,
        initial_timeout_s: float = 30.0,
        fallback_to_persisted: bool = True,
        restart_cooldown_s: float = 1.0,
    ):
        self.endpoint = endpoint
        self.refresh_interval_s = refresh_interval_s
        self.initial_timeout_s = initial_timeout_s
        self.fallback_to_persisted = fallback_to_persisted

        self._client = client
        self._store = store

        # Replaced wholesale, never mutated
        self._addresses: tuple[str, ...] = ()
        self._resolved_at: datetime | None = None
        self.state = SubscriberState.CREATED
        self.last_error: str | None = None

        self._requests: asyncio.Queue[asyncio.Future] = asyncio.Queue(
            maxsize=REQUEST_QUEUE_SIZE
        )
        self._inflight: asyncio.Future | None = None
        self._worker = SupervisedTask(
            "address.worker",
            self._worker_loop,
            restart_cooldown_s=restart_cooldown_s,
        )
        self._timer = ScheduledLoop(
            refresh_interval_s,
            self._periodic_refresh,
            name="address.refresh",
            align_to_interval=False,
        )
        self._refresher = SupervisedTask(
            "address.refresh",
            self._timer.run,
            restart_cooldown_s=restart_cooldown_s,
        )

    @property
    def addresses(self) -> tuple[str, ...]:
        """Current server list (empty until the first resolution)"""
        return self._addresses

    async def start(self) -> None:
        """
        Start the resolver and block until the first list is available.

        Raises:
            ResolutionFailedError: if the first resolution fails and no
                persisted list can stand in for it
        """
        if self.state in (SubscriberState.RUNNING, SubscriberState.DEGRADED):
            return

        self._load_persisted()
        self.state = SubscriberState.RUNNING
        self._worker.start()

        try:
            await self.refresh(timeout=self.initial_timeout_s)
        except ResolutionFailedError as e:
            if self.fallback_to_persisted and self._addresses:
                self.state = SubscriberState.DEGRADED
                logger.warning(
                    f"Initial resolution failed ({e}); using {len(self._addresses)} "
                    f"persisted addresses",
                    extra={"endpoint": self.endpoint},
                )
            else:
                await self.stop()
                raise

        self._refresher.start()
        logger.info(
            f"Address resolver started ({len(self._addresses)} servers, "
            f"refresh every {self.refresh_interval_s:.0f}s)",
            extra={"endpoint": self.endpoint},
        )

    async def stop(self) -> None:
        """Stop the refresh timer and the worker"""
        self._timer.stop()
        await self._refresher.stop()

        inflight = self._inflight
        await self._worker.stop()

        pending = [inflight] if inflight else []
        while not self._requests.empty():
            pending.append(self._requests.get_nowait())
        for future in pending:
            if not future.done():
                future.set_exception(
                    ResolutionFailedError("Resolver stopped", endpoint=self.endpoint)
                )
        self._inflight = None

        if self.state != SubscriberState.STOPPED:
            self.state = SubscriberState.STOPPED
            logger.info("Address resolver stopped")

    async def refresh(self, timeout: float | None = None) -> list[str]:
        """
        Ask the worker for a fresh list and wait for the result.

        Args:
            timeout: Seconds to wait for the worker; None waits forever

        Returns:
            The newly resolved list

        Raises:
            ResolutionFailedError: on HTTP failure, timeout or if stopped
        """
        if self.state in (SubscriberState.CREATED, SubscriberState.STOPPED):
            raise ResolutionFailedError("Resolver is not running", endpoint=self.endpoint)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._requests.put(future)

        try:
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as e:
            raise ResolutionFailedError(
                f"No address list within {timeout:.1f}s",
                endpoint=self.endpoint,
            ) from e

    def _load_persisted(self) -> None:
        """Seed the list from the last run's ServerAddress file"""
        try:
            persisted = self._store.read_server_addresses()
        except StorageUnavailableError as e:
            logger.warning(f"Could not read persisted addresses: {e}")
            return

        if persisted:
            self._addresses = tuple(persisted)
            logger.info(f"Loaded {len(persisted)} persisted server addresses")

    async def _worker_loop(self) -> None:
        """Serve refresh requests one at a time"""
        while True:
            future = await self._requests.get()
            if future.done():
                # Caller already gave up
                continue

            self._inflight = future
            try:
                addresses = await self._resolve()
            except Exception as e:
                self.state = SubscriberState.DEGRADED
                self.last_error = str(e)
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(addresses)
            self._inflight = None

    async def _resolve(self) -> list[str]:
        """Fetch, persist and publish a new address list"""
        try:
            response = await self._client.get(self.endpoint)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ResolutionFailedError(
                f"Request to {self.endpoint} failed: {e}",
                endpoint=self.endpoint,
            ) from e

        if not response.is_success:
            raise ResolutionFailedError(
                f"Take server address failure with {response.status_code}",
                endpoint=self.endpoint,
                status=response.status_code,
            )

        addresses = parse_address_list(response.text)

        # Persist before publishing so the file never lags the live list
        try:
            self._store.write_server_addresses(addresses)
        except StorageUnavailableError as e:
            logger.error(f"Failed to persist server addresses: {e}")

        changed = addresses != list(self._addresses)
        self._addresses = tuple(addresses)
        self._resolved_at = datetime.now(timezone.utc)
        self.state = SubscriberState.RUNNING
        self.last_error = None

        if not addresses:
            logger.warning("Bootstrap endpoint returned no server addresses")
        elif changed:
            logger.info(
                f"Server addresses updated: {', '.join(addresses)}",
                extra={"server_count": len(addresses)},
            )
        else:
            logger.debug("Server addresses unchanged")

        return addresses

    async def _periodic_refresh(self) -> None:
        """Timer callback; failures keep the previous list in effect"""
        try:
            await self.refresh()
        except ResolutionFailedError as e:
            logger.warning(
                f"Address refresh failed, keeping {len(self._addresses)} previous addresses: {e}",
                extra={"endpoint": self.endpoint},
            )

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "endpoint": self.endpoint,
            "addresses": list(self._addresses),
            "resolved_at": self._resolved_at.isoformat() if self._resolved_at else None,
            "last_error": self.last_error,
            "worker": self._worker.to_dict(),
            "refresh": self._timer.get_stats(),
        }
