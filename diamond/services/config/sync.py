"""
Configuration Fetch

Fetches one configuration value from one Diamond server.

The poll loop only depends on the ConfigFetcher protocol; HttpConfigFetcher
is the default implementation speaking the Diamond HTTP API:

    GET http://<server>:8080/diamond-server/config.co?dataId=<id>&group=<group>

    2xx  body is the value, Content-MD5 / Last-Modified headers
    304  unchanged since If-Modified-Since
    404  no such configuration (a valid, absent value)
"""

from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit

import httpx

from diamond.common.config import DEFAULT_CONFIG_PATH
from diamond.common.exceptions import FetchFailedError
from diamond.common.logging_setup import get_service_logger
from diamond.common.models import ConfigKey, ConfigValue, content_md5

logger = get_service_logger("config.sync")


@runtime_checkable
class ConfigFetcher(Protocol):
    """
    Fetches the value of a key from a single server.

    Implementations must be safe to call repeatedly and concurrently with
    address resolution. A configuration the server does not know is
    returned as ConfigValue.absent(); transport and protocol failures
    raise FetchFailedError.
    """

    async def fetch_config(
        self,
        server: str,
        key: ConfigKey,
        current: ConfigValue | None = None,
    ) -> ConfigValue:
        ...


def server_base_url(server: str, default_port: int = 8080) -> str:
    """Turn a resolved address (host, host:port or URL) into a base URL"""
    if "://" in server:
        return server.rstrip("/")

    parts = urlsplit(f"http://{server}")
    try:
        has_port = parts.port is not None
    except ValueError:
        has_port = False
    if has_port:
        return f"http://{server}".rstrip("/")
    return f"http://{server.rstrip('/')}:{default_port}"


class HttpConfigFetcher:
    """
    Fetches configuration over plain HTTP GET.

    Reuses the manager's HTTP client (no connection overhead per request).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        config_path: str = DEFAULT_CONFIG_PATH,
        default_port: int = 8080,
    ):
        self._client = client
        self.config_path = config_path
        self.default_port = default_port

    def _url(self, server: str) -> str:
        return f"{server_base_url(server, self.default_port)}{self.config_path}"

    async def fetch_config(
        self,
        server: str,
        key: ConfigKey,
        current: ConfigValue | None = None,
    ) -> ConfigValue:
        """
        Fetch the value of key from server.

        Args:
            server: Resolved server address
            key: Configuration identity
            current: Last known value; its Last-Modified makes the request
                conditional

        Returns:
            The fetched value, `current` on 304, or ConfigValue.absent() on 404

        Raises:
            FetchFailedError: on transport errors, unexpected statuses or
                a Content-MD5 mismatch
        """
        headers = {}
        if current is not None and current.found and current.last_modified:
            headers["If-Modified-Since"] = current.last_modified

        try:
            response = await self._client.get(
                self._url(server),
                params={"dataId": key.data_id, "group": key.group},
                headers=headers,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchFailedError(f"Request failed: {e}", server=server) from e

        status = response.status_code

        if status == 304 and current is not None:
            logger.debug(f"{key} not modified on {server}")
            return current

        if status == 404:
            logger.debug(f"{key} not found on {server}")
            return ConfigValue.absent()

        if not response.is_success:
            raise FetchFailedError(
                f"Unexpected status {status} for {key}",
                server=server,
                status=status,
            )

        content = response.text
        md5 = content_md5(content)
        expected_md5 = response.headers.get("Content-MD5")
        if expected_md5 and expected_md5.strip().lower() != md5:
            raise FetchFailedError(
                f"Content-MD5 mismatch for {key} (expected {expected_md5}, got {md5})",
                server=server,
                status=status,
            )

        return ConfigValue(
            content=content,
            md5=md5,
            last_modified=response.headers.get("Last-Modified"),
        )
