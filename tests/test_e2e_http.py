"""End-to-end run against a real HTTP server (aiohttp) with the default httpx client"""

from __future__ import annotations

from pathlib import Path

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from diamond import DiamondManager, DiamondSettings
from diamond.common.models import content_md5


class DiamondServer:
    """Serves the bootstrap list and one config key from the same process"""

    def __init__(self) -> None:
        self.content: str | None = "timeout=30"
        self.revision = 1
        self.not_modified = 0
        self.app = web.Application()
        self.app.router.add_get("/diamond-server/diamond", self.bootstrap)
        self.app.router.add_get("/diamond-server/config.co", self.config)

    def last_modified(self) -> str:
        return f"Wed, 01 Jan 2031 00:00:{self.revision:02d} GMT"

    def publish(self, content: str | None) -> None:
        self.content = content
        self.revision += 1

    async def bootstrap(self, request: web.Request) -> web.Response:
        # Advertise this server itself
        return web.Response(text=f"{request.host}\n")

    async def config(self, request: web.Request) -> web.Response:
        if request.query.get("group") != "testgroup" or request.query.get("dataId") != "testdata":
            return web.Response(status=404)
        if self.content is None:
            return web.Response(status=404)
        if request.headers.get("If-Modified-Since") == self.last_modified():
            self.not_modified += 1
            return web.Response(status=304)
        return web.Response(
            text=self.content,
            headers={"Content-MD5": content_md5(self.content), "Last-Modified": self.last_modified()},
        )


@pytest.fixture
async def diamond_server():
    server = DiamondServer()
    test_server = TestServer(server.app, host="127.0.0.1")
    await test_server.start_server()
    server.port = test_server.port
    yield server
    await test_server.close()


async def test_manager_against_live_server(
    diamond_server: DiamondServer, root: Path, wait_until
) -> None:
    settings = DiamondSettings(
        address_endpoint=f"http://127.0.0.1:{diamond_server.port}/diamond-server/diamond",
        config_root=root,
        config_poll_interval_s=0.05,
        initial_resolve_timeout_s=5.0,
        http_max_retries=0,
    )
    received: list[str] = []

    async with DiamondManager("testgroup", "testdata", received.append, settings=settings) as manager:
        assert manager.resolver.addresses == (f"127.0.0.1:{diamond_server.port}",)
        assert await manager.available_configure_information(5.0) == "timeout=30"

        # Unchanged revisions are answered with 304 and do not notify
        await wait_until(lambda: diamond_server.not_modified >= 2)
        assert received == ["timeout=30"]

        diamond_server.publish("timeout=60")
        await wait_until(lambda: received == ["timeout=30", "timeout=60"])

        diamond_server.publish(None)
        await wait_until(lambda: received[-1] == "")
        assert manager.store.read_config_snapshot(manager.key) is None

    assert (root / "ServerAddress").read_text().split() == [f"127.0.0.1:{diamond_server.port}"]
