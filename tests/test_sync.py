from __future__ import annotations

import httpx
import pytest

from diamond.common.config import DiamondSettings
from diamond.common.exceptions import FetchFailedError
from diamond.common.http import create_http_client
from diamond.common.models import ConfigKey, ConfigValue, content_md5
from diamond.services.config.sync import ConfigFetcher, HttpConfigFetcher, server_base_url

LAST_MODIFIED = "Wed, 01 Jan 2031 00:00:00 GMT"


@pytest.mark.parametrize(
    ("address", "expected"),
    [
        ("s1", "http://s1:8080"),
        ("s1:80", "http://s1:80"),
        ("10.0.0.1:9000", "http://10.0.0.1:9000"),
        ("https://diamond.example.com/", "https://diamond.example.com"),
    ],
)
def test_server_base_url(address: str, expected: str) -> None:
    assert server_base_url(address) == expected


def test_http_fetcher_satisfies_protocol() -> None:
    fetcher = HttpConfigFetcher(httpx.AsyncClient())
    assert isinstance(fetcher, ConfigFetcher)


def fetcher_for(handler) -> HttpConfigFetcher:
    return HttpConfigFetcher(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def test_fetch_ok(key: ConfigKey) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            text="feature.enabled=true",
            headers={"Content-MD5": content_md5("feature.enabled=true"), "Last-Modified": LAST_MODIFIED},
        )

    value = await fetcher_for(handler).fetch_config("s1:80", key)

    assert value.content == "feature.enabled=true"
    assert value.found
    assert value.md5 == content_md5("feature.enabled=true")
    assert value.last_modified == LAST_MODIFIED

    request = seen[0]
    assert request.url.host == "s1"
    assert request.url.port == 80
    assert request.url.path == "/diamond-server/config.co"
    assert request.url.params["dataId"] == "testdata"
    assert request.url.params["group"] == "testgroup"
    assert "If-Modified-Since" not in request.headers


async def test_not_found_is_absent_value(key: ConfigKey) -> None:
    value = await fetcher_for(lambda request: httpx.Response(404)).fetch_config("s1:80", key)

    assert value == ConfigValue.absent()
    assert value.fingerprint == ""


async def test_not_modified_returns_current(key: ConfigKey) -> None:
    current = ConfigValue.from_content("v1", last_modified=LAST_MODIFIED)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(304)

    value = await fetcher_for(handler).fetch_config("s1:80", key, current)

    assert value is current
    assert seen[0].headers["If-Modified-Since"] == LAST_MODIFIED


@pytest.mark.parametrize("status", [304, 403, 500, 503])
async def test_unexpected_status_fails(key: ConfigKey, status: int) -> None:
    with pytest.raises(FetchFailedError) as excinfo:
        await fetcher_for(lambda request: httpx.Response(status)).fetch_config("s1:80", key)

    assert excinfo.value.status == status
    assert excinfo.value.server == "s1:80"


async def test_md5_mismatch_fails(key: ConfigKey) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="truncated", headers={"Content-MD5": content_md5("full body")})

    with pytest.raises(FetchFailedError):
        await fetcher_for(handler).fetch_config("s1:80", key)


async def test_transport_error_fails(key: ConfigKey) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(FetchFailedError) as excinfo:
        await fetcher_for(handler).fetch_config("s1:80", key)

    assert excinfo.value.status is None


async def test_malformed_address_fails(key: ConfigKey) -> None:
    fetcher = fetcher_for(lambda request: httpx.Response(200, text="unreachable"))

    with pytest.raises(FetchFailedError) as excinfo:
        await fetcher.fetch_config("s1:abc", key)

    assert excinfo.value.server == "s1:abc"
    assert excinfo.value.status is None


async def test_any_success_status_carries_value(key: ConfigKey) -> None:
    value = await fetcher_for(lambda request: httpx.Response(203, text="v1")).fetch_config("s1:80", key)

    assert value.content == "v1"
    assert value.found


async def test_shared_client_follows_redirects(settings: DiamondSettings) -> None:
    async with create_http_client(settings) as client:
        assert client.follow_redirects
