"""
HTTP Transport

Single shared httpx client for the resolver and the config fetcher.
"""

import httpx

from .config import DiamondSettings


def create_http_client(settings: DiamondSettings) -> httpx.AsyncClient:
    """
    Create the async HTTP client used by all subscribers.

    Connection failures are retried by the transport up to
    http_max_retries times; HTTP error statuses are never retried.
    Redirects are followed.
    """
    timeout = httpx.Timeout(
        settings.http_request_timeout_s,
        connect=settings.http_connect_timeout_s,
    )
    transport = httpx.AsyncHTTPTransport(retries=settings.http_max_retries)
    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        follow_redirects=True,
    )
