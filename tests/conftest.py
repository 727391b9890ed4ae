from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Awaitable, Callable

import pytest

from diamond.common.config import DiamondSettings
from diamond.common.models import ConfigKey
from diamond.storage.snapshot import SnapshotStore
from fakes import BOOTSTRAP_URL, FakeFleet


@pytest.fixture
def root(tmp_path: Path) -> Path:
    return tmp_path / "diamond-home"


@pytest.fixture
def store(root: Path) -> SnapshotStore:
    snapshot_store = SnapshotStore(root, max_versions=3)
    snapshot_store.ensure_directories()
    return snapshot_store


@pytest.fixture
def settings(root: Path) -> DiamondSettings:
    return DiamondSettings(
        address_endpoint=BOOTSTRAP_URL,
        config_root=root,
        config_poll_interval_s=0.05,
        server_address_refresh_interval_s=3600,
        initial_resolve_timeout_s=2.0,
        restart_cooldown_s=0.01,
        http_max_retries=0,
    )


@pytest.fixture
def fleet() -> FakeFleet:
    return FakeFleet()


@pytest.fixture
def key() -> ConfigKey:
    return ConfigKey("testgroup", "testdata")


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    async def _wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait_until
