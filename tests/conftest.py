from __future__ import annotations

import pytest

from edgecache.common.settings import EdgeProxySettings
from edgecache.edge_proxy.policy import EdgePolicy
from tests.utils.edge import ORIGIN, FakeOrigin


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake_origin() -> FakeOrigin:
    return FakeOrigin()


@pytest.fixture
def policy() -> EdgePolicy:
    return EdgePolicy(origin_base_url=ORIGIN, cache_epoch="v1", origin_credential="anon-key")


@pytest.fixture
def settings(tmp_path) -> EdgeProxySettings:
    return EdgeProxySettings(
        origin_base_url=ORIGIN,
        origin_credential="anon-key",
        cache_epoch="v1",
        storage_path=tmp_path / "edge-cache",
        log_level="WARNING",
    )
