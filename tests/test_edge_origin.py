from __future__ import annotations

import gzip

import httpx
import pytest

from edgecache.edge_proxy.classifier import CacheKey
from edgecache.edge_proxy.errors import OriginUnreachable
from edgecache.edge_proxy.origin import OriginFetcher, build_origin_client
from edgecache.edge_proxy.policy import EdgePolicy

from tests.utils.edge import ORIGIN, PNG_BYTES, FakeOrigin


KEY = CacheKey("/storage/v1/object/public/catalog/lamp.png", "width=400", "v3")


def _fetcher(fake_origin: FakeOrigin, policy: EdgePolicy) -> OriginFetcher:
    return OriginFetcher(build_origin_client(5.0, transport=fake_origin.transport()), policy)


@pytest.mark.asyncio
async def test_fetch_targets_origin_with_path_and_query(fake_origin: FakeOrigin, policy: EdgePolicy) -> None:
    result = await _fetcher(fake_origin, policy).fetch(KEY)

    assert fake_origin.calls == 1
    request = fake_origin.requests[0]
    assert request.method == "GET"
    assert str(request.url) == f"{ORIGIN}/storage/v1/object/public/catalog/lamp.png?width=400"
    assert "cv=" not in str(request.url)
    assert result.status_code == 200
    assert result.ok
    assert result.content_type == "image/png"
    assert result.body == PNG_BYTES


@pytest.mark.asyncio
async def test_fetch_forwards_credential_header(fake_origin: FakeOrigin, policy: EdgePolicy) -> None:
    await _fetcher(fake_origin, policy).fetch(KEY)
    assert fake_origin.requests[0].headers["apikey"] == "anon-key"


@pytest.mark.asyncio
async def test_fetch_uses_configured_credential_header(fake_origin: FakeOrigin) -> None:
    policy = EdgePolicy(
        origin_base_url=ORIGIN,
        cache_epoch="v1",
        origin_credential="secret",
        origin_credential_header="x-origin-token",
    )
    await _fetcher(fake_origin, policy).fetch(KEY)
    headers = fake_origin.requests[0].headers
    assert headers["x-origin-token"] == "secret"
    assert "apikey" not in headers


@pytest.mark.asyncio
async def test_fetch_without_credential(fake_origin: FakeOrigin) -> None:
    policy = EdgePolicy(origin_base_url=ORIGIN, cache_epoch="v1")
    await _fetcher(fake_origin, policy).fetch(KEY)
    assert "apikey" not in fake_origin.requests[0].headers


@pytest.mark.asyncio
async def test_head_is_forwarded_as_head(fake_origin: FakeOrigin, policy: EdgePolicy) -> None:
    fake_origin.handler = lambda request: httpx.Response(200, headers={"content-type": "image/png", "content-length": "40"})
    result = await _fetcher(fake_origin, policy).fetch(KEY, "HEAD")
    assert fake_origin.requests[0].method == "HEAD"
    assert result.headers["content-length"] == "40"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 403, 404, 500, 503])
async def test_error_statuses_are_results_not_exceptions(fake_origin: FakeOrigin, policy: EdgePolicy, status: int) -> None:
    fake_origin.handler = lambda request: httpx.Response(status, json={"error": "nope"})
    result = await _fetcher(fake_origin, policy).fetch(KEY)
    assert result.status_code == status
    assert not result.ok
    assert result.content_type == "application/json"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        httpx.ConnectError("connection refused"),
        httpx.ConnectTimeout("timed out"),
        httpx.ReadTimeout("timed out"),
        httpx.RemoteProtocolError("malformed response"),
    ],
)
async def test_transport_failures_raise_origin_unreachable(
    fake_origin: FakeOrigin, policy: EdgePolicy, error: httpx.RequestError
) -> None:
    def boom(request: httpx.Request) -> httpx.Response:
        raise error

    fake_origin.handler = boom
    with pytest.raises(OriginUnreachable) as exc_info:
        await _fetcher(fake_origin, policy).fetch(KEY)
    assert exc_info.value.url.startswith(ORIGIN)
    assert exc_info.value.reason == type(error).__name__


@pytest.mark.asyncio
async def test_encoded_body_is_decoded_and_headers_adjusted(fake_origin: FakeOrigin, policy: EdgePolicy) -> None:
    payload = b"plain text payload"
    compressed = gzip.compress(payload)
    fake_origin.handler = lambda request: httpx.Response(
        200,
        headers={"content-type": "text/plain", "content-encoding": "gzip", "content-length": str(len(compressed))},
        content=compressed,
    )
    result = await _fetcher(fake_origin, policy).fetch(KEY)
    assert fake_origin.requests[0].headers["accept-encoding"] == "identity"
    assert result.body == payload
    assert "content-encoding" not in result.headers
    assert "content-length" not in result.headers
