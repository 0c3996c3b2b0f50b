from __future__ import annotations

import asyncio

import pytest

from edgecache.edge_proxy.classifier import CacheKey
from edgecache.edge_proxy.responses import CachedResponse
from edgecache.edge_proxy.stores import MemoryCacheStore
from edgecache.edge_proxy.writes import CACHE_WRITES_COUNTER, BackgroundWrites

from tests.utils.edge import FlakyStore


KEY = CacheKey("/storage/catalog/lamp.png", "", "v1")
RESPONSE = CachedResponse(status_code=200, headers=(("content-type", "image/png"),), body=b"png", ttl_seconds=60)


class SlowStore(MemoryCacheStore):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def put(self, key, response) -> None:
        await asyncio.sleep(self.delay)
        await super().put(key, response)


@pytest.mark.asyncio
async def test_scheduled_write_lands_in_store() -> None:
    store = MemoryCacheStore()
    writes = BackgroundWrites(store)
    before = CACHE_WRITES_COUNTER.value(outcome="stored")

    writes.schedule(KEY, RESPONSE)
    assert writes.pending == 1
    assert await writes.drain() == 0

    assert writes.pending == 0
    assert await store.match(KEY) == RESPONSE
    assert CACHE_WRITES_COUNTER.value(outcome="stored") == before + 1


@pytest.mark.asyncio
async def test_unavailable_store_drops_write_silently() -> None:
    store = FlakyStore(fail_writes=True)
    writes = BackgroundWrites(store)
    before = CACHE_WRITES_COUNTER.value(outcome="dropped")

    task = writes.schedule(KEY, RESPONSE)
    await writes.drain()

    assert task.exception() is None
    assert store.writes == 1
    assert CACHE_WRITES_COUNTER.value(outcome="dropped") == before + 1


@pytest.mark.asyncio
async def test_unexpected_store_error_is_contained() -> None:
    store = FlakyStore(fail_writes=True, error=RuntimeError("disk on fire"))
    writes = BackgroundWrites(store)
    before = CACHE_WRITES_COUNTER.value(outcome="failed")

    task = writes.schedule(KEY, RESPONSE)
    await writes.drain()

    assert task.exception() is None
    assert CACHE_WRITES_COUNTER.value(outcome="failed") == before + 1


@pytest.mark.asyncio
async def test_write_survives_cancellation_of_scheduling_task() -> None:
    store = SlowStore(delay=0.05)
    writes = BackgroundWrites(store)
    scheduled = asyncio.Event()

    async def request_handler() -> None:
        writes.schedule(KEY, RESPONSE)
        scheduled.set()
        await asyncio.sleep(10)

    handler = asyncio.create_task(request_handler())
    await scheduled.wait()
    handler.cancel()
    with pytest.raises(asyncio.CancelledError):
        await handler

    await writes.drain()
    assert await store.match(KEY) == RESPONSE


@pytest.mark.asyncio
async def test_drain_reports_writes_still_pending_at_deadline() -> None:
    store = SlowStore(delay=1.0)
    writes = BackgroundWrites(store)
    writes.schedule(KEY, RESPONSE)

    assert await writes.drain(timeout=0.01) == 1
    assert await writes.drain() == 0
    assert len(store) == 1


@pytest.mark.asyncio
async def test_drain_with_nothing_pending() -> None:
    assert await BackgroundWrites(MemoryCacheStore()).drain(timeout=0.01) == 0
