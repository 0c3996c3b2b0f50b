"""Detached cache writes that outlive the request that scheduled them."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from opentelemetry import trace

from ..common.metrics import GLOBAL_REGISTRY, Counter
from .classifier import CacheKey
from .errors import CacheStoreUnavailable
from .responses import CachedResponse
from .stores import CacheStore


LOGGER = structlog.get_logger("edgecache.edge_proxy.writes")
TRACER = trace.get_tracer("edgecache.edge_proxy")

CACHE_WRITES_COUNTER = GLOBAL_REGISTRY.register(
    Counter("edgecache_cache_writes_total", "Cache store writes by outcome", labels=("outcome",))
)


class BackgroundWrites:
    """Tracks fire-and-forget store writes.

    Tasks are created on the event loop rather than as children of the request,
    so a cancelled or finished request never cancels its write. ``drain`` is
    awaited at shutdown so in-flight writes are not abandoned.
    """

    def __init__(self, store: CacheStore) -> None:
        self._store = store
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, key: CacheKey, response: CachedResponse) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._write(key, response), name=f"cache-write:{key.render()}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _write(self, key: CacheKey, response: CachedResponse) -> None:
        with TRACER.start_as_current_span("edge_proxy.store_write", attributes={"edge.cache_key": key.render()}):
            try:
                await self._store.put(key, response)
            except CacheStoreUnavailable as exc:
                CACHE_WRITES_COUNTER.inc(outcome="dropped")
                LOGGER.warning("cache_write_dropped", cache_key=key.render(), error=str(exc))
                return
            except Exception:  # noqa: BLE001 - a failed write must never reach the caller
                CACHE_WRITES_COUNTER.inc(outcome="failed")
                LOGGER.exception("cache_write_failed", cache_key=key.render())
                return
        CACHE_WRITES_COUNTER.inc(outcome="stored")
        LOGGER.debug("cache_write", cache_key=key.render(), bytes=len(response.body), ttl=response.ttl_seconds)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for in-flight writes; returns how many were still pending at the deadline."""
        if not self._tasks:
            return 0
        _, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_pending:
            LOGGER.warning("cache_writes_abandoned", pending=len(still_pending))
        return len(still_pending)
