"""Cache lookup stage."""

from __future__ import annotations

from typing import Optional

import structlog
from opentelemetry import trace

from .classifier import CacheKey
from .errors import CacheStoreUnavailable
from .responses import CachedResponse, stamp_cors
from .stores import CacheStore


LOGGER = structlog.get_logger("edgecache.edge_proxy.lookup")
TRACER = trace.get_tracer("edgecache.edge_proxy")


class CacheLookup:
    def __init__(self, store: CacheStore) -> None:
        self._store = store

    async def lookup(self, key: CacheKey) -> Optional[CachedResponse]:
        """Return the cached response re-stamped with CORS, or None on a miss.

        An unavailable or failing store counts as a miss so requests fall through
        to origin.
        """
        with TRACER.start_as_current_span("edge_proxy.lookup", attributes={"edge.cache_key": key.render()}) as span:
            try:
                cached = await self._store.match(key)
            except (CacheStoreUnavailable, OSError) as exc:
                span.record_exception(exc)
                LOGGER.warning("cache_lookup_failed", cache_key=key.render(), error=str(exc))
                return None
            except Exception as exc:  # noqa: BLE001 - a broken store must not fail the request
                span.record_exception(exc)
                LOGGER.exception("cache_lookup_error", cache_key=key.render())
                return None
            span.set_attribute("edge.cache_hit", cached is not None)
            if cached is None:
                return None
            return stamp_cors(cached)
