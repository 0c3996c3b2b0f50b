"""Fetch-through orchestration: classifier, lookup, origin fetch, response build."""

from __future__ import annotations

import structlog

from ..common.metrics import GLOBAL_REGISTRY, Counter
from .classifier import RequestClassifier, Verdict
from .errors import EdgeProxyError, OriginUnreachable
from .lookup import CacheLookup
from .origin import OriginFetcher
from .policy import EdgePolicy
from .responses import CachedResponse, ResponseBuilder, stamp_cors
from .stores import CacheStore
from .writes import BackgroundWrites


LOGGER = structlog.get_logger("edgecache.edge_proxy")

REQUEST_COUNTER = GLOBAL_REGISTRY.register(
    Counter("edgecache_requests_total", "Edge proxy requests by classifier verdict", labels=("verdict",))
)
HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("edgecache_cache_hits_total", "Cache hits"))
MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("edgecache_cache_misses_total", "Cache misses"))
ORIGIN_RESPONSES_COUNTER = GLOBAL_REGISTRY.register(
    Counter(
        "edgecache_origin_responses_total",
        "Origin responses by status class and TTL tier",
        labels=("status_class", "ttl_tier"),
    )
)
ORIGIN_FAILURES_COUNTER = GLOBAL_REGISTRY.register(
    Counter("edgecache_origin_unreachable_total", "Origin fetches that failed at the transport level")
)


class EdgeProxy:
    def __init__(
        self,
        policy: EdgePolicy,
        store: CacheStore,
        fetcher: OriginFetcher,
        writes: BackgroundWrites | None = None,
    ) -> None:
        self.policy = policy
        self.store = store
        self.classifier = RequestClassifier(policy)
        self.lookup = CacheLookup(store)
        self.fetcher = fetcher
        self.builder = ResponseBuilder(policy)
        self.writes = writes or BackgroundWrites(store)

    async def handle(self, method: str, path: str, query: str = "") -> CachedResponse:
        classification = self.classifier.classify(method, path, query)
        REQUEST_COUNTER.inc(verdict=classification.verdict.value)

        if classification.verdict is Verdict.PREFLIGHT:
            return self.builder.preflight()
        if classification.verdict is Verdict.REJECTED:
            return self.builder.method_not_allowed()
        if classification.verdict is Verdict.MAINTENANCE:
            return self.builder.out_of_scope()

        key = classification.cache_key
        if key is None:
            raise EdgeProxyError(f"classifier proceeded without a cache key for {path!r}")
        head_only = method.upper() == "HEAD"

        cached = await self.lookup.lookup(key)
        if cached is not None:
            HIT_COUNTER.inc()
            LOGGER.info("cache_hit", cache_key=key.render(), status=cached.status_code, bytes=len(cached.body))
            return cached.without_body() if head_only else cached

        MISS_COUNTER.inc()
        LOGGER.info("cache_miss", cache_key=key.render())
        try:
            upstream = await self.fetcher.fetch(key, method)
        except OriginUnreachable:
            ORIGIN_FAILURES_COUNTER.inc()
            return self.builder.origin_unreachable()

        built = self.builder.build(upstream, method)
        tier = "long" if built.decision.cacheable else "short"
        ORIGIN_RESPONSES_COUNTER.inc(status_class=f"{upstream.status_code // 100}xx", ttl_tier=tier)
        LOGGER.info(
            "origin_response",
            cache_key=key.render(),
            status=upstream.status_code,
            ttl=built.decision.ttl_seconds,
            ttl_tier=tier,
        )
        if built.cache_entry is not None:
            # Scheduled before returning; the caller does not wait for the store.
            self.writes.schedule(key, built.cache_entry)
        return stamp_cors(built.response)
