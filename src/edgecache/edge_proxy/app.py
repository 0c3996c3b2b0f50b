"""Edge cache proxy serving object-storage assets from a regional cache."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse

from ..common.http_security import require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Gauge, Histogram
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.settings import EdgeProxySettings
from .origin import OriginFetcher, build_origin_client
from .policy import EdgePolicy
from .responses import CachedResponse
from .service import EdgeProxy
from .stores import CacheStore, build_store
from .writes import BackgroundWrites


LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "edgecache_request_latency_seconds",
        buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
        description="Edge proxy request latency",
    )
)
PENDING_WRITES_GAUGE = GLOBAL_REGISTRY.register(
    Gauge("edgecache_pending_cache_writes", "Cache writes scheduled but not yet finished")
)


class EdgeProxyState:
    def __init__(self, settings: EdgeProxySettings, proxy: EdgeProxy, origin_client: httpx.AsyncClient):
        self.settings = settings
        self.proxy = proxy
        self.origin_client = origin_client
        self.logger = structlog.get_logger("edgecache.edge_proxy").bind(backend=proxy.store.status().get("backend"))

    async def shutdown(self) -> None:
        abandoned = await self.proxy.writes.drain(timeout=self.settings.write_drain_timeout_seconds)
        self.logger.info("edge_proxy_shutdown", abandoned_writes=abandoned)
        await self.origin_client.aclose()
        await self.proxy.store.close()


def get_state(request: Request) -> EdgeProxyState:
    return request.app.state.edge_state  # type: ignore[attr-defined]


def to_http_response(response: CachedResponse, method: str) -> Response:
    http_response = Response(content=response.body, status_code=response.status_code)
    for name, value in response.headers:
        if name == "content-length":
            # Starlette already derived the length from the body; HEAD keeps the entity length.
            if method.upper() == "HEAD":
                http_response.headers["content-length"] = value
            continue
        http_response.headers.append(name, value)
    return http_response


def request_target(request: Request) -> tuple[str, str]:
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1").partition("?")[0] if raw_path else request.url.path
    return path, request.url.query


def create_app(
    settings: Optional[EdgeProxySettings] = None,
    *,
    store: Optional[CacheStore] = None,
    origin_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or EdgeProxySettings()
    configure_logging("edgecache.edge_proxy", settings.log_level)
    configure_tracing(
        service_name="edgecache.edge_proxy",
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )
    policy = EdgePolicy.from_settings(settings)
    store = store if store is not None else build_store(settings)
    origin_client = build_origin_client(settings.origin_timeout_seconds, transport=origin_transport)
    proxy = EdgeProxy(policy, store, OriginFetcher(origin_client, policy), BackgroundWrites(store))
    state = EdgeProxyState(settings, proxy, origin_client)
    PENDING_WRITES_GAUGE.bind(lambda: proxy.writes.pending)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state.logger.info(
            "edge_proxy_started",
            origin=policy.origin_base_url,
            prefix=policy.proxy_prefix,
            cache_epoch=policy.cache_epoch,
        )
        try:
            yield
        finally:
            await state.shutdown()

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    instrument_fastapi_app(app)
    app.state.edge_state = state

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        state = request.app.state.edge_state  # type: ignore[attr-defined]
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            LATENCY_HISTOGRAM.observe(duration)
            state.logger.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500 and response.status_code != status.HTTP_503_SERVICE_UNAVAILABLE:
            state.logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            state.logger.warning("http_request", **log_kwargs)
        else:
            state.logger.info("http_request", **log_kwargs)
        return response

    ops = settings.ops_prefix.rstrip("/")

    @app.get(f"{ops}/healthz", status_code=status.HTTP_200_OK)
    async def health_check(state: EdgeProxyState = Depends(get_state)) -> dict:
        """Health check for load balancer and orchestrator probes."""
        health: dict = {"status": "healthy", "checks": {}}
        try:
            store_status = state.proxy.store.status()
            health["checks"]["store"] = store_status
            if store_status.get("writable") is False or store_status.get("circuit_open"):
                health["status"] = "degraded"
        except Exception as exc:  # noqa: BLE001
            health["checks"]["store"] = f"error: {exc}"
            health["status"] = "unhealthy"
        health["checks"]["pending_writes"] = state.proxy.writes.pending
        health["cache_epoch"] = state.proxy.policy.cache_epoch

        if health["status"] == "unhealthy":
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=health)
        return health

    @app.get(f"{ops}/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(
        request: Request,
        state: EdgeProxyState = Depends(get_state),
    ) -> PlainTextResponse:
        token = state.settings.metrics_token.get_secret_value() if state.settings.metrics_token else None
        require_metrics_access(request, token)
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    async def proxy_request(request: Request) -> Response:
        state = get_state(request)
        path, query = request_target(request)
        response = await state.proxy.handle(request.method, path, query)
        return to_http_response(response, request.method)

    # No method list: every verb reaches the classifier, which owns the 405.
    app.add_route("/{full_path:path}", proxy_request, methods=None, include_in_schema=False)

    return app
