"""Origin fetcher: the upstream GET/HEAD issued on a cache miss."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog
from opentelemetry import trace

from .classifier import CacheKey
from .errors import OriginUnreachable
from .policy import EdgePolicy


LOGGER = structlog.get_logger("edgecache.edge_proxy.origin")
TRACER = trace.get_tracer("edgecache.edge_proxy")


@dataclass(frozen=True)
class UpstreamResult:
    """What the origin answered. Any status code is a valid result."""

    status_code: int
    headers: httpx.Headers
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


def build_origin_client(timeout_seconds: float, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        follow_redirects=False,
        trust_env=False,
        transport=transport,
    )


class OriginFetcher:
    def __init__(self, client: httpx.AsyncClient, policy: EdgePolicy) -> None:
        self._client = client
        self._policy = policy

    def origin_url(self, key: CacheKey) -> str:
        return f"{self._policy.origin_base_url}{key.origin_target()}"

    async def fetch(self, key: CacheKey, method: str = "GET") -> UpstreamResult:
        url = self.origin_url(key)
        headers = {"accept-encoding": "identity"}
        if self._policy.origin_credential:
            headers[self._policy.origin_credential_header] = self._policy.origin_credential

        with TRACER.start_as_current_span("edge_proxy.fetch", attributes={"edge.origin_url": url}) as span:
            try:
                response = await self._client.request(method.upper(), url, headers=headers)
            except httpx.RequestError as exc:
                span.record_exception(exc)
                LOGGER.warning("origin_unreachable", url=url, method=method, error=repr(exc))
                raise OriginUnreachable(url, type(exc).__name__) from exc

            response_headers = httpx.Headers(response.headers)
            if "content-encoding" in response_headers:
                # httpx hands back the decoded body; the encoding headers no longer describe it.
                del response_headers["content-encoding"]
                response_headers.pop("content-length", None)

            span.set_attribute("http.status_code", response.status_code)
            LOGGER.debug("origin_fetched", url=url, status=response.status_code, bytes=len(response.content))
            return UpstreamResult(status_code=response.status_code, headers=response_headers, body=response.content)
