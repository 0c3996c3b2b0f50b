"""Outward response construction: header sanitization, cache directives and CORS."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Optional, Tuple

import httpx

from .classifier import ALLOWED_METHODS
from .maintenance import DEFAULT_MAINTENANCE_HTML
from .origin import UpstreamResult
from .policy import HOP_BY_HOP_HEADERS, CacheDecision, EdgePolicy, classify


HeaderPairs = Tuple[Tuple[str, str], ...]

CORS_ALLOW_METHODS = ", ".join(ALLOWED_METHODS)
PREFLIGHT_MAX_AGE = 86400


@dataclass(frozen=True)
class CachedResponse:
    """An outward response value; also the unit stored in the cache."""

    status_code: int
    headers: HeaderPairs = ()
    body: bytes = b""
    ttl_seconds: Optional[int] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def header_map(self) -> httpx.Headers:
        return httpx.Headers(list(self.headers))

    def get_header(self, name: str) -> Optional[str]:
        return self.header_map().get(name)

    def with_headers(self, headers: httpx.Headers) -> "CachedResponse":
        return replace(self, headers=_freeze(headers))

    def without_body(self) -> "CachedResponse":
        """HEAD variant: same entity headers, no payload."""
        headers = self.header_map()
        if "content-length" not in headers:
            headers["content-length"] = str(len(self.body))
        return replace(self, headers=_freeze(headers), body=b"")


@dataclass(frozen=True)
class BuiltResponse:
    response: CachedResponse
    decision: CacheDecision
    cache_entry: Optional[CachedResponse] = field(default=None)


def _freeze(headers: httpx.Headers | Iterable[Tuple[str, str]]) -> HeaderPairs:
    items = headers.multi_items() if isinstance(headers, httpx.Headers) else headers
    return tuple((name.lower(), value) for name, value in items)


def stamp_cors(response: CachedResponse) -> CachedResponse:
    """Overwrite CORS headers with the wildcard policy.

    A wildcard keeps cached bytes identical for every calling origin, so no
    ``Vary: Origin`` split of the cache is needed.
    """
    headers = response.header_map()
    headers["access-control-allow-origin"] = "*"
    headers["access-control-allow-methods"] = CORS_ALLOW_METHODS
    return response.with_headers(headers)


class ResponseBuilder:
    def __init__(self, policy: EdgePolicy) -> None:
        self._policy = policy

    def sanitize(self, headers: httpx.Headers) -> httpx.Headers:
        """Drop headers that expose origin infrastructure or only apply to the origin hop."""
        blocked = self._policy.strip_headers | HOP_BY_HOP_HEADERS
        return httpx.Headers([(name, value) for name, value in headers.multi_items() if name.lower() not in blocked])

    def build(self, upstream: UpstreamResult, method: str = "GET") -> BuiltResponse:
        decision = classify(upstream.ok, upstream.content_type, self._policy)
        headers = self.sanitize(upstream.headers)
        if upstream.ok:
            headers["cache-control"] = f"public, max-age={decision.ttl_seconds}, immutable"
            headers["cdn-cache-control"] = f"public, max-age={decision.ttl_seconds}"
        else:
            headers["cache-control"] = f"public, max-age={self._policy.short_ttl_seconds}"
            headers.pop("cdn-cache-control", None)
        headers["x-served-by"] = self._policy.server_marker

        response = CachedResponse(
            status_code=upstream.status_code,
            headers=_freeze(headers),
            body=upstream.body,
            ttl_seconds=decision.ttl_seconds,
        )
        if method.upper() == "HEAD":
            return BuiltResponse(response.without_body(), decision)
        if not upstream.ok:
            return BuiltResponse(response, decision)
        # Persisted copy is taken before CORS stamping; CORS is re-applied on every serve.
        return BuiltResponse(response, decision, cache_entry=replace(response))

    def preflight(self) -> CachedResponse:
        return CachedResponse(
            status_code=204,
            headers=(
                ("access-control-allow-origin", "*"),
                ("access-control-allow-methods", CORS_ALLOW_METHODS),
                ("access-control-allow-headers", "*"),
                ("access-control-max-age", str(PREFLIGHT_MAX_AGE)),
            ),
        )

    def method_not_allowed(self) -> CachedResponse:
        return stamp_cors(
            CachedResponse(
                status_code=405,
                headers=(("content-type", "text/plain; charset=utf-8"), ("allow", CORS_ALLOW_METHODS)),
                body=b"Method Not Allowed",
            )
        )

    def out_of_scope(self) -> CachedResponse:
        if not self._policy.maintenance_enabled:
            return stamp_cors(
                CachedResponse(
                    status_code=404,
                    headers=(("content-type", "text/plain; charset=utf-8"), ("cache-control", "no-store")),
                    body=b"Not Found",
                )
            )
        page = self._policy.maintenance_page or DEFAULT_MAINTENANCE_HTML
        return stamp_cors(
            CachedResponse(
                status_code=503,
                headers=(
                    ("content-type", "text/html; charset=utf-8"),
                    ("retry-after", str(self._policy.maintenance_retry_after_seconds)),
                    ("cache-control", "no-store"),
                ),
                body=page.encode("utf-8"),
            )
        )

    def origin_unreachable(self) -> CachedResponse:
        return stamp_cors(
            CachedResponse(
                status_code=502,
                headers=(("content-type", "text/plain; charset=utf-8"), ("cache-control", "no-store")),
                body=b"Failed to reach storage",
            )
        )
