"""Cacheability classification and the immutable proxy policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..common.settings import EdgeProxySettings


INTERNAL_HEADERS = frozenset({"x-kong-upstream-latency", "x-kong-proxy-latency", "via"})
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


@dataclass(frozen=True)
class EdgePolicy:
    """Per-process proxy configuration handed to every stage at construction time."""

    origin_base_url: str
    cache_epoch: str
    proxy_prefix: str = "/storage/"
    long_ttl_seconds: int = 60 * 60 * 24 * 365
    short_ttl_seconds: int = 60
    origin_credential: Optional[str] = None
    origin_credential_header: str = "apikey"
    maintenance_enabled: bool = True
    maintenance_retry_after_seconds: int = 86400
    maintenance_page: Optional[str] = None
    server_marker: str = "edgecache"
    strip_headers: frozenset[str] = INTERNAL_HEADERS

    @classmethod
    def from_settings(cls, settings: "EdgeProxySettings") -> "EdgePolicy":
        page = None
        if settings.maintenance_page_path is not None:
            page = settings.maintenance_page_path.read_text(encoding="utf-8")
        credential = settings.origin_credential.get_secret_value() if settings.origin_credential else None
        return cls(
            origin_base_url=settings.origin_base_url,
            cache_epoch=settings.cache_epoch,
            proxy_prefix=settings.proxy_prefix,
            long_ttl_seconds=settings.long_ttl_seconds,
            short_ttl_seconds=settings.short_ttl_seconds,
            origin_credential=credential,
            origin_credential_header=settings.origin_credential_header,
            maintenance_enabled=settings.maintenance_enabled,
            maintenance_retry_after_seconds=settings.maintenance_retry_after_seconds,
            maintenance_page=page,
            server_marker=settings.server_marker,
            strip_headers=INTERNAL_HEADERS | frozenset(settings.strip_headers),
        )


@dataclass(frozen=True)
class CacheDecision:
    ttl_seconds: int
    cacheable: bool


def is_image_like(content_type: str) -> bool:
    """Image payloads and opaque binaries are the long-lived objects this proxy fronts."""
    return content_type.startswith("image/") or "octet-stream" in content_type


def classify(ok: bool, content_type: str, policy: EdgePolicy) -> CacheDecision:
    """Pick the TTL tier for an origin result.

    Only successful image-like payloads earn the long TTL. Everything else,
    including every error status, gets the short TTL so a transient origin
    failure cannot be pinned at the edge.
    """
    if ok and is_image_like(content_type):
        return CacheDecision(ttl_seconds=policy.long_ttl_seconds, cacheable=True)
    return CacheDecision(ttl_seconds=policy.short_ttl_seconds, cacheable=False)
