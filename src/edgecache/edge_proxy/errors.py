"""Exceptions raised inside the edge proxy request path."""

from __future__ import annotations


class EdgeProxyError(Exception):
    """Base class for edge proxy failures."""


class OriginUnreachable(EdgeProxyError):
    """The origin could not be reached or did not return a well-formed HTTP response."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"origin unreachable for {url}: {reason}")
        self.url = url
        self.reason = reason


class CacheStoreUnavailable(EdgeProxyError):
    """The cache store could not serve a read or accept a write."""
