"""Request classification: method gate, prefix gate and cache-key construction."""

from __future__ import annotations

import enum
import posixpath
import re
from dataclasses import dataclass
from typing import Optional

from .policy import EdgePolicy


ALLOWED_METHODS = ("GET", "HEAD", "OPTIONS")
CACHE_EPOCH_PARAM = "cv"

_ENCODED_SEPARATORS = re.compile(r"%2([eEfF])")


@dataclass(frozen=True)
class CacheKey:
    """Identity of a cached response.

    The epoch is a manual version component: changing it moves every request
    onto a fresh key without touching the entries stored under the old one.
    """

    path: str
    query: str
    epoch: str

    def render(self) -> str:
        if not self.epoch:
            return self.origin_target()
        suffix = f"{CACHE_EPOCH_PARAM}={self.epoch}"
        if self.query:
            return f"{self.path}?{self.query}&{suffix}"
        return f"{self.path}?{suffix}"

    def origin_target(self) -> str:
        """Path and query as requested by the caller, without the epoch."""
        return f"{self.path}?{self.query}" if self.query else self.path

    def __str__(self) -> str:
        return self.render()


class Verdict(enum.Enum):
    PREFLIGHT = "preflight"
    REJECTED = "rejected"
    MAINTENANCE = "maintenance"
    PROCEED = "proceed"


@dataclass(frozen=True)
class Classification:
    verdict: Verdict
    cache_key: Optional[CacheKey] = None


def normalize_path(path: str) -> str:
    """Collapse dot segments and repeated slashes, including percent-encoded ones.

    ``%2e`` and ``%2f`` are decoded first so ``/storage/%2e%2e/admin`` is gated
    the same way as ``/storage/../admin``.
    """
    if not path:
        return "/"
    path = _ENCODED_SEPARATORS.sub(lambda match: "." if match.group(1) in "eE" else "/", path)
    # Leading slashes are stripped first so normpath never sees the POSIX "//" root.
    normalized = posixpath.normpath("/" + path.lstrip("/"))
    if path.endswith("/") and normalized != "/":
        normalized += "/"
    return normalized


class RequestClassifier:
    def __init__(self, policy: EdgePolicy) -> None:
        self._policy = policy

    def classify(self, method: str, path: str, query: str = "") -> Classification:
        method = method.upper()
        if method == "OPTIONS":
            return Classification(Verdict.PREFLIGHT)
        if method not in ("GET", "HEAD"):
            return Classification(Verdict.REJECTED)

        normalized = normalize_path(path)
        if not normalized.startswith(self._policy.proxy_prefix):
            return Classification(Verdict.MAINTENANCE)
        return Classification(Verdict.PROCEED, CacheKey(normalized, query, self._policy.cache_epoch))
