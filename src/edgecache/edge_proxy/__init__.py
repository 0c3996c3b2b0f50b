"""Edge cache proxy: classify, look up, fetch through and populate."""

from .classifier import CacheKey, Classification, RequestClassifier, Verdict
from .errors import CacheStoreUnavailable, EdgeProxyError, OriginUnreachable
from .origin import OriginFetcher, UpstreamResult
from .policy import CacheDecision, EdgePolicy, classify, is_image_like
from .responses import CachedResponse, ResponseBuilder, stamp_cors
from .service import EdgeProxy
from .stores import CacheStore, DiskCacheStore, MemoryCacheStore, S3CacheStore

__all__ = [
    "CacheDecision",
    "CacheKey",
    "CacheStore",
    "CacheStoreUnavailable",
    "CachedResponse",
    "Classification",
    "DiskCacheStore",
    "EdgePolicy",
    "EdgeProxy",
    "EdgeProxyError",
    "MemoryCacheStore",
    "OriginFetcher",
    "OriginUnreachable",
    "RequestClassifier",
    "ResponseBuilder",
    "S3CacheStore",
    "UpstreamResult",
    "Verdict",
    "classify",
    "is_image_like",
    "stamp_cors",
]
