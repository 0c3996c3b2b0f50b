"""Edge cache stores: the key -> response collaborator behind lookup and population."""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import tempfile
import time
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Optional

import boto3
import structlog

from ..common.settings import EdgeProxySettings
from .classifier import CacheKey
from .errors import CacheStoreUnavailable
from .responses import CachedResponse


LOGGER = structlog.get_logger("edgecache.edge_proxy.stores")

ENVELOPE_VERSION = 1


def storage_name(key: CacheKey) -> str:
    return hashlib.sha256(key.render().encode("utf-8")).hexdigest()


def expiry_for(response: CachedResponse, now: float) -> Optional[float]:
    if response.ttl_seconds is None:
        return None
    return now + response.ttl_seconds


def encode_entry(key: CacheKey, response: CachedResponse, expires_at: Optional[float]) -> bytes:
    """Serialize an entry as one JSON header line followed by the raw body."""
    header = {
        "v": ENVELOPE_VERSION,
        "key": key.render(),
        "status": response.status_code,
        "headers": [list(pair) for pair in response.headers],
        "ttl": response.ttl_seconds,
        "expires_at": expires_at,
    }
    return json.dumps(header, separators=(",", ":")).encode("utf-8") + b"\n" + response.body


def decode_entry(payload: bytes) -> tuple[CachedResponse, Optional[float], str]:
    line, sep, body = payload.partition(b"\n")
    if not sep:
        raise ValueError("cache entry is missing its header line")
    header = json.loads(line)
    if header.get("v") != ENVELOPE_VERSION:
        raise ValueError(f"unsupported cache entry version {header.get('v')!r}")
    response = CachedResponse(
        status_code=int(header["status"]),
        headers=tuple((str(name), str(value)) for name, value in header["headers"]),
        body=body,
        ttl_seconds=header.get("ttl"),
    )
    return response, header.get("expires_at"), header.get("key", "")


class CacheStore:
    async def match(self, key: CacheKey) -> Optional[CachedResponse]:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(self, key: CacheKey, response: CachedResponse) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def status(self) -> dict[str, object]:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryCacheStore(CacheStore):
    """Bounded LRU store local to this process; entries expire with their TTL."""

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic) -> None:
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[CachedResponse, Optional[float]]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def match(self, key: CacheKey) -> Optional[CachedResponse]:
        name = key.render()
        entry = self._entries.get(name)
        if entry is None:
            return None
        response, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[name]
            return None
        self._entries.move_to_end(name)
        return response

    async def put(self, key: CacheKey, response: CachedResponse) -> None:
        name = key.render()
        self._entries[name] = (response, expiry_for(response, self._clock()))
        self._entries.move_to_end(name)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def status(self) -> dict[str, object]:
        return {"backend": "memory", "entries": len(self._entries), "max_entries": self._max_entries}


class DiskCacheStore(CacheStore):
    """One file per key under a storage directory, named by the key digest."""

    def __init__(self, storage_path: Path, clock: Callable[[], float] = time.time) -> None:
        self._root = Path(storage_path).expanduser().resolve()
        self._clock = clock

    def _path_for(self, key: CacheKey) -> Path:
        name = storage_name(key)
        return self._root / name[:2] / name

    async def match(self, key: CacheKey) -> Optional[CachedResponse]:
        path = self._path_for(key)
        try:
            payload = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheStoreUnavailable(f"cannot read {path}: {exc}") from exc
        try:
            response, expires_at, stored_key = decode_entry(payload)
        except (ValueError, KeyError) as exc:
            LOGGER.warning("cache_entry_corrupt", cache_key=key.render(), error=str(exc))
            await asyncio.to_thread(path.unlink, missing_ok=True)
            return None
        if stored_key != key.render():
            return None
        if expires_at is not None and expires_at <= self._clock():
            await asyncio.to_thread(path.unlink, missing_ok=True)
            return None
        return response

    async def put(self, key: CacheKey, response: CachedResponse) -> None:
        payload = encode_entry(key, response, expiry_for(response, self._clock()))
        try:
            await asyncio.to_thread(self._write_atomic, self._path_for(key), payload)
        except OSError as exc:
            raise CacheStoreUnavailable(f"cannot write cache entry: {exc}") from exc

    @staticmethod
    def _write_atomic(path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def status(self) -> dict[str, object]:
        self._root.mkdir(parents=True, exist_ok=True)
        return {
            "backend": "disk",
            "storage_path": str(self._root),
            "writable": os.access(self._root, os.W_OK),
        }


class CircuitBreaker:
    """Stops calling a failing store for `reset_timeout` seconds after repeated failures."""

    def __init__(self, failure_threshold: int, reset_timeout: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._failure_threshold = max(1, failure_threshold)
        self._reset_timeout = max(0.0, reset_timeout)
        self._failure_count = 0
        self._opened_at: float | None = None

    def _maybe_reset(self) -> None:
        if self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self._reset_timeout:
            self._opened_at = None
            self._failure_count = 0

    def allow_request(self) -> bool:
        self._maybe_reset()
        return self._opened_at is None

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._failure_count >= self._failure_threshold:
            self._opened_at = self._clock()

    @property
    def is_open(self) -> bool:
        self._maybe_reset()
        return self._opened_at is not None


class S3CacheStore(CacheStore):
    """Regional store backed by an S3-compatible bucket."""

    def __init__(
        self,
        settings: EdgeProxySettings,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings
        session = boto3.session.Session()
        client_args: dict[str, Optional[str]] = {
            "endpoint_url": settings.s3_endpoint_url,
            "region_name": settings.s3_region,
        }
        self._client = session.client("s3", **{k: v for k, v in client_args.items() if v})
        self._bucket = settings.s3_bucket
        self._prefix = settings.s3_prefix
        self._clock = clock
        self._max_retries = max(0, settings.s3_max_retries)
        self._retry_base = max(0.0, settings.s3_retry_base_seconds)
        self._retry_max = max(self._retry_base, settings.s3_retry_max_seconds)
        self._breaker = CircuitBreaker(
            failure_threshold=settings.s3_circuit_breaker_failures,
            reset_timeout=settings.s3_circuit_breaker_reset_seconds,
            clock=monotonic,
        )

    def _object_key(self, key: CacheKey) -> str:
        return f"{self._prefix}{storage_name(key)}"

    async def match(self, key: CacheKey) -> Optional[CachedResponse]:
        try:
            response = await self._call_with_retry(
                self._client.get_object,
                Bucket=self._bucket,
                Key=self._object_key(key),
            )
        except self._client.exceptions.NoSuchKey:  # type: ignore[attr-defined]
            return None
        try:
            payload = await asyncio.to_thread(response["Body"].read)
        except Exception as exc:  # noqa: BLE001 - botocore surfaces stream failures under several types
            self._breaker.record_failure()
            raise CacheStoreUnavailable(f"S3 cache entry body could not be read: {exc}") from exc
        try:
            cached, expires_at, stored_key = decode_entry(payload)
        except (ValueError, KeyError) as exc:
            LOGGER.warning("cache_entry_corrupt", cache_key=key.render(), error=str(exc))
            return None
        if stored_key != key.render():
            return None
        if expires_at is not None and expires_at <= self._clock():
            return None
        return cached

    async def put(self, key: CacheKey, response: CachedResponse) -> None:
        expires_at = expiry_for(response, self._clock())
        await self._call_with_retry(
            self._client.put_object,
            Bucket=self._bucket,
            Key=self._object_key(key),
            Body=encode_entry(key, response, expires_at),
            ContentType="application/octet-stream",
        )

    def status(self) -> dict[str, object]:
        return {
            "backend": "s3",
            "bucket": self._bucket,
            "endpoint": self._settings.s3_endpoint_url,
            "circuit_open": self._breaker.is_open,
        }

    async def _call_with_retry(self, func: Callable[..., object], **kwargs) -> object:
        if not self._breaker.allow_request():
            raise CacheStoreUnavailable("S3 cache store circuit is open")

        attempt = 0
        while True:
            try:
                result = await asyncio.to_thread(func, **kwargs)
                self._breaker.record_success()
                return result
            except self._client.exceptions.NoSuchKey:  # type: ignore[attr-defined]
                self._breaker.record_success()
                raise
            except Exception as exc:  # noqa: BLE001
                attempt += 1
                if attempt > self._max_retries:
                    self._breaker.record_failure()
                    raise CacheStoreUnavailable(f"S3 call failed after {attempt} attempts: {exc}") from exc
                delay = min(self._retry_base * (2 ** (attempt - 1)), self._retry_max)
                if delay:
                    await asyncio.sleep(delay)


def build_store(settings: EdgeProxySettings) -> CacheStore:
    if settings.store_backend == "s3":
        if not settings.s3_bucket:
            raise RuntimeError("S3 cache backend selected but EDGE_CACHE_S3_BUCKET is not set")
        return S3CacheStore(settings)
    if settings.store_backend == "disk":
        return DiskCacheStore(settings.storage_path)
    return MemoryCacheStore(max_entries=settings.memory_max_entries)
