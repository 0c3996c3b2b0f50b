"""Application configuration models shared by services."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated, Literal, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


EPOCH_PATTERN = re.compile(r"^[A-Za-z0-9._-]*$")


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class EdgeProxySettings(BaseSettings):
    """Configuration for the edge cache proxy service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    origin_base_url: str = env_field(..., "EDGE_ORIGIN_BASE_URL")
    origin_credential: Optional[SecretStr] = env_field(None, "EDGE_ORIGIN_CREDENTIAL")
    origin_credential_header: str = env_field("apikey", "EDGE_ORIGIN_CREDENTIAL_HEADER")
    origin_timeout_seconds: float = env_field(30.0, "EDGE_ORIGIN_TIMEOUT")

    # Bump to invalidate every cached entry at once (e.g. v1 -> v2); empty means unversioned keys.
    cache_epoch: str = env_field("v1", "EDGE_CACHE_EPOCH")
    long_ttl_seconds: int = env_field(60 * 60 * 24 * 365, "EDGE_LONG_TTL")
    short_ttl_seconds: int = env_field(60, "EDGE_SHORT_TTL")

    proxy_prefix: str = env_field("/storage/", "EDGE_PROXY_PREFIX")
    maintenance_enabled: bool = env_field(True, "EDGE_MAINTENANCE_ENABLED")
    maintenance_retry_after_seconds: int = env_field(86400, "EDGE_MAINTENANCE_RETRY_AFTER")
    maintenance_page_path: Optional[Path] = env_field(None, "EDGE_MAINTENANCE_PAGE")
    server_marker: str = env_field("edgecache", "EDGE_SERVER_MARKER")
    strip_headers: Annotated[list[str], NoDecode] = Field(default_factory=list, validation_alias="EDGE_STRIP_HEADERS")

    store_backend: Literal["memory", "disk", "s3"] = env_field("memory", "EDGE_CACHE_BACKEND")
    memory_max_entries: int = env_field(10_000, "EDGE_MEMORY_MAX_ENTRIES")
    storage_path: Path = env_field(Path("./edge-cache"), "EDGE_CACHE_STORAGE_PATH")
    s3_endpoint_url: Optional[str] = env_field(None, "EDGE_CACHE_S3_ENDPOINT")
    s3_bucket: Optional[str] = env_field(None, "EDGE_CACHE_S3_BUCKET")
    s3_region: Optional[str] = env_field(None, "EDGE_CACHE_S3_REGION")
    s3_prefix: str = env_field("edge-cache/", "EDGE_CACHE_S3_PREFIX")
    s3_max_retries: int = env_field(2, "EDGE_CACHE_S3_MAX_RETRIES")
    s3_retry_base_seconds: float = env_field(0.1, "EDGE_CACHE_S3_RETRY_BASE")
    s3_retry_max_seconds: float = env_field(1.0, "EDGE_CACHE_S3_RETRY_MAX")
    s3_circuit_breaker_failures: int = env_field(5, "EDGE_CACHE_S3_CIRCUIT_FAILURES")
    s3_circuit_breaker_reset_seconds: float = env_field(30.0, "EDGE_CACHE_S3_CIRCUIT_RESET")
    write_drain_timeout_seconds: float = env_field(10.0, "EDGE_WRITE_DRAIN_TIMEOUT")

    ops_prefix: str = env_field("/__edge", "EDGE_OPS_PREFIX")
    metrics_token: Optional[SecretStr] = env_field(None, "EDGE_METRICS_TOKEN")
    bind_host: str = env_field("0.0.0.0", "EDGE_BIND_HOST")
    bind_port: int = env_field(8080, "EDGE_BIND_PORT")
    log_level: str = env_field("INFO", "EDGE_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "EDGE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "EDGE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "EDGE_OTEL_SAMPLER_RATIO")

    @field_validator("origin_base_url", mode="before")
    @classmethod
    def _normalize_origin(cls, value):
        if isinstance(value, str):
            value = value.strip().rstrip("/")
            if not value.startswith(("http://", "https://")):
                raise ValueError("origin base URL must be http(s)")
        return value

    @field_validator("cache_epoch")
    @classmethod
    def _validate_epoch(cls, value: str) -> str:
        if not EPOCH_PATTERN.match(value):
            raise ValueError("cache epoch may only contain letters, digits, '.', '_' and '-'")
        return value

    @field_validator("proxy_prefix", "ops_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path prefixes must start with '/'")
        return value

    @field_validator("strip_headers", mode="before")
    @classmethod
    def _split_strip_headers(cls, value):
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def _check_ttls(self) -> "EdgeProxySettings":
        if self.short_ttl_seconds <= 0 or self.long_ttl_seconds <= 0:
            raise ValueError("TTLs must be positive")
        if self.short_ttl_seconds > self.long_ttl_seconds:
            raise ValueError("short TTL must not exceed long TTL")
        return self
