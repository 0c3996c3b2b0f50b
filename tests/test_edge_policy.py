from __future__ import annotations

import pytest

from edgecache.edge_proxy.policy import INTERNAL_HEADERS, EdgePolicy, classify, is_image_like


@pytest.mark.parametrize(
    "content_type",
    ["image/png", "image/webp", "image/svg+xml", "application/octet-stream", "binary/octet-stream"],
)
def test_image_like_content_types(content_type: str) -> None:
    assert is_image_like(content_type)


@pytest.mark.parametrize("content_type", ["", "text/plain", "application/json", "text/html; charset=utf-8", "IMAGE/PNG"])
def test_non_image_content_types(content_type: str) -> None:
    assert not is_image_like(content_type)


def test_ok_image_gets_long_ttl(policy: EdgePolicy) -> None:
    decision = classify(True, "image/png", policy)
    assert decision.ttl_seconds == 31_536_000
    assert decision.cacheable


def test_ok_non_image_gets_short_ttl(policy: EdgePolicy) -> None:
    decision = classify(True, "text/plain", policy)
    assert decision.ttl_seconds == 60
    assert not decision.cacheable


@pytest.mark.parametrize("content_type", ["image/png", "application/octet-stream", "application/json"])
def test_errors_never_get_long_ttl(policy: EdgePolicy, content_type: str) -> None:
    decision = classify(False, content_type, policy)
    assert decision.ttl_seconds == policy.short_ttl_seconds
    assert not decision.cacheable


def test_ttls_come_from_policy() -> None:
    policy = EdgePolicy(origin_base_url="https://o", cache_epoch="v1", long_ttl_seconds=3600, short_ttl_seconds=5)
    assert classify(True, "image/jpeg", policy).ttl_seconds == 3600
    assert classify(False, "image/jpeg", policy).ttl_seconds == 5


def test_policy_from_settings(settings, tmp_path) -> None:
    page = tmp_path / "maintenance.html"
    page.write_text("<p>down</p>", encoding="utf-8")
    custom = settings.model_copy(
        update={"maintenance_page_path": page, "strip_headers": ["x-amz-request-id"], "cache_epoch": "v7"}
    )
    policy = EdgePolicy.from_settings(custom)
    assert policy.cache_epoch == "v7"
    assert policy.origin_credential == "anon-key"
    assert policy.maintenance_page == "<p>down</p>"
    assert INTERNAL_HEADERS <= policy.strip_headers
    assert "x-amz-request-id" in policy.strip_headers


def test_policy_is_immutable(policy: EdgePolicy) -> None:
    with pytest.raises(AttributeError):
        policy.cache_epoch = "v2"  # type: ignore[misc]
