"""Property-based tests for cache-key construction and the request gates."""

from __future__ import annotations

from hypothesis import given, strategies as st

from edgecache.edge_proxy.classifier import CacheKey, RequestClassifier, Verdict, normalize_path
from edgecache.edge_proxy.policy import EdgePolicy, classify


POLICY = EdgePolicy(origin_base_url="https://origin.example.test", cache_epoch="v1")

segments = st.lists(
    st.text(alphabet=st.characters(min_codepoint=33, max_codepoint=126, blacklist_characters="/?#"), min_size=1, max_size=12),
    min_size=0,
    max_size=6,
)
queries = st.text(alphabet=st.characters(min_codepoint=33, max_codepoint=126, blacklist_characters="#"), max_size=40)
epochs = st.from_regex(r"[A-Za-z0-9._-]{1,12}", fullmatch=True)


@given(segments)
def test_proceeding_paths_always_stay_under_prefix(parts: list[str]) -> None:
    path = "/" + "/".join(parts)
    result = RequestClassifier(POLICY).classify("GET", path)
    if result.verdict is Verdict.PROCEED:
        assert result.cache_key is not None
        assert result.cache_key.path.startswith(POLICY.proxy_prefix)
        assert "/../" not in result.cache_key.path + "/"
    else:
        assert result.verdict is Verdict.MAINTENANCE


@given(segments)
def test_normalize_path_is_idempotent(parts: list[str]) -> None:
    once = normalize_path("/" + "/".join(parts))
    assert normalize_path(once) == once


@given(segments, queries, epochs, epochs)
def test_distinct_epochs_give_distinct_keys(parts: list[str], query: str, first: str, second: str) -> None:
    path = "/storage/" + "/".join(parts)
    a = CacheKey(path, query, first)
    b = CacheKey(path, query, second)
    assert (a.render() == b.render()) == (first == second)
    assert a.origin_target() == b.origin_target()


@given(segments, queries, epochs)
def test_rendered_key_ends_with_epoch_and_origin_target_omits_it(parts: list[str], query: str, epoch: str) -> None:
    key = CacheKey("/storage/" + "/".join(parts), query, epoch)
    assert key.render().endswith(f"cv={epoch}")
    assert key.render().startswith(key.origin_target())
    if not query:
        assert key.origin_target() == key.path


@given(st.integers(min_value=100, max_value=599), st.text(max_size=40))
def test_long_ttl_only_for_successful_image_like(status_code: int, content_type: str) -> None:
    ok = 200 <= status_code < 300
    decision = classify(ok, content_type, POLICY)
    if decision.ttl_seconds == POLICY.long_ttl_seconds:
        assert ok
        assert content_type.startswith("image/") or "octet-stream" in content_type
    else:
        assert decision.ttl_seconds == POLICY.short_ttl_seconds
    if not ok:
        assert decision.ttl_seconds == POLICY.short_ttl_seconds
