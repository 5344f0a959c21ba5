"""Tests for the local deny cache."""

from limiter.app.core.local_cache import LocalDenyCache
from limiter.app.models import Decision


def denial(retry_after=10.0) -> Decision:
    return Decision(
        allowed=False,
        limit=5,
        remaining=0,
        reset_at=100.0 + retry_after,
        retry_after=retry_after,
        window_seconds=60,
        policy_name="login",
    )


class TestLocalDenyCache:
    """Tests for caching and expiry of denials."""

    def test_served_until_retry_time(self):
        cache = LocalDenyCache()
        cache.put("k", denial(10.0), now=100.0)

        cached = cache.get("k", now=104.0)
        assert cached is not None
        assert cached.allowed is False
        assert cached.retry_after == 6.0

        assert cache.get("k", now=110.0) is None
        assert len(cache) == 0

    def test_allowed_decisions_not_cached(self):
        cache = LocalDenyCache()
        cache.put("k", Decision(allowed=True, limit=5, remaining=4, reset_at=0), now=0)
        cache.put("z", denial(0.0), now=0)
        assert len(cache) == 0

    def test_lru_bound(self):
        cache = LocalDenyCache(max_entries=2)
        cache.put("a", denial(), now=100.0)
        cache.put("b", denial(), now=100.0)
        cache.get("a", now=101.0)
        cache.put("c", denial(), now=100.0)

        assert cache.get("b", now=101.0) is None
        assert cache.get("a", now=101.0) is not None
        assert cache.get("c", now=101.0) is not None

    def test_invalidate(self):
        cache = LocalDenyCache()
        cache.put("a", denial(), now=100.0)
        cache.put("b", denial(), now=100.0)

        cache.invalidate("a")
        assert cache.get("a", now=100.0) is None
        assert len(cache) == 1

        cache.invalidate()
        assert len(cache) == 0
