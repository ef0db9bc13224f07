"""Tests for TTLCache."""

from bucketops.cache import TTLCache


class TestTTLCache:
    """Tests for TTLCache expiry."""

    def test_empty(self):
        assert TTLCache(10).get() is None

    def test_fresh_then_expired(self):
        now = [100.0]
        cache = TTLCache(10, clock=lambda: now[0])
        cache.set({"box": 3})
        now[0] = 109.9
        assert cache.get() == {"box": 3}
        now[0] = 110.0
        assert cache.get() is None
        assert cache.fetched_at is None

    def test_invalidate(self):
        cache = TTLCache(10)
        cache.set("x")
        cache.invalidate()
        assert cache.get() is None
