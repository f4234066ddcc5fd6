"""Tests for cache utilities."""

from __future__ import annotations

from ibmcloud_operator.utils.cache import TTLCache, make_cache_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestCacheKey:
    """Test cases for make_cache_key function."""

    def test_make_cache_key(self):
        """Test making cache key."""
        assert make_cache_key("plan", "cloudantnosqldb", "lite") == "plan:cloudantnosqldb:lite"

    def test_make_cache_key_different_values(self):
        """Test cache keys are unique for different lookups."""
        key1 = make_cache_key("plan", "cloudantnosqldb", "lite")
        key2 = make_cache_key("plan", "cloudantnosqldb", "standard")
        key3 = make_cache_key("service", "cloudantnosqldb")

        assert len({key1, key2, key3}) == 3


class TestTTLCache:
    """Test cases for TTLCache get/set operations."""

    def test_set_and_get(self):
        """Test setting and getting a cached value."""
        cache = TTLCache()
        cache.set("test:key", {"name": "test"})

        assert cache.get("test:key") == {"name": "test"}

    def test_get_missing(self):
        """Test getting a missing key returns None."""
        assert TTLCache().get("nonexistent") is None

    def test_entry_expires(self):
        """Test that entries expire after the default TTL."""
        clock = FakeClock()
        cache = TTLCache(ttl=10.0, clock=clock)
        cache.set("key", "value")

        clock.now += 9.9
        assert cache.get("key") == "value"

        clock.now += 0.1
        assert cache.get("key") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self):
        """Test that an entry TTL overrides the default."""
        clock = FakeClock()
        cache = TTLCache(ttl=300.0, clock=clock)
        cache.set("token", "abc", ttl=5.0)

        clock.now += 6.0

        assert cache.get("token") is None

    def test_overwrite(self):
        """Test that setting the same key overwrites the previous value."""
        cache = TTLCache()
        cache.set("key", 1)
        cache.set("key", 2)

        assert cache.get("key") == 2

    def test_get_or_set_computes_once(self):
        """Test that the factory only runs on a miss."""
        cache = TTLCache()
        calls = []

        def factory():
            calls.append(1)
            return "plan-id"

        assert cache.get_or_set("plan", factory) == "plan-id"
        assert cache.get_or_set("plan", factory) == "plan-id"
        assert len(calls) == 1


class TestCacheInvalidation:
    """Test cases for cache invalidation."""

    def test_invalidate_all(self):
        """Test invalidating all cache entries."""
        cache = TTLCache()
        cache.set("key1", 1)
        cache.set("key2", 2)

        cache.invalidate()

        assert cache.get("key1") is None
        assert cache.get("key2") is None

    def test_invalidate_with_pattern(self):
        """Test invalidating entries matching a pattern."""
        cache = TTLCache()
        cache.set("plan:cloudantnosqldb:lite", "p1")
        cache.set("plan:cloudantnosqldb:standard", "p2")
        cache.set("service:cloudantnosqldb", "s1")

        cache.invalidate("plan")

        assert cache.get("plan:cloudantnosqldb:lite") is None
        assert cache.get("plan:cloudantnosqldb:standard") is None
        assert cache.get("service:cloudantnosqldb") == "s1"

    def test_invalidate_empty_cache(self):
        """Test invalidating an empty cache doesn't error."""
        cache = TTLCache()
        cache.invalidate()
        cache.invalidate("pattern")
