"""Tests for the cache module.

Tests cover:
- Cache initialization and configuration
- Cache hit/miss behavior and statistics
- TTL expiration behavior
- Invalidation by key and of the whole handle
"""

import time

from samplesync.core.cache import DEFAULT_MAXSIZE, DEFAULT_TTL, Cache


class TestCacheInitialization:
    """Tests for cache initialization and configuration."""

    def test_cache_creates_with_default_settings(self) -> None:
        cache = Cache()
        stats = cache.get_stats()
        assert stats["maxsize"] == DEFAULT_MAXSIZE
        assert stats["ttl"] == DEFAULT_TTL
        assert cache.size == 0

    def test_cache_creates_with_custom_settings(self) -> None:
        cache = Cache("status", maxsize=10, default_ttl=5)
        stats = cache.get_stats()
        assert stats["name"] == "status"
        assert stats["maxsize"] == 10
        assert stats["ttl"] == 5


class TestCacheOperations:
    """Tests for get/set/delete."""

    def test_get_missing_key_reports_not_found(self) -> None:
        cache = Cache()
        assert cache.get("missing") == (None, False)
        assert cache.misses == 1

    def test_cached_none_is_distinguishable_from_missing(self) -> None:
        cache = Cache()
        cache.set("key", None)
        assert cache.get("key") == (None, True)
        assert cache.hits == 1

    def test_delete(self) -> None:
        cache = Cache()
        cache.set("key", 1)
        assert cache.delete("key") is True
        assert cache.delete("key") is False

    def test_entries_expire_after_ttl(self) -> None:
        cache = Cache(default_ttl=10)
        cache.set("key", "value")

        cache._cache.expire(time.monotonic() + 11)

        assert cache.get("key") == (None, False)


class TestInvalidation:
    """Writers drop every cached entry."""

    def test_invalidate_clears_all_entries(self) -> None:
        cache = Cache()
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate()

        assert cache.size == 0
        assert cache.get("a") == (None, False)

    def test_hit_rate(self) -> None:
        cache = Cache()
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("b")
        assert cache.get_stats()["hit_rate"] == 0.667
