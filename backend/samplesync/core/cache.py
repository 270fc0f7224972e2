"""In-memory cache handle for derived sync state.

Provides caching using cachetools TTLCache with:
- Configurable TTL (time-to-live) and maxsize
- Explicit invalidation, either by key or of the whole handle
- Statistics tracking (hits, misses)

Caches are plain objects handed to their owners (for example the sample
sync service); there is no module-level cache instance.
"""

import logging
from typing import Any

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# Default cache configuration
DEFAULT_MAXSIZE = 256
DEFAULT_TTL = 30


class Cache:
    """In-memory cache with TTL support.

    Wraps cachetools.TTLCache with hit/miss statistics and an explicit
    ``invalidate()`` that writers call after every mutation.
    """

    def __init__(
        self,
        name: str = "default",
        maxsize: int = DEFAULT_MAXSIZE,
        default_ttl: int = DEFAULT_TTL,
    ) -> None:
        """Initialize cache with configuration.

        Args:
            name: Label used in logs and stats.
            maxsize: Maximum number of entries in the cache.
            default_ttl: TTL in seconds for cached entries.
        """
        self.name = name
        self._maxsize = maxsize
        self._default_ttl = default_ttl
        self._cache: TTLCache[str, Any] = TTLCache(maxsize=maxsize, ttl=default_ttl)
        self._hits = 0
        self._misses = 0

    @property
    def hits(self) -> int:
        """Return the number of cache hits."""
        return self._hits

    @property
    def misses(self) -> int:
        """Return the number of cache misses."""
        return self._misses

    @property
    def size(self) -> int:
        """Return the current number of cached entries."""
        return len(self._cache)

    def get(self, key: str) -> tuple[Any, bool]:
        """Get a value from the cache.

        Args:
            key: The cache key.

        Returns:
            Tuple of (value, found) where found indicates if the key exists.
        """
        try:
            value = self._cache[key]
            self._hits += 1
            return value, True
        except KeyError:
            self._misses += 1
            return None, False

    def set(self, key: str, value: Any) -> None:
        """Set a value in the cache.

        Args:
            key: The cache key.
            value: The value to cache.
        """
        self._cache[key] = value

    def delete(self, key: str) -> bool:
        """Delete a key from the cache.

        Args:
            key: The cache key to delete.

        Returns:
            True if the key was deleted, False if it didn't exist.
        """
        try:
            del self._cache[key]
            return True
        except KeyError:
            return False

    def invalidate(self) -> None:
        """Drop every cached entry."""
        if self._cache:
            logger.debug("Cache invalidated", extra={"cache": self.name, "entries": len(self._cache)})
        self._cache.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with name, hits, misses, size, maxsize and hit_rate.
        """
        total = self._hits + self._misses
        hit_rate = self._hits / total if total > 0 else 0.0
        return {
            "name": self.name,
            "hits": self._hits,
            "misses": self._misses,
            "size": self.size,
            "maxsize": self._maxsize,
            "ttl": self._default_ttl,
            "hit_rate": round(hit_rate, 3),
        }
