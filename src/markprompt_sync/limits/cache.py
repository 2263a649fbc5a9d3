"""TTL + LRU cache for per-team quota and tier lookups."""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable

from markprompt_sync.observability.metrics import CACHE_HITS, CACHE_MISSES


@dataclass
class CacheEntry:
    """A cached value with metadata."""

    value: Any
    created_at: float
    hits: int = 0


class TTLCache:
    """
    Size-limited cache with LRU eviction and TTL-based expiration.

    Stale values are served until their TTL runs out; callers accept that
    staleness in exchange for not hitting the store on every request.
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            name: Label used in the cache hit/miss metrics
            ttl_seconds: Time-to-live for cache entries in seconds
            max_size: Maximum number of entries to cache
            clock: Monotonic time source
        """
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock

        self._cache: OrderedDict[Hashable, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._cache.get(key)

        if entry is None:
            self._miss()
            return None

        # Check TTL
        if self._clock() - entry.created_at >= self.ttl_seconds:
            del self._cache[key]
            self._miss()
            return None

        # Move to end (most recently used)
        self._cache.move_to_end(key)
        entry.hits += 1
        self._hits += 1
        CACHE_HITS.labels(cache=self.name).inc()
        return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        if key in self._cache:
            del self._cache[key]

        # Evict oldest if at capacity
        while len(self._cache) >= self.max_size:
            self._cache.popitem(last=False)

        self._cache[key] = CacheEntry(value=value, created_at=self._clock())

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one entry, or all of them."""
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)

    def _miss(self) -> None:
        self._misses += 1
        CACHE_MISSES.labels(cache=self.name).inc()

    @property
    def size(self) -> int:
        return len(self._cache)

    @property
    def stats(self) -> dict:
        """Return cache statistics."""
        total = self._hits + self._misses
        return {
            "name": self.name,
            "size": self.size,
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total > 0 else 0.0,
        }
