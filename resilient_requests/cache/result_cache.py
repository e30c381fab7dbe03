"""
LRU result cache for RESILIENT_REQUESTS.

Completed call results are memoized by key in an ``OrderedDict`` ordered by
recency of access, giving O(1) lookups, promotions and evictions. Values are
deep-copied on the way in and on the way out so that callers mutating a
returned object cannot corrupt the cached copy.
"""

import copy
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..config import CacheConfig

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel type for cache misses (None is a valid cached value)."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


@dataclass
class CacheEntry:
    """A cached value and its bookkeeping."""

    key: str
    value: Any
    inserted_at: float
    last_accessed: float
    hits: int = 0

    def is_expired(self, now: float, ttl: float | None) -> bool:
        if ttl is None:
            return False
        return (now - self.inserted_at) > ttl


class ResultCache:
    """
    Bounded LRU cache with optional TTL.

    Entries are evicted by capacity, least recently accessed first. When a
    TTL is configured, an entry older than the TTL is treated as absent and
    removed on the next access to it; there is no background sweeper.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            config: Capacity, TTL and copy behaviour (defaults if None)
            clock: Monotonic time source in seconds
        """
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @property
    def capacity(self) -> int:
        return self.config.capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock(), self.config.ttl)

    def _copy(self, value: Any) -> Any:
        if not self.config.copy_values:
            return value
        return copy.deepcopy(value)

    def get(self, key: str) -> Any:
        """
        Look up a key.

        Args:
            key: Cache key

        Returns:
            A copy of the cached value, or ``MISSING``
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return MISSING

            now = self._clock()
            if entry.is_expired(now, self.config.ttl):
                del self._entries[key]
                self._misses += 1
                self._expirations += 1
                logger.debug("[ResultCache] Expired entry for %s", key)
                return MISSING

            self._entries.move_to_end(key)
            entry.last_accessed = now
            entry.hits += 1
            self._hits += 1
            value = entry.value

        return self._copy(value)

    def set(self, key: str, value: Any) -> None:
        """
        Store a value, evicting the least recently used entry on overflow.

        Args:
            key: Cache key
            value: Value to store (a copy is kept)
        """
        stored = self._copy(value)
        with self._lock:
            now = self._clock()
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = CacheEntry(
                key=key, value=stored, inserted_at=now, last_accessed=now
            )
            while len(self._entries) > self.config.capacity:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("[ResultCache] Evicted %s (capacity %d)",
                             evicted_key, self.config.capacity)

    def invalidate(self, key: str) -> bool:
        """
        Remove an entry.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("[ResultCache] Cleared all cached results")

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def stats(self) -> dict[str, Any]:
        """Size, capacity and hit/miss counters."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "capacity": self.config.capacity,
                "ttl": self.config.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }


__all__ = ["MISSING", "CacheEntry", "ResultCache"]
