"""
TTLCache - In-memory cache with per-entry TTL and bulk invalidation.

Features:
- Per-entry TTL with lazy expiry on access
- Max-size eviction of the oldest entry (approximate LRU)
- Structured keys with structural and regex invalidation
- Sweep of expired entries, driven by the maintenance scheduler

Operations never await, so no lock is needed under asyncio.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, Hashable, TypeVar

from loguru import logger

T = TypeVar("T")


def serialize_params(params: Any) -> str:
    """Deterministic serialization used inside cache keys."""
    return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class CacheKey:
    """Structured cache key: (collection, operation, serialized params)."""

    collection: str
    operation: str
    params: str = ""

    @classmethod
    def build(cls, collection: str, operation: str, params: Any = None) -> "CacheKey":
        return cls(collection, operation, serialize_params(params))

    def __str__(self) -> str:
        return f"{self.collection}:{self.operation}:{self.params}"


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    value: T
    stored_at: datetime
    ttl: timedelta

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now - self.stored_at > self.ttl


@dataclass
class CacheStats:
    """Cache counters."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class TTLCache:
    """
    In-memory key/value cache with TTL and max-size eviction.

    Usage:
        cache = TTLCache(max_size=1000, default_ttl=timedelta(minutes=5))

        value = cache.get(key)
        if value is None:
            value = await fetch()
            cache.set(key, value, ttl=timedelta(minutes=1))
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._entries: dict[Hashable, CacheEntry[Any]] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def default_ttl(self) -> timedelta:
        return self._default_ttl

    def set(self, key: Hashable, value: Any, ttl: timedelta | None = None) -> None:
        """
        Store a value, evicting the oldest entry first when at capacity.

        Args:
            key: Cache key (CacheKey or any hashable)
            value: Value to cache
            ttl: Time to live (uses default if not specified)
        """
        if len(self._entries) >= self._max_size and key not in self._entries:
            self._evict_oldest()

        entry = CacheEntry(
            value=value,
            stored_at=self._clock(),
            ttl=ttl if ttl is not None else self._default_ttl,
        )
        self._entries[key] = entry
        self._log(f"SET: {str(key)[:80]} (TTL: {entry.ttl.total_seconds()}s)")

    def get(self, key: Hashable) -> Any | None:
        """Return the value if present and unexpired, else None."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {str(key)[:80]}")
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._stats.misses += 1
            self._log(f"EXPIRED: {str(key)[:80]}")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {str(key)[:80]}")
        return entry.value

    def has(self, key: Hashable) -> bool:
        """Check presence without touching hit/miss counters."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return False
        return True

    def delete(self, key: Hashable) -> bool:
        """Delete a specific key."""
        if key in self._entries:
            del self._entries[key]
            self._log(f"DELETE: {str(key)[:80]}")
            return True
        return False

    def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        self._log(f"CLEAR: {count} entries removed")

    def size(self) -> int:
        return len(self._entries)

    def keys(self) -> list[Hashable]:
        return list(self._entries.keys())

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Delete every key the predicate accepts. Returns count removed."""
        keys_to_delete = [k for k in self._entries if predicate(k)]
        for key in keys_to_delete:
            del self._entries[key]
        return len(keys_to_delete)

    def invalidate_collection(self, collection: str) -> int:
        """Delete every structured key that belongs to a collection."""
        count = self.invalidate_where(
            lambda k: isinstance(k, CacheKey) and k.collection == collection
        )
        if count:
            self._log(f"INVALIDATE: {count} entries of collection '{collection}'")
        return count

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Delete all keys whose string form matches a regex.

        Args:
            pattern: Regular expression searched in str(key)

        Returns:
            Number of entries invalidated
        """
        regex = re.compile(pattern)
        count = self.invalidate_where(lambda k: regex.search(str(k)) is not None)
        logger.debug(f"[TTLCache] pattern invalidation: {count} entries matching '{pattern}'")
        return count

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        expired_keys = [k for k, v in self._entries.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            logger.debug(f"[TTLCache] cleanup: removed {len(expired_keys)} expired entries")

        return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Evict the entry with the oldest stored time."""
        if not self._entries:
            return

        oldest_key = min(self._entries, key=lambda k: self._entries[k].stored_at)
        del self._entries[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {str(oldest_key)[:80]}")

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return {
            "total_entries": len(self._entries),
            "valid_entries": len(self._entries) - expired,
            "expired_entries": expired,
            "max_size": self._max_size,
            "default_ttl": self._default_ttl.total_seconds(),
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "evictions": self._stats.evictions,
            "hit_rate": f"{self._stats.hit_rate:.2%}",
        }

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[TTLCache] {message}")
