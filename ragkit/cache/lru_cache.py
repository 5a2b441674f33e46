"""In-process LRU cache with per-entry TTL, and a no-op stand-in.

Both providers implement :class:`CacheProvider`, so caching can be turned
off by swapping in :class:`NoCacheProvider` without branching at call sites.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from ragkit.errors import ConfigError

logger = logging.getLogger(__name__)

V = TypeVar("V")

DEFAULT_MAX_SIZE = 10000


@dataclass(frozen=True)
class CacheStats:
    """Cache counters at a point in time."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class CacheProvider(Protocol[V]):
    """Key/value cache interface. A miss is reported as ``None``."""

    def get(self, key: str) -> V | None: ...

    def set(self, key: str, value: V, ttl: float | None = None) -> None: ...

    def delete(self, key: str) -> bool: ...

    def has(self, key: str) -> bool: ...

    def clear(self) -> None: ...

    def size(self) -> int: ...

    def stats(self) -> CacheStats: ...


@dataclass
class _CacheEntry(Generic[V]):
    value: V
    expires_at: float | None = None


class LRUCacheProvider(Generic[V]):
    """Least-recently-used cache with optional TTL per entry.

    Entries live in an ``OrderedDict`` (a hash map over a doubly linked
    list) ordered from least to most recently used, so get, set and delete
    are O(1). Every public operation holds a lock, keeping the map and the
    recency order consistent when searches share one cache across threads.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries before LRU eviction
            default_ttl: TTL in seconds for entries set without one (None = no expiry)
            clock: Monotonic time source in seconds

        Raises:
            ConfigError: If max_size < 1 or default_ttl <= 0
        """
        if max_size < 1:
            raise ConfigError(f"max_size must be at least 1, got {max_size}")
        if default_ttl is not None and default_ttl <= 0:
            raise ConfigError(f"default_ttl must be positive, got {default_ttl}")

        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry[V]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        logger.debug(f"Initialized LRUCacheProvider: max_size={max_size}, default_ttl={default_ttl}")

    def get(self, key: str) -> V | None:
        """Return the cached value and mark it most recently used.

        Expired entries are removed and reported as a miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._is_expired(entry):
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        """Insert or replace an entry, evicting the LRU entry when full.

        Args:
            key: Cache key
            value: Value to store
            ttl: TTL in seconds (default: the cache's default_ttl)

        Raises:
            ConfigError: If ttl is not positive
        """
        if ttl is not None and ttl <= 0:
            raise ConfigError(f"ttl must be positive, got {ttl}")
        effective_ttl = ttl if ttl is not None else self.default_ttl
        expires_at = self._clock() + effective_ttl if effective_ttl is not None else None

        with self._lock:
            if key in self._entries:
                entry = self._entries[key]
                entry.value = value
                entry.expires_at = expires_at
                self._entries.move_to_end(key)
                return

            self._entries[key] = _CacheEntry(value=value, expires_at=expires_at)
            if len(self._entries) > self.max_size:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Evicted least recently used key '{evicted_key}'")

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            del self._entries[key]
            return True

    def has(self, key: str) -> bool:
        """Check presence without touching recency order or counters."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._is_expired(entry)

    def clear(self) -> None:
        """Remove every entry and reset the counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        """Keys from most to least recently used (expired entries included)."""
        with self._lock:
            return list(reversed(self._entries))

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._entries),
                evictions=self._evictions,
            )

    def reset_stats(self) -> None:
        """Zero the counters, keeping the entries."""
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def prune_expired(self) -> int:
        """Drop all expired entries. Returns how many were removed."""
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Pruned {len(expired)} expired cache entries")
        return len(expired)

    def _is_expired(self, entry: _CacheEntry[V]) -> bool:
        return entry.expires_at is not None and self._clock() >= entry.expires_at


class NoCacheProvider(Generic[V]):
    """Cache that never stores anything. Every ``get`` is a miss."""

    def get(self, key: str) -> V | None:
        return None

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        return None

    def delete(self, key: str) -> bool:
        return False

    def has(self, key: str) -> bool:
        return False

    def clear(self) -> None:
        return None

    def size(self) -> int:
        return 0

    def stats(self) -> CacheStats:
        return CacheStats()

    def reset_stats(self) -> None:
        return None
