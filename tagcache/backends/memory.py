"""
Process-local backend with TTL expiry and bounded LRU eviction.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Callable, List, Optional

from .base import CacheBackend, CacheEntry, CacheStats, EvictionListener, now_ms
from ..logging import get_logger

DEFAULT_MAX_SIZE = 1000


class MemoryCacheBackend(CacheBackend):
    """
    In-memory store ordered by recency.

    The OrderedDict runs from least- to most-recently used; a hit or a write
    moves the key to the end, and eviction always takes from the front.
    Expiry is checked lazily on get/has and swept eagerly before keys/size.
    """

    name = "memory"

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        *,
        clock: Callable[[], int] = now_ms,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.logger = get_logger("tagcache.backends.memory")
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._stats = CacheStats()
        self._listeners: List[EvictionListener] = []

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None

        now = self._clock()
        if entry.is_expired(now):
            self._remove(key, "expired")
            self._stats.misses += 1
            return None

        entry.access_count += 1
        entry.last_accessed = now
        self._entries.move_to_end(key)
        self._stats.hits += 1
        return entry.value

    async def set(self, key: str, value: Any, ttl: int = 0) -> None:
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")
        # Drop the old entry first so an overwrite never evicts another key.
        self._entries.pop(key, None)

        while len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            self._remove(oldest, "evicted")

        now = self._clock()
        self._entries[key] = CacheEntry(
            value=value,
            ttl=int(ttl),
            created_at=now,
            access_count=0,
            last_accessed=now,
        )
        self._stats.sets += 1

    async def delete(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self._remove(key, "expired")
            return False
        del self._entries[key]
        self._stats.deletes += 1
        return True

    async def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self._remove(key, "expired")
            return False
        return True

    async def clear(self) -> None:
        self._entries.clear()

    async def keys(self) -> List[str]:
        self._sweep_expired()
        return list(self._entries.keys())

    async def size(self) -> int:
        self._sweep_expired()
        return len(self._entries)

    def get_stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            sets=self._stats.sets,
            deletes=self._stats.deletes,
            size=len(self._entries),
        )

    def add_eviction_listener(self, listener: EvictionListener) -> None:
        self._listeners.append(listener)

    def peek_entry(self, key: str) -> Optional[CacheEntry]:
        """Entry bookkeeping without touching recency or stats. For diagnostics."""
        return self._entries.get(key)

    def _sweep_expired(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key, "expired")

    def _remove(self, key: str, reason: str) -> None:
        del self._entries[key]
        self.logger.debug("Cache entry removed", key=key, reason=reason)
        for listener in self._listeners:
            try:
                listener(key, reason)
            except Exception as exc:
                self.logger.error("Eviction listener failed", key=key, reason=reason, error=str(exc))
