"""
Storage contract shared by every cache backend.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

# Listener signature: (key, reason) where reason is "evicted" or "expired".
EvictionListener = Callable[[str, str], None]


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    """A stored value plus its expiry and access bookkeeping. Never leaves the backend."""

    value: Any
    ttl: int  # milliseconds, 0 = no expiry
    created_at: int
    access_count: int = 0
    last_accessed: int = 0

    def is_expired(self, now: int) -> bool:
        if self.ttl <= 0:
            return False
        return now - self.created_at > self.ttl


@dataclass
class CacheStats:
    """Accumulated counters for one backend instance."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["hit_rate"] = self.hit_rate
        return data


class CacheBackend(ABC):
    """
    Asynchronous storage contract.

    Every operation is a coroutine so local and remote stores look the same
    to callers. ``None`` is the absent marker: ``get`` returns it for missing
    or expired keys and never raises for "not found".
    """

    name: str = "backend"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 0) -> None:
        """Store a value, replacing any existing entry. ttl is in milliseconds.

        Raises:
            ValueError: if ttl is negative
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. True iff it was present."""

    @abstractmethod
    async def has(self, key: str) -> bool:
        """Presence check applying the same expiry rule as get."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    async def keys(self) -> List[str]:
        """Live keys; expired entries are pruned first."""

    @abstractmethod
    async def size(self) -> int:
        """Number of live entries; expired entries are pruned first."""

    async def start(self) -> None:
        """Open connections. No-op for local stores."""

    async def close(self) -> None:
        """Release connections. No-op for local stores."""

    async def health_check(self) -> bool:
        """True when the store is reachable."""
        return True

    def get_stats(self) -> Optional[CacheStats]:
        """Backend statistics, or None when the backend keeps none."""
        return None

    def add_eviction_listener(self, listener: EvictionListener) -> None:
        """Subscribe to keys leaving the store without an explicit delete.

        Backends that cannot observe evictions ignore the subscription.
        """
