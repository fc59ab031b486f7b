"""
Shared fixtures for tagcache tests.
"""

from typing import Any, List, Optional

import pytest

from tagcache.backends.base import CacheBackend
from tagcache.backends.memory import MemoryCacheBackend
from tagcache.cache import Cache
from tagcache.errors import BackendError


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FailingBackend(CacheBackend):
    """Backend whose every storage call fails, like an unreachable remote store."""

    name = "failing"

    async def get(self, key: str) -> Optional[Any]:
        raise BackendError(self.name, "connection refused")

    async def set(self, key: str, value: Any, ttl: int = 0) -> None:
        raise BackendError(self.name, "connection refused")

    async def delete(self, key: str) -> bool:
        raise BackendError(self.name, "connection refused")

    async def has(self, key: str) -> bool:
        raise BackendError(self.name, "connection refused")

    async def clear(self) -> None:
        raise BackendError(self.name, "connection refused")

    async def keys(self) -> List[str]:
        raise BackendError(self.name, "connection refused")

    async def size(self) -> int:
        raise BackendError(self.name, "connection refused")

    async def health_check(self) -> bool:
        return False


@pytest.fixture
def clock():
    """Controllable millisecond clock."""
    return FakeClock()


@pytest.fixture
def memory_backend(clock):
    """In-memory backend with a small capacity and a fake clock."""
    return MemoryCacheBackend(max_size=3, clock=clock)


@pytest.fixture
def cache(clock):
    """Cache over an in-memory backend driven by the fake clock."""
    return Cache(MemoryCacheBackend(max_size=100, clock=clock))


@pytest.fixture
def failing_cache():
    """Cache whose backend always errors."""
    return Cache(FailingBackend())
