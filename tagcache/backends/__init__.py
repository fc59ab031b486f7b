"""
Storage backends for the tag-aware cache.

Backends only store and expire values; tagging and cache-aside policy live
in the orchestrator.
"""

from .base import CacheBackend, CacheEntry, CacheStats, EvictionListener
from .memory import MemoryCacheBackend
from .redis import RedisCacheBackend

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "CacheStats",
    "EvictionListener",
    "MemoryCacheBackend",
    "RedisCacheBackend",
]
