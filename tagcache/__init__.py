"""
Tag-aware, TTL-aware asynchronous cache.

This package aggregates the cache building blocks:

- backends: storage contract, in-memory LRU store, Redis store
- cache: orchestrator with tag invalidation, cache-aside, batching, warm-up
- utils: key derivation, refresh-ahead, scheduled invalidation, function wrapping
- factory: composition root building a Cache from configuration
- config: settings via pydantic-settings
- logging: structured logging with correlation context
- metrics: Prometheus counters for cache operations
- errors: cache error types

Callers interact with a ``Cache`` instance only; backends are an
implementation detail chosen by configuration.
"""

from .backends import CacheBackend, CacheEntry, CacheStats, MemoryCacheBackend, RedisCacheBackend
from .cache import Cache, CacheItem, WarmUpEntry
from .coalescer import RequestCoalescer
from .config import CacheConfig, get_config
from .errors import (
    BackendError,
    BackendUnavailableError,
    CacheError,
    ConfigurationError,
    SerializationError,
)
from .factory import configure_cache_logging, create_backend, create_cache
from .utils import (
    cache_with_invalidation,
    cache_with_refresh,
    cached,
    generate_key,
    with_cache,
)

__all__ = [
    # Backends
    "CacheBackend",
    "CacheEntry",
    "CacheStats",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    # Orchestrator
    "Cache",
    "CacheItem",
    "WarmUpEntry",
    "RequestCoalescer",
    # Configuration
    "CacheConfig",
    "get_config",
    "create_backend",
    "create_cache",
    "configure_cache_logging",
    # Errors
    "CacheError",
    "BackendError",
    "BackendUnavailableError",
    "ConfigurationError",
    "SerializationError",
    # Utilities
    "generate_key",
    "cache_with_refresh",
    "cache_with_invalidation",
    "with_cache",
    "cached",
]
