"""
Composition root: build a Cache from configuration.

Construct one cache per process (or per configuration) and pass it to the
code that needs it. Call ``await cache.init()`` at startup and
``await cache.shutdown()`` on exit.
"""

from typing import Optional

from .backends.base import CacheBackend
from .backends.memory import MemoryCacheBackend
from .backends.redis import RedisCacheBackend
from .cache import Cache
from .config import CacheConfig
from .errors import ConfigurationError
from .logging import configure_logging, get_logger
from .metrics import CacheMetrics

logger = get_logger("tagcache.factory")


def create_backend(config: CacheConfig, redis_client=None) -> CacheBackend:
    """Instantiate the backend selected by ``config.backend_type``."""
    if config.backend_type == "memory":
        return MemoryCacheBackend(max_size=config.max_size)

    if config.backend_type == "remote":
        if redis_client is not None:
            return RedisCacheBackend(redis_client, key_prefix=config.key_prefix)
        return RedisCacheBackend.from_url(
            config.redis_url,
            key_prefix=config.key_prefix,
            socket_timeout=config.redis_socket_timeout,
        )

    raise ConfigurationError(f"Unsupported cache backend '{config.backend_type}'")


def create_cache(
    config: Optional[CacheConfig] = None,
    *,
    redis_client=None,
    metrics: Optional[CacheMetrics] = None,
) -> Cache:
    """Build a Cache from explicit or environment configuration."""
    config = config or CacheConfig()
    backend = create_backend(config, redis_client=redis_client)
    cache = Cache(
        backend,
        default_ttl=config.default_ttl,
        coalesce=config.coalesce_requests,
        metrics=metrics,
    )
    logger.info(
        "Cache created",
        backend=backend.name,
        default_ttl=config.default_ttl,
        max_size=config.max_size,
        coalesce=config.coalesce_requests,
    )
    return cache


def configure_cache_logging(config: Optional[CacheConfig] = None, service_name: str = "tagcache") -> None:
    """Set up structured logging at the configured level. Call once at process start."""
    config = config or CacheConfig()
    configure_logging(service_name, config.log_level)
