"""
Helper policies built on top of the cache orchestrator.

- generate_key: deterministic keys from parameter mappings
- cache_with_refresh: stale-while-revalidate
- cache_with_invalidation: cache-aside plus a delayed, unconditional delete
- with_cache / cached: wrap an async function with cache-aside
"""

import asyncio
import base64
import functools
import json
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from .backends.base import now_ms
from .cache import Cache, Factory, call_factory, normalize_tags
from .logging import get_logger

logger = get_logger("tagcache.utils")

DEFAULT_REFRESH_THRESHOLD = 0.8


def generate_key(prefix: str, params: Mapping[str, Any]) -> str:
    """
    Build a stable cache key from a parameter mapping.

    Field order does not matter: ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}``
    produce the same key.
    """
    serialized = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    encoded = base64.b64encode(serialized.encode("utf-8")).decode("ascii")
    return f"{prefix}:{encoded}"


async def cache_with_refresh(
    cache: Cache,
    key: str,
    factory: Factory,
    ttl: int,
    refresh_threshold: float = DEFAULT_REFRESH_THRESHOLD,
    tags: Optional[Union[str, Iterable[str]]] = None,
    *,
    clock: Callable[[], int] = now_ms,
) -> Any:
    """
    Serve cached data immediately and refresh it ahead of expiry.

    The stored payload is ``{"value": ..., "timestamp": ms}``. Once its age
    passes ``ttl * refresh_threshold`` the cached value is still returned,
    and a background task recomputes and rewrites it. On a miss the value is
    computed in the foreground and factory errors propagate.
    """
    tag_list = normalize_tags(tags) or None
    cached = await cache.get(key)

    if isinstance(cached, dict) and "timestamp" in cached:
        age = clock() - cached["timestamp"]
        if age > ttl * refresh_threshold:
            _schedule_refresh(cache, key, factory, ttl, tag_list, clock)
        return cached.get("value")

    value = await call_factory(factory)
    await cache.set(key, {"value": value, "timestamp": clock()}, ttl=ttl, tags=tag_list)
    return value


def _schedule_refresh(
    cache: Cache,
    key: str,
    factory: Factory,
    ttl: int,
    tags: Optional[list],
    clock: Callable[[], int],
) -> None:
    task_name = f"cache-refresh:{key}"
    if cache.has_pending_task(task_name):
        logger.debug("Refresh already in flight", key=key)
        return

    async def refresh() -> None:
        try:
            value = await call_factory(factory)
            await cache.set(key, {"value": value, "timestamp": clock()}, ttl=ttl, tags=tags)
            cache.metrics.record_background_task("refresh", "ok")
            logger.debug("Background cache refresh complete", key=key)
        except Exception as e:
            # The stale value stays valid until its own TTL runs out.
            cache.metrics.record_background_task("refresh", "error")
            logger.warning("Background cache refresh failed", key=key, error=str(e))

    cache.run_in_background(refresh(), name=task_name)


async def cache_with_invalidation(
    cache: Cache,
    key: str,
    factory: Factory,
    invalidate_after: int,
    ttl: Optional[int] = None,
    tags: Optional[Union[str, Iterable[str]]] = None,
) -> Any:
    """
    Cache-aside lookup that also deletes ``key`` after ``invalidate_after`` ms.

    The deletion is independent of the backend's TTL bookkeeping and fires
    even if the key was rewritten in the meantime.
    """
    result = await cache.get_or_set(key, factory, ttl=ttl, tags=tags)

    async def invalidate_later() -> None:
        await asyncio.sleep(invalidate_after / 1000)
        deleted = await cache.delete(key)
        cache.metrics.record_background_task("invalidate", "ok" if deleted else "absent")
        logger.debug("Scheduled invalidation fired", key=key, deleted=deleted)

    cache.run_in_background(invalidate_later(), name=f"cache-invalidate:{key}")
    return result


def default_key_generator(fn: Callable[..., Any]) -> Callable[..., str]:
    """Key builder used by with_cache when none is supplied."""
    name = f"{fn.__module__}.{fn.__qualname__}"

    def build(*args, **kwargs) -> str:
        arguments = json.dumps([list(args), kwargs], sort_keys=True, separators=(",", ":"), default=str)
        return f"{name}:{arguments}"

    return build


def with_cache(
    fn: Callable[..., Awaitable[Any]],
    cache: Cache,
    key_generator: Optional[Callable[..., str]] = None,
    ttl: Optional[int] = None,
    tags: Optional[Union[str, Iterable[str]]] = None,
) -> Callable[..., Awaitable[Any]]:
    """Wrap a coroutine function with cache-aside on its arguments."""
    build_key = key_generator or default_key_generator(fn)
    tag_list = normalize_tags(tags) or None

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs) -> Any:
        cache_key = build_key(*args, **kwargs)
        return await cache.get_or_set(cache_key, lambda: fn(*args, **kwargs), ttl=ttl, tags=tag_list)

    return wrapper


def cached(
    cache: Cache,
    key_generator: Optional[Callable[..., str]] = None,
    ttl: Optional[int] = None,
    tags: Optional[Union[str, Iterable[str]]] = None,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[Any]]]:
    """Decorator form of with_cache."""

    def decorator(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        return with_cache(fn, cache, key_generator=key_generator, ttl=ttl, tags=tags)

    return decorator
