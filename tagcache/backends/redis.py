"""
Redis-backed store satisfying the cache backend contract.
"""

from __future__ import annotations

import json
from typing import Any, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .base import CacheBackend
from ..circuit_breaker import CircuitBreaker
from ..errors import BackendError, BackendUnavailableError, SerializationError
from ..logging import get_logger


class RedisCacheBackend(CacheBackend):
    """
    Wraps an asyncio Redis client.

    Values are stored as JSON under ``key_prefix``; expiry is delegated to
    Redis with millisecond precision. Transport errors are raised to the
    caller; the orchestrator decides how to degrade.
    """

    name = "redis"

    def __init__(
        self,
        client: "redis.Redis",
        key_prefix: str = "cache:",
        *,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._redis = client
        self.key_prefix = key_prefix
        self.logger = get_logger("tagcache.backends.redis")
        self.breaker = breaker or CircuitBreaker(name="redis")

    @classmethod
    def from_url(cls, redis_url: str, key_prefix: str = "cache:", socket_timeout: float = 5.0) -> "RedisCacheBackend":
        """Build a backend with its own connection pool."""
        client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
            retry_on_timeout=True,
            health_check_interval=30
        )
        return cls(client, key_prefix)

    async def start(self) -> None:
        try:
            await self._redis.ping()
        except Exception as e:
            self.logger.error("Failed to reach Redis", error=str(e))
            raise BackendUnavailableError(self.name, str(e))
        self.logger.info("Redis cache backend started", key_prefix=self.key_prefix)

    async def close(self) -> None:
        await self._redis.aclose()
        self.logger.info("Redis cache backend stopped")

    async def get(self, key: str) -> Optional[Any]:
        blob = await self._call("get", self._full_key(key))
        if blob is None:
            return None
        try:
            return json.loads(blob)
        except (TypeError, ValueError):
            self.logger.warning("Discarding undecodable cache payload", key=key)
            return None

    async def set(self, key: str, value: Any, ttl: int = 0) -> None:
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")
        try:
            payload = json.dumps(value, ensure_ascii=True)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot store value for key {key!r}", {"error": str(e)})

        if ttl > 0:
            await self._call("set", self._full_key(key), payload, px=int(ttl))
        else:
            await self._call("set", self._full_key(key), payload)

    async def delete(self, key: str) -> bool:
        removed = await self._call("delete", self._full_key(key))
        return removed > 0

    async def has(self, key: str) -> bool:
        found = await self._call("exists", self._full_key(key))
        return found > 0

    async def clear(self) -> None:
        keys = await self._call("keys", self._pattern())
        if keys:
            await self._call("delete", *keys)
            self.logger.info("Cleared cache keys", keys_count=len(keys))

    async def keys(self) -> List[str]:
        raw = await self._call("keys", self._pattern())
        return [self._strip_prefix(item) for item in raw]

    async def size(self) -> int:
        raw = await self._call("keys", self._pattern())
        return len(raw)

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._redis.ping()
            return True
        except Exception:
            return False

    async def _call(self, command: str, *args, **kwargs) -> Any:
        """Run one Redis command through the circuit breaker."""
        try:
            return await self.breaker.call(getattr(self._redis, command), *args, **kwargs)
        except BackendUnavailableError:
            raise
        except RedisError as e:
            raise BackendError(self.name, str(e), {"command": command})

    def _full_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _pattern(self) -> str:
        return f"{self.key_prefix}*"

    def _strip_prefix(self, raw_key: Any) -> str:
        key = raw_key.decode("utf-8") if isinstance(raw_key, bytes) else str(raw_key)
        return key[len(self.key_prefix):] if key.startswith(self.key_prefix) else key
