"""
Unit tests for the Redis backend.
"""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tagcache.backends.redis import RedisCacheBackend
from tagcache.cache import Cache
from tagcache.circuit_breaker import CircuitBreaker, CircuitBreakerState
from tagcache.errors import BackendError, BackendUnavailableError, SerializationError


@pytest.fixture
def redis_client():
    """Mock Redis client."""
    client = AsyncMock()
    client.get.return_value = None
    client.delete.return_value = 0
    client.exists.return_value = 0
    client.keys.return_value = []
    return client


@pytest.fixture
def backend(redis_client):
    """Redis backend over the mock client."""
    return RedisCacheBackend(redis_client, key_prefix="cache:")


class TestRedisCacheBackend:
    """Command mapping and serialization."""

    @pytest.mark.asyncio
    async def test_set_with_ttl_uses_millisecond_expiry(self, backend, redis_client):
        await backend.set("user:1", {"name": "Ada"}, ttl=1500)

        redis_client.set.assert_called_once_with("cache:user:1", json.dumps({"name": "Ada"}), px=1500)

    @pytest.mark.asyncio
    async def test_set_without_ttl_has_no_expiry(self, backend, redis_client):
        await backend.set("user:1", [1, 2], ttl=0)

        redis_client.set.assert_called_once_with("cache:user:1", "[1, 2]")

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, backend, redis_client):
        redis_client.get.return_value = '{"name": "Ada"}'

        assert await backend.get("user:1") == {"name": "Ada"}
        redis_client.get.assert_called_once_with("cache:user:1")

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, backend):
        assert await backend.get("user:1") is None

    @pytest.mark.asyncio
    async def test_get_undecodable_payload_is_a_miss(self, backend, redis_client):
        """Garbage written by another client reads as absent."""
        redis_client.get.return_value = "not-json{"

        assert await backend.get("user:1") is None

    @pytest.mark.asyncio
    async def test_unserializable_value_rejected(self, backend, redis_client):
        with pytest.raises(SerializationError):
            await backend.set("k", object())
        redis_client.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_negative_ttl_rejected(self, backend, redis_client):
        with pytest.raises(ValueError):
            await backend.set("k", "v", ttl=-1)
        redis_client.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_and_has(self, backend, redis_client):
        redis_client.delete.return_value = 1
        redis_client.exists.return_value = 1

        assert await backend.delete("k") is True
        assert await backend.has("k") is True
        redis_client.delete.assert_called_once_with("cache:k")
        redis_client.exists.assert_called_once_with("cache:k")

    @pytest.mark.asyncio
    async def test_keys_strip_prefix(self, backend, redis_client):
        redis_client.keys.return_value = ["cache:a", "cache:b"]

        assert await backend.keys() == ["a", "b"]
        assert await backend.size() == 2
        redis_client.keys.assert_called_with("cache:*")

    @pytest.mark.asyncio
    async def test_clear_deletes_only_prefixed_keys(self, backend, redis_client):
        redis_client.keys.return_value = ["cache:a", "cache:b"]

        await backend.clear()

        redis_client.delete.assert_called_once_with("cache:a", "cache:b")

    @pytest.mark.asyncio
    async def test_clear_on_empty_store_skips_delete(self, backend, redis_client):
        await backend.clear()

        redis_client.delete.assert_not_called()


class TestRedisFailures:
    """Transport errors and the circuit breaker."""

    @pytest.mark.asyncio
    async def test_start_fails_when_unreachable(self, backend, redis_client):
        redis_client.ping.side_effect = RedisConnectionError("refused")

        with pytest.raises(BackendUnavailableError):
            await backend.start()

    @pytest.mark.asyncio
    async def test_close_releases_client(self, backend, redis_client):
        await backend.close()

        redis_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_error_wrapped(self, backend, redis_client):
        """Client errors surface as BackendError with the failing command."""
        redis_client.get.side_effect = RedisConnectionError("refused")

        with pytest.raises(BackendError) as exc_info:
            await backend.get("k")
        assert exc_info.value.details == {"command": "get"}
        assert exc_info.value.code == "BACKEND_ERROR"

    @pytest.mark.asyncio
    async def test_breaker_opens_after_threshold(self, redis_client):
        """Once open, calls fail fast without touching Redis."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60.0, name="redis")
        backend = RedisCacheBackend(redis_client, breaker=breaker)
        redis_client.get.side_effect = RedisConnectionError("refused")

        for _ in range(2):
            with pytest.raises(BackendError):
                await backend.get("k")
        assert breaker.state == CircuitBreakerState.OPEN

        with pytest.raises(BackendUnavailableError):
            await backend.get("k")
        assert redis_client.get.call_count == 2

    @pytest.mark.asyncio
    async def test_health_check(self, backend, redis_client):
        assert await backend.health_check() is True

        redis_client.ping.side_effect = RedisConnectionError("refused")
        assert await backend.health_check() is False

    @pytest.mark.asyncio
    async def test_cache_degrades_over_failing_redis(self, redis_client):
        """The orchestrator absorbs Redis outages."""
        for command in ("get", "set", "delete", "exists", "keys"):
            getattr(redis_client, command).side_effect = RedisConnectionError("refused")
        cache = Cache(RedisCacheBackend(redis_client))

        assert await cache.get("k") is None
        assert await cache.set("k", "v", tags=["t"]) is False
        assert await cache.delete("k") is False
        assert await cache.has("k") is False
        assert await cache.keys() == []
        assert await cache.invalidate_by_tag("t") == 0
        assert await cache.get_or_set("k", lambda: "computed") == "computed"
