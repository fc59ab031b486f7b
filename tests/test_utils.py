"""
Unit tests for cache helper policies.
"""

import base64
import json

import pytest

from tagcache.utils import (
    cache_with_invalidation,
    cache_with_refresh,
    cached,
    default_key_generator,
    generate_key,
    with_cache,
)


class TestGenerateKey:
    """Deterministic key derivation."""

    def test_field_order_does_not_matter(self):
        assert generate_key("search", {"a": 1, "b": 2}) == generate_key("search", {"b": 2, "a": 1})

    def test_prefix_and_payload(self):
        """The key is the prefix plus an encoding of the sorted parameters."""
        key = generate_key("search", {"q": "cats", "page": 2})
        prefix, encoded = key.split(":", 1)

        assert prefix == "search"
        assert json.loads(base64.b64decode(encoded)) == {"page": 2, "q": "cats"}

    def test_different_params_give_different_keys(self):
        assert generate_key("search", {"q": "cats"}) != generate_key("search", {"q": "dogs"})
        assert generate_key("a", {"q": 1}) != generate_key("b", {"q": 1})


class TestCacheWithRefresh:
    """Stale-while-revalidate."""

    @pytest.mark.asyncio
    async def test_miss_computes_in_foreground(self, cache, clock):
        """A miss stores the value with its timestamp."""
        result = await cache_with_refresh(cache, "k", lambda: "v1", ttl=1000, clock=clock)

        assert result == "v1"
        assert await cache.get("k") == {"value": "v1", "timestamp": clock.now}

    @pytest.mark.asyncio
    async def test_fresh_value_served_without_refresh(self, cache, clock):
        """Below the threshold no background work is scheduled."""
        await cache_with_refresh(cache, "k", lambda: "v1", ttl=1000, clock=clock)
        clock.advance(500)

        assert await cache_with_refresh(cache, "k", lambda: "v2", ttl=1000, clock=clock) == "v1"
        assert cache.pending_background_tasks == 0

    @pytest.mark.asyncio
    async def test_stale_value_served_then_refreshed(self, cache, clock):
        """Past the threshold the old value is returned and replaced in the background."""
        await cache_with_refresh(cache, "k", lambda: "v1", ttl=1000, clock=clock)
        clock.advance(900)

        result = await cache_with_refresh(cache, "k", lambda: "v2", ttl=1000, clock=clock)
        assert result == "v1"

        await cache.join_background_tasks()
        stored = await cache.get("k")
        assert stored["value"] == "v2"
        assert stored["timestamp"] == clock.now
        assert cache.metrics.sample(
            "cache_background_tasks_total", backend="memory", kind="refresh", result="ok"
        ) == 1

    @pytest.mark.asyncio
    async def test_one_refresh_per_key_at_a_time(self, cache, clock):
        """Repeated stale reads while a refresh is pending do not start another."""
        calls = []

        async def factory():
            calls.append(1)
            return f"v{len(calls)}"

        await cache_with_refresh(cache, "k", factory, ttl=1000, clock=clock)
        clock.advance(900)

        await cache_with_refresh(cache, "k", factory, ttl=1000, clock=clock)
        await cache_with_refresh(cache, "k", factory, ttl=1000, clock=clock)
        await cache.join_background_tasks()

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_background_failure_keeps_old_value(self, cache, clock):
        """A failing refresh is logged; the caller never sees it."""
        await cache_with_refresh(cache, "k", lambda: "v1", ttl=1000, clock=clock)
        clock.advance(900)

        def broken():
            raise RuntimeError("upstream down")

        assert await cache_with_refresh(cache, "k", broken, ttl=1000, clock=clock) == "v1"
        await cache.join_background_tasks()

        assert (await cache.get("k"))["value"] == "v1"
        assert cache.metrics.sample(
            "cache_background_tasks_total", backend="memory", kind="refresh", result="error"
        ) == 1

    @pytest.mark.asyncio
    async def test_foreground_failure_propagates(self, cache, clock):
        def broken():
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            await cache_with_refresh(cache, "k", broken, ttl=1000, clock=clock)


class TestCacheWithInvalidation:
    """Cache-aside plus a scheduled delete."""

    @pytest.mark.asyncio
    async def test_key_removed_after_delay(self, cache):
        """The value is cached at first and gone once the timer fires."""
        result = await cache_with_invalidation(cache, "k", lambda: "v", invalidate_after=10, tags=["t"])

        assert result == "v"
        assert await cache.get("k") == "v"

        await cache.join_background_tasks()
        assert await cache.get("k") is None
        assert cache.tags() == []

    @pytest.mark.asyncio
    async def test_timer_cancelled_on_shutdown(self, cache):
        await cache_with_invalidation(cache, "k", lambda: "v", invalidate_after=60_000)
        assert cache.has_pending_task("cache-invalidate:k") is True

        await cache.shutdown()
        assert cache.pending_background_tasks == 0


class TestWithCache:
    """Function wrapping."""

    @pytest.mark.asyncio
    async def test_repeated_calls_hit_cache(self, cache):
        """Same arguments run the function once; new arguments run it again."""
        calls = []

        async def load_user(user_id, verbose=False):
            calls.append(user_id)
            return {"id": user_id}

        wrapped = with_cache(load_user, cache, ttl=1000)

        assert await wrapped(1) == {"id": 1}
        assert await wrapped(1) == {"id": 1}
        assert await wrapped(2) == {"id": 2}
        assert calls == [1, 2]
        assert wrapped.__name__ == "load_user"

    @pytest.mark.asyncio
    async def test_decorator_with_custom_key_and_tags(self, cache):
        """The key generator controls the cache key and tags allow invalidation."""
        calls = []

        @cached(cache, key_generator=lambda user_id: f"user:{user_id}", tags=["users"])
        async def load_user(user_id):
            calls.append(user_id)
            return {"id": user_id}

        await load_user(7)
        assert await cache.get("user:7") == {"id": 7}
        assert cache.keys_for_tag("users") == {"user:7"}

        await cache.invalidate_by_tag("users")
        await load_user(7)
        assert calls == [7, 7]

    @pytest.mark.asyncio
    async def test_string_tag_passed_whole(self, cache):
        async def load_report(report_id):
            return {"id": report_id}

        wrapped = with_cache(load_report, cache, key_generator=lambda report_id: f"report:{report_id}", tags="reports")
        await wrapped(3)

        assert cache.tags() == ["reports"]

    def test_default_key_includes_function_and_arguments(self):
        async def fetch(a, b=None):
            return a

        build = default_key_generator(fetch)

        assert build(1, b=2) == build(1, b=2)
        assert build(1, b=2) != build(1, b=3)
        assert "fetch" in build(1)
