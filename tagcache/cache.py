"""
Cache orchestrator: tag index, cache-aside, batching and warm-up over a backend.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Coroutine,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from .backends.base import CacheBackend, CacheStats
from .coalescer import RequestCoalescer
from .logging import get_logger
from .metrics import CacheMetrics

Factory = Callable[[], Union[Any, Awaitable[Any]]]


async def call_factory(factory: Factory) -> Any:
    """Invoke a value factory that may be plain or asynchronous."""
    result = factory()
    if inspect.isawaitable(result):
        result = await result
    return result


def normalize_tags(tags: Optional[Union[str, Iterable[str]]]) -> List[str]:
    """Tags as a list; a bare string is one tag, not a sequence of letters."""
    if not tags:
        return []
    if isinstance(tags, str):
        return [tags]
    return list(tags)


@dataclass
class CacheItem:
    """One entry for a batch write."""
    key: str
    value: Any
    ttl: Optional[int] = None
    tags: Optional[Sequence[str]] = None


@dataclass
class WarmUpEntry:
    """One entry to precompute during warm-up."""
    key: str
    factory: Factory
    ttl: Optional[int] = None
    tags: Optional[Sequence[str]] = None


class Cache:
    """
    Façade used by application code.

    Storage is delegated to a backend; this layer adds tag-based
    invalidation, cache-aside, batch operations, warm-up and ownership of
    background tasks. The cache is advisory: backend failures are logged
    and degrade to a miss/False/no-op, they never reach the caller.

    Tag index invariant: ``key`` is in ``_tags[tag]`` iff ``tag`` is in
    ``_key_tags[key]``. Both directions are only ever mutated together.

    Concurrent misses on the same key each run their factory and the last
    write wins, unless ``coalesce=True`` is passed, in which case they share
    one in-flight computation.
    """

    def __init__(
        self,
        backend: CacheBackend,
        default_ttl: int = 0,
        *,
        coalesce: bool = False,
        metrics: Optional[CacheMetrics] = None,
    ):
        self.backend = backend
        self.default_ttl = default_ttl
        self.logger = get_logger("tagcache.cache")
        self.metrics = metrics or CacheMetrics(backend.name)

        self._tags: Dict[str, Set[str]] = {}      # tag -> keys
        self._key_tags: Dict[str, Set[str]] = {}  # key -> tags
        self._coalescer: Optional[RequestCoalescer] = RequestCoalescer() if coalesce else None
        self._background_tasks: Set[asyncio.Task] = set()
        # Per-key write sequence for tagged keys; lets a read tell whether a
        # write to the same key raced it.
        self._write_seq = 0
        self._key_seq: Dict[str, int] = {}

        backend.add_eviction_listener(self._on_backend_eviction)

    # Lifecycle

    async def init(self) -> None:
        """Open backend connections."""
        await self.backend.start()
        self.logger.info("Cache initialised", backend=self.backend.name, default_ttl=self.default_ttl)

    async def shutdown(self) -> None:
        """Cancel background work and release the backend."""
        pending = [task for task in self._background_tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self.backend.close()
        self.logger.info("Cache shut down", cancelled_tasks=len(pending))

    async def health_check(self) -> Dict[str, Any]:
        """Report backend reachability without raising."""
        try:
            healthy = await self.backend.health_check()
        except Exception as e:
            self.logger.error("Cache health check failed", error=str(e))
            healthy = False
        return {"backend": self.backend.name, "status": "ok" if healthy else "error"}

    async def __aenter__(self) -> "Cache":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # Pass-through operations

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None."""
        seq = self._key_seq.get(key, 0)
        try:
            with self.metrics.time_operation("get"):
                value = await self.backend.get(key)
        except Exception as e:
            self.logger.error("Cache get error", key=key, error=str(e))
            self.metrics.record_error("get")
            return None

        if value is None:
            self.metrics.record_operation("get", "miss")
            self._reconcile_missing(key, seq)
            return None

        self.metrics.record_operation("get", "hit")
        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        tags: Optional[Union[str, Iterable[str]]] = None,
    ) -> bool:
        """
        Store a value.

        Args:
            ttl: milliseconds; None uses the cache default, 0 never expires
            tags: when non-empty, replaces the key's previous tags

        Returns:
            True if the backend accepted the write. None is the absent
            marker and is never stored.

        Raises:
            ValueError: if ttl is negative
        """
        effective_ttl = self.default_ttl if ttl is None else ttl
        if effective_ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {effective_ttl}")
        if value is None:
            self.logger.warning("Refusing to cache None", key=key)
            self.metrics.record_operation("set", "rejected")
            return False

        tag_list = normalize_tags(tags)
        seq = None
        if tag_list or key in self._key_tags:
            self._write_seq += 1
            seq = self._key_seq[key] = self._write_seq

        try:
            with self.metrics.time_operation("set"):
                await self.backend.set(key, value, effective_ttl)
        except Exception as e:
            self.logger.error("Cache set error", key=key, error=str(e))
            self.metrics.record_error("set")
            if key not in self._key_tags and self._key_seq.get(key) == seq:
                self._key_seq.pop(key, None)
            return False

        self.metrics.record_operation("set", "ok")
        if tag_list:
            self._set_tags(key, tag_list)
        return True

    async def delete(self, key: str) -> bool:
        """Remove a key and its tag memberships."""
        seq = self._key_seq.get(key, 0)
        try:
            with self.metrics.time_operation("delete"):
                deleted = await self.backend.delete(key)
        except Exception as e:
            self.logger.error("Cache delete error", key=key, error=str(e))
            self.metrics.record_error("delete")
            return False

        if deleted:
            self._remove_tags(key)
            self.metrics.record_operation("delete", "ok")
        else:
            self._reconcile_missing(key, seq)
            self.metrics.record_operation("delete", "absent")
        return deleted

    async def has(self, key: str) -> bool:
        try:
            return await self.backend.has(key)
        except Exception as e:
            self.logger.error("Cache has error", key=key, error=str(e))
            self.metrics.record_error("has")
            return False

    async def clear(self) -> None:
        """Remove every entry and forget all tags."""
        try:
            await self.backend.clear()
        except Exception as e:
            self.logger.error("Cache clear error", error=str(e))
            self.metrics.record_error("clear")
            return
        self._tags.clear()
        self._key_tags.clear()
        self._key_seq.clear()
        self.logger.info("Cache cleared")

    async def keys(self) -> List[str]:
        try:
            return await self.backend.keys()
        except Exception as e:
            self.logger.error("Cache keys error", error=str(e))
            self.metrics.record_error("keys")
            return []

    async def size(self) -> int:
        try:
            return await self.backend.size()
        except Exception as e:
            self.logger.error("Cache size error", error=str(e))
            self.metrics.record_error("size")
            return 0

    # Composite operations

    async def get_or_set(
        self,
        key: str,
        factory: Factory,
        ttl: Optional[int] = None,
        tags: Optional[Union[str, Iterable[str]]] = None,
    ) -> Any:
        """
        Cache-aside lookup.

        Returns the cached value when present; otherwise runs ``factory``
        (sync or async), stores its result and returns it. Factory errors
        propagate: the caller asked for a value, not just a lookup.
        """
        value = await self.get(key)
        if value is not None:
            return value

        async def compute() -> Any:
            result = await call_factory(factory)
            await self.set(key, result, ttl=ttl, tags=tags)
            return result

        if self._coalescer is None:
            return await compute()
        return await self._coalescer.get_or_fetch(key, compute)

    async def invalidate_by_tag(self, tag: str) -> int:
        """Delete every key carrying ``tag``. Returns the number actually deleted."""
        keys = list(self._tags.get(tag, ()))
        if not keys:
            return 0

        deleted = 0
        for key in keys:
            if await self.delete(key):
                deleted += 1

        self.metrics.record_tag_invalidation(deleted)
        self.logger.info("Invalidated cache tag", tag=tag, deleted=deleted, tracked=len(keys))
        return deleted

    async def invalidate_by_tags(self, tags: Union[str, Iterable[str]]) -> int:
        total = 0
        for tag in normalize_tags(tags):
            total += await self.invalidate_by_tag(tag)
        return total

    async def mget(self, keys: Sequence[str]) -> List[Optional[Any]]:
        """Fetch several keys concurrently; order matches ``keys``."""
        return list(await asyncio.gather(*(self.get(key) for key in keys)))

    async def mset(self, entries: Iterable[Union[CacheItem, Mapping[str, Any]]]) -> int:
        """Write several entries concurrently. Returns how many writes succeeded."""
        results = await asyncio.gather(*(self._set_entry(entry) for entry in entries))
        return sum(1 for outcome in results if outcome)

    async def _set_entry(self, entry: Union[CacheItem, Mapping[str, Any]]) -> bool:
        try:
            item = self._as_item(entry)
            return await self.set(item.key, item.value, ttl=item.ttl, tags=item.tags)
        except (TypeError, ValueError) as e:
            self.logger.error("Invalid batch entry", entry=repr(entry), error=str(e))
            self.metrics.record_operation("mset", "invalid")
            return False

    async def warm_up(self, entries: Iterable[Union[WarmUpEntry, Mapping[str, Any]]]) -> Dict[str, Any]:
        """
        Precompute and store entries concurrently.

        A failing factory or a malformed entry is logged and skipped; it
        never blocks the others and nothing is raised to the caller.
        """
        plan = list(entries)
        summary: Dict[str, Any] = {"planned": len(plan), "warmed": 0, "errors": []}
        if not plan:
            return summary

        results = await asyncio.gather(*(self._warm_entry(entry) for entry in plan))
        for key, error in results:
            if error is None:
                summary["warmed"] += 1
            else:
                summary["errors"].append({"key": key, "error": error})

        self.logger.info(
            "Cache warm completed",
            planned=summary["planned"],
            warmed=summary["warmed"],
            errors=len(summary["errors"]),
        )
        return summary

    async def _warm_entry(self, raw: Union[WarmUpEntry, Mapping[str, Any]]) -> Tuple[Optional[str], Optional[str]]:
        """Returns (key, error); error is None on success."""
        try:
            entry = self._as_warm_entry(raw)
        except (TypeError, ValueError) as e:
            key = raw.get("key") if isinstance(raw, Mapping) else None
            self.logger.error("Invalid warm-up entry", key=key, error=str(e))
            self.metrics.record_operation("warm_up", "error")
            return key, f"invalid entry: {e}"

        try:
            value = await call_factory(entry.factory)
        except Exception as e:
            self.logger.error("Failed to warm cache entry", key=entry.key, error=str(e))
            self.metrics.record_operation("warm_up", "error")
            return entry.key, str(e)

        if value is None:
            error = "factory returned None"
        else:
            try:
                stored = await self.set(entry.key, value, ttl=entry.ttl, tags=entry.tags)
            except ValueError as e:
                error = str(e)
            else:
                error = None if stored else "backend rejected write"
        if error is not None:
            self.logger.error("Failed to warm cache entry", key=entry.key, error=error)
            self.metrics.record_operation("warm_up", "error")
            return entry.key, error
        self.metrics.record_operation("warm_up", "ok")
        return entry.key, None

    # Tag index

    def tags_for(self, key: str) -> Set[str]:
        return set(self._key_tags.get(key, ()))

    def keys_for_tag(self, tag: str) -> Set[str]:
        return set(self._tags.get(tag, ()))

    def tags(self) -> List[str]:
        return sorted(self._tags)

    async def prune_tags(self) -> int:
        """
        Drop tag memberships for keys the backend no longer holds.

        Returns:
            Number of keys removed from the index
        """
        before = dict(self._key_seq)
        try:
            live = set(await self.backend.keys())
        except Exception as e:
            self.logger.error("Cache prune error", error=str(e))
            self.metrics.record_error("prune_tags")
            return 0

        # Keys written while the scan was pending may be missing from it.
        stale = [
            key for key in self._key_tags
            if key not in live and self._key_seq.get(key, 0) == before.get(key, 0)
        ]
        for key in stale:
            self._remove_tags(key)
        if stale:
            self.logger.info("Pruned stale tag memberships", keys=len(stale))
        return len(stale)

    def _set_tags(self, key: str, tags: Iterable[str]) -> None:
        self._unlink(key)

        tag_set = set(tags)
        self._key_tags[key] = tag_set
        for tag in tag_set:
            self._tags.setdefault(tag, set()).add(key)

    def _remove_tags(self, key: str) -> None:
        self._key_seq.pop(key, None)
        self._unlink(key)

    def _unlink(self, key: str) -> None:
        tags = self._key_tags.pop(key, None)
        if not tags:
            return
        for tag in tags:
            keys = self._tags.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tags[tag]

    def _reconcile_missing(self, key: str, seq: int) -> None:
        # Only trust the miss if no write to this key landed while we awaited.
        if key in self._key_tags and self._key_seq.get(key, 0) == seq:
            self._remove_tags(key)

    def _on_backend_eviction(self, key: str, reason: str) -> None:
        self._remove_tags(key)

    # Background tasks

    def run_in_background(self, coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None) -> asyncio.Task:
        """
        Schedule fire-and-forget work owned by this cache.

        The cache holds a reference until the task finishes and cancels it on
        shutdown. Callers get the task back but are not expected to await it.
        """
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Background cache task failed", task=task.get_name(), error=str(exc))

    async def join_background_tasks(self) -> None:
        """Wait for every background task scheduled so far to finish."""
        pending = [task for task in self._background_tasks if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def has_pending_task(self, name: str) -> bool:
        """True if an unfinished background task carries ``name``."""
        return any(task.get_name() == name and not task.done() for task in self._background_tasks)

    @property
    def pending_background_tasks(self) -> int:
        return sum(1 for task in self._background_tasks if not task.done())

    # Introspection

    def get_stats(self) -> Optional[CacheStats]:
        """Backend statistics when the backend keeps them."""
        return self.backend.get_stats()

    def get_cache_stats(self) -> Dict[str, Any]:
        """Summary of backend stats, tag index and in-flight work."""
        stats = self.get_stats()
        summary: Dict[str, Any] = {
            "backend": self.backend.name,
            "default_ttl": self.default_ttl,
            "stats": stats.to_dict() if stats is not None else None,
            "tags": len(self._tags),
            "tagged_keys": len(self._key_tags),
            "background_tasks": self.pending_background_tasks,
        }
        if self._coalescer is not None:
            summary["coalescer"] = self._coalescer.get_stats()
        return summary

    @staticmethod
    def _as_item(entry: Union[CacheItem, Mapping[str, Any]]) -> CacheItem:
        if isinstance(entry, CacheItem):
            return entry
        return CacheItem(**entry)

    @staticmethod
    def _as_warm_entry(entry: Union[WarmUpEntry, Mapping[str, Any]]) -> WarmUpEntry:
        if isinstance(entry, WarmUpEntry):
            return entry
        return WarmUpEntry(**entry)
