"""
Request coalescing for concurrent cache misses.

When several coroutines miss on the same key at once, only the first runs
the fetch; the rest await its result.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

from .logging import get_logger

logger = get_logger("tagcache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress fetch."""
    future: asyncio.Future
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same key share one fetch.

    Pattern:
    - First request for a key initiates the fetch
    - Subsequent requests for the same key await the same future
    - When the fetch completes, all waiters receive the same result or error

    Everything runs on one event loop, so the in-flight map needs no lock:
    it is only mutated between awaits.
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """
        Either join an existing in-flight fetch or start a new one.

        Raises:
            Exception: any error from ``fetch`` is propagated to every waiter
        """
        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            in_flight.waiter_count += 1
            logger.debug("Coalescing request", key=key, waiters=in_flight.waiter_count)
            # shield: a cancelled waiter must not cancel the shared fetch
            return await asyncio.shield(in_flight.future)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = InFlightRequest(future=future)
        logger.debug("Initiating fetch", key=key)

        try:
            result = await fetch()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure does not warn at GC time.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(key, None)

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight fetches."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
        }
