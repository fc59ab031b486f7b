"""
Prometheus metrics for cache operations.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class CacheMetrics:
    """Counters and timings for one cache orchestrator."""

    def __init__(self, backend_name: str, registry: Optional[CollectorRegistry] = None):
        self.backend_name = backend_name
        # A private registry keeps several caches in one process from colliding.
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up cache metrics."""
        self._metrics["cache_operations_total"] = Counter(
            "cache_operations_total",
            "Total cache operations",
            ["backend", "operation", "result"],
            registry=self.registry
        )

        self._metrics["cache_errors_total"] = Counter(
            "cache_errors_total",
            "Total backend errors absorbed by the cache",
            ["backend", "operation"],
            registry=self.registry
        )

        self._metrics["cache_tag_invalidations_total"] = Counter(
            "cache_tag_invalidations_total",
            "Total keys removed through tag invalidation",
            ["backend"],
            registry=self.registry
        )

        self._metrics["cache_background_tasks_total"] = Counter(
            "cache_background_tasks_total",
            "Total background cache tasks",
            ["backend", "kind", "result"],
            registry=self.registry
        )

        self._metrics["cache_operation_duration_seconds"] = Histogram(
            "cache_operation_duration_seconds",
            "Cache operation duration in seconds",
            ["backend", "operation"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_operation(self, operation: str, result: str):
        """Record a completed cache operation."""
        self._metrics["cache_operations_total"].labels(
            backend=self.backend_name,
            operation=operation,
            result=result
        ).inc()

    def record_error(self, operation: str):
        """Record a backend error that was degraded to a default."""
        self._metrics["cache_errors_total"].labels(
            backend=self.backend_name,
            operation=operation
        ).inc()

    def record_tag_invalidation(self, count: int):
        """Record keys removed by tag invalidation."""
        if count > 0:
            self._metrics["cache_tag_invalidations_total"].labels(backend=self.backend_name).inc(count)

    def record_background_task(self, kind: str, result: str):
        """Record the outcome of a background refresh or invalidation."""
        self._metrics["cache_background_tasks_total"].labels(
            backend=self.backend_name,
            kind=kind,
            result=result
        ).inc()

    @contextmanager
    def time_operation(self, operation: str):
        """Context manager to time an operation."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            self._metrics["cache_operation_duration_seconds"].labels(
                backend=self.backend_name,
                operation=operation
            ).observe(duration)

    def sample(self, name: str, **labels) -> float:
        """Read the current value of a counter sample, 0.0 when unset."""
        value = self.registry.get_sample_value(name, labels)
        return value if value is not None else 0.0

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)
