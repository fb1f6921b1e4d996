"""
Explorer Metrics Collection

Prometheus metrics for resubmit, delete and purge operations, lock-path
fallbacks and errors.

Author: SBExplorer Contributors
Date: 2026-01-19
"""

import time
from contextlib import contextmanager
from typing import Iterator, Optional

from prometheus_client import (
    Counter,
    Histogram,
    CollectorRegistry,
    CONTENT_TYPE_LATEST,
)


class ExplorerMetrics:
    """
    Prometheus metrics collector for explorer operations.

    Tracks relocated and removed messages, fallback usage and errors.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics collectors.

        Args:
            registry: Prometheus registry (uses default if None)
        """
        self.registry = registry

        self.messages_resubmitted_total = Counter(
            'sbexplorer_messages_resubmitted_total',
            'Total dead-lettered messages sent back to their origin',
            ['entity_type', 'path'],
            registry=registry
        )

        self.messages_deleted_total = Counter(
            'sbexplorer_messages_deleted_total',
            'Total dead-lettered messages deleted individually',
            ['entity_type'],
            registry=registry
        )

        self.messages_purged_total = Counter(
            'sbexplorer_messages_purged_total',
            'Total dead-lettered messages removed by purges',
            ['entity_type'],
            registry=registry
        )

        self.fallback_attempts_total = Counter(
            'sbexplorer_fallback_attempts_total',
            'Source-removal attempts after the lock path was unavailable',
            ['access_path', 'outcome'],
            registry=registry
        )

        self.partial_successes_total = Counter(
            'sbexplorer_partial_successes_total',
            'Resubmits whose dead-letter copy could not be confirmed removed',
            ['entity_type'],
            registry=registry
        )

        self.errors_total = Counter(
            'sbexplorer_errors_total',
            'Total errors',
            ['operation', 'error_type'],
            registry=registry
        )

        self.operation_duration_seconds = Histogram(
            'sbexplorer_operation_duration_seconds',
            'Explorer operation duration',
            ['operation'],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
            registry=registry
        )

    def track_resubmit(self, entity_type: str, path: str) -> None:
        """
        Track a resubmitted message.

        Args:
            entity_type: queue or subscription
            path: lock or peek
        """
        self.messages_resubmitted_total.labels(entity_type=entity_type, path=path).inc()

    def track_delete(self, entity_type: str) -> None:
        self.messages_deleted_total.labels(entity_type=entity_type).inc()

    def track_purge(self, entity_type: str, count: int) -> None:
        self.messages_purged_total.labels(entity_type=entity_type).inc(count)

    def track_fallback(self, access_path: str, outcome: str) -> None:
        """
        Track one source-removal attempt.

        Args:
            access_path: rest or receive_and_delete
            outcome: removed, unconfirmed or error
        """
        self.fallback_attempts_total.labels(access_path=access_path, outcome=outcome).inc()

    def track_partial_success(self, entity_type: str) -> None:
        self.partial_successes_total.labels(entity_type=entity_type).inc()

    def track_error(self, operation: str, error_type: str) -> None:
        """
        Track error occurrence.

        Args:
            operation: Operation that failed (resubmit, purge_dead_letter, etc.)
            error_type: Error code or exception class name
        """
        self.errors_total.labels(operation=operation, error_type=error_type).inc()

    @contextmanager
    def time_operation(self, operation: str) -> Iterator[None]:
        """Observe the duration of the enclosed block."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.operation_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - start
            )

    def generate_metrics(self) -> bytes:
        """
        Generate Prometheus metrics output.

        Returns:
            Metrics in Prometheus text format
        """
        from prometheus_client import generate_latest, REGISTRY
        registry = self.registry if self.registry is not None else REGISTRY
        return generate_latest(registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# Global metrics instance
_metrics: Optional[ExplorerMetrics] = None


def get_metrics() -> ExplorerMetrics:
    """
    Get global metrics instance (singleton).

    Returns:
        ExplorerMetrics instance
    """
    global _metrics
    if _metrics is None:
        _metrics = ExplorerMetrics()
    return _metrics
