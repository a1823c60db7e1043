"""
Shared metrics for svckit clients.
"""

import time
import threading
from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class MetricsCollector:
    """
    Prometheus metrics for the cache, database and HTTP clients.

    Metrics are only registered when a registry is given, so several
    collectors can coexist in one process (tests create their own).
    """

    def __init__(self, namespace: str = "svckit", registry: Optional[CollectorRegistry] = None):
        self.namespace = namespace
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up client metrics."""

        # Cache metrics
        self._metrics["cache_commands_total"] = Counter(
            "cache_commands_total",
            "Total cache commands",
            ["command", "status"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["cache_command_duration_seconds"] = Histogram(
            "cache_command_duration_seconds",
            "Cache command duration in seconds",
            ["command"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["cache_connections_in_use"] = Gauge(
            "cache_connections_in_use",
            "Cache connections currently borrowed from the pool",
            namespace=self.namespace,
            registry=self.registry
        )

        # Database metrics
        self._metrics["db_queries_total"] = Counter(
            "db_queries_total",
            "Total database queries",
            ["operation", "status"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["db_query_duration_seconds"] = Histogram(
            "db_query_duration_seconds",
            "Database query duration in seconds",
            ["operation"],
            namespace=self.namespace,
            registry=self.registry
        )

        # HTTP client metrics
        self._metrics["http_client_requests_total"] = Counter(
            "http_client_requests_total",
            "Total outgoing HTTP requests",
            ["method", "status_code"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["http_client_request_duration_seconds"] = Histogram(
            "http_client_request_duration_seconds",
            "Outgoing HTTP request duration in seconds",
            ["method"],
            namespace=self.namespace,
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def _child(self, metric_name: str, labels: Dict[str, Any]):
        metric = self._metrics.get(metric_name)
        if metric is None:
            return None
        return metric.labels(**labels) if labels else metric

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        child = self._child(metric_name, labels)
        if child is not None:
            child.inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        child = self._child(metric_name, labels)
        if child is not None:
            child.observe(value)

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        child = self._child(metric_name, labels)
        if child is not None:
            child.set(value)

    def inc_gauge(self, metric_name: str, **labels):
        child = self._child(metric_name, labels)
        if child is not None:
            child.inc()

    def dec_gauge(self, metric_name: str, **labels):
        child = self._child(metric_name, labels)
        if child is not None:
            child.dec()

    def get_sample(self, metric_name: str, **labels) -> Optional[float]:
        """Read the current value of a counter or gauge from the registry."""
        if self.registry is None:
            return None
        return self.registry.get_sample_value(f"{self.namespace}_{metric_name}", labels)

    @contextmanager
    def time_operation(self, metric_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.observe_histogram(metric_name, time.perf_counter() - start_time, **labels)


_default_collector: Optional[MetricsCollector] = None
_default_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get the process-wide collector registered on the default registry."""
    global _default_collector
    with _default_lock:
        if _default_collector is None:
            _default_collector = MetricsCollector(registry=REGISTRY)
    return _default_collector
