"""
Shared metrics configuration for the FPL data cache.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional
import time
from contextlib import contextmanager


class MetricsCollector:
    """Centralized metrics collector for the cache."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up the cache metrics."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total cache hits",
            ["tier"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total lookups that fell through every tier",
            registry=self.registry
        )

        self._metrics["cache_tier_errors_total"] = Counter(
            "cache_tier_errors_total",
            "Total tier failures absorbed as misses",
            ["tier", "operation"],
            registry=self.registry
        )

        self._metrics["cache_producer_calls_total"] = Counter(
            "cache_producer_calls_total",
            "Total producer invocations",
            ["status"],
            registry=self.registry
        )

        self._metrics["cache_producer_duration_seconds"] = Histogram(
            "cache_producer_duration_seconds",
            "Producer duration in seconds",
            registry=self.registry
        )

        self._metrics["local_cache_evictions_total"] = Counter(
            "local_cache_evictions_total",
            "Total local cache removals not requested by callers",
            ["reason"],
            registry=self.registry
        )

        self._metrics["local_cache_entries"] = Gauge(
            "local_cache_entries",
            "Entries currently held by the local cache",
            registry=self.registry
        )

        self._metrics["local_cache_size_bytes"] = Gauge(
            "local_cache_size_bytes",
            "Approximate bytes held by the local cache",
            registry=self.registry
        )

    def record_hit(self, tier: str):
        """Record a hit on the given tier."""
        self.increment_counter("cache_hits_total", tier=tier)

    def record_miss(self):
        """Record a full miss."""
        self.increment_counter("cache_misses_total")

    def record_tier_error(self, tier: str, operation: str):
        """Record an absorbed tier failure."""
        self.increment_counter("cache_tier_errors_total", tier=tier, operation=operation)

    def record_eviction(self, reason: str, count: int = 1):
        """Record local cache evictions."""
        metric = self._metrics.get("local_cache_evictions_total")
        if metric is not None and count:
            metric.labels(reason=reason).inc(count)

    def record_local_usage(self, entries: int, size_bytes: int):
        """Publish local cache occupancy."""
        self.set_gauge("local_cache_entries", entries)
        self.set_gauge("local_cache_size_bytes", size_bytes)

    @contextmanager
    def time_producer(self):
        """Time a producer call and count its outcome."""
        start_time = time.perf_counter()
        status = "error"
        try:
            yield
            status = "ok"
        finally:
            duration = time.perf_counter() - start_time
            self._metrics["cache_producer_duration_seconds"].observe(duration)
            self._metrics["cache_producer_calls_total"].labels(status=status).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
