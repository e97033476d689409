"""
Cache Metrics Collector

Prometheus metrics for the cache service: operation outcomes per
category, latency, payload sizes, compression, invalidations and the
circuit breaker state. Each collector owns its registry so several
services (and tests) can coexist in one process.
"""

from typing import Any, Dict, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from ..infrastructure.redis.circuit_breaker import CircuitState

CIRCUIT_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CacheMetricsCollector:
    """Collects cache operation metrics into a private Prometheus registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.operations_total = Counter(
            "saas_benchmarks_cache_operations_total",
            "Cache operations by operation, category and outcome",
            ["operation", "category", "outcome"],
            registry=self.registry,
        )
        self.operation_duration_seconds = Histogram(
            "saas_benchmarks_cache_operation_duration_seconds",
            "Cache operation latency in seconds",
            ["operation"],
            buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 3.0],
            registry=self.registry,
        )
        self.payload_bytes = Histogram(
            "saas_benchmarks_cache_payload_bytes",
            "Encoded cache payload size in bytes",
            ["category"],
            buckets=[128, 512, 1024, 4096, 16384, 65536, 262144, 1048576],
            registry=self.registry,
        )
        self.compressed_total = Counter(
            "saas_benchmarks_cache_compressed_total",
            "Cache writes stored compressed",
            ["category"],
            registry=self.registry,
        )
        self.invalidated_keys_total = Counter(
            "saas_benchmarks_cache_invalidated_keys_total",
            "Keys removed by pattern invalidation",
            registry=self.registry,
        )
        self.circuit_state = Gauge(
            "saas_benchmarks_cache_circuit_state",
            "Circuit breaker state (0 closed, 1 half-open, 2 open)",
            registry=self.registry,
        )

        self._hits = 0
        self._misses = 0
        self._errors = 0

    def record_operation(
        self,
        operation: str,
        category: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record one facade operation.

        Outcomes: hit, miss, stored, deleted, invalidated, degraded, error.
        """
        self.operations_total.labels(operation, category, outcome).inc()
        self.operation_duration_seconds.labels(operation).observe(duration_seconds)

        if outcome == "hit":
            self._hits += 1
        elif outcome == "miss":
            self._misses += 1
        elif outcome in ("error", "degraded"):
            self._errors += 1

    def record_payload(self, category: str, size_bytes: int, compressed: bool) -> None:
        self.payload_bytes.labels(category).observe(size_bytes)
        if compressed:
            self.compressed_total.labels(category).inc()

    def record_invalidation(self, count: int) -> None:
        if count:
            self.invalidated_keys_total.inc(count)

    def set_circuit_state(self, state: CircuitState) -> None:
        self.circuit_state.set(CIRCUIT_STATE_VALUES[state])

    @property
    def hit_rate(self) -> float:
        lookups = self._hits + self._misses
        if lookups == 0:
            return 0.0
        return self._hits / lookups

    def snapshot(self) -> Dict[str, Any]:
        """Summary of hit/miss/error counts since the collector was created."""
        return {
            "hits": self._hits,
            "misses": self._misses,
            "errors": self._errors,
            "hit_rate": round(self.hit_rate, 4),
        }

    def export(self) -> str:
        """Prometheus text exposition of this collector's registry."""
        return generate_latest(self.registry).decode("utf-8")
