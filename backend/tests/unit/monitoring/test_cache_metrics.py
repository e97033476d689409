"""
Unit tests for the cache metrics collector.
"""

import pytest

from saas_benchmarks.infrastructure.redis.circuit_breaker import CircuitState
from saas_benchmarks.monitoring.cache_metrics import CacheMetricsCollector


class TestCacheMetricsCollector:
    """Test CacheMetricsCollector."""

    @pytest.fixture
    def collector(self):
        return CacheMetricsCollector()

    def test_collectors_are_independent(self):
        first = CacheMetricsCollector()
        second = CacheMetricsCollector()

        first.record_operation("get", "metrics", "hit", 0.001)

        assert first.snapshot()["hits"] == 1
        assert second.snapshot()["hits"] == 0

    def test_hit_rate(self, collector):
        collector.record_operation("get", "metrics", "hit", 0.001)
        collector.record_operation("get", "metrics", "hit", 0.001)
        collector.record_operation("get", "metrics", "miss", 0.001)
        collector.record_operation("get", "metrics", "degraded", 0.001)

        snapshot = collector.snapshot()

        assert snapshot["hits"] == 2
        assert snapshot["misses"] == 1
        assert snapshot["errors"] == 1
        assert snapshot["hit_rate"] == 0.6667

    def test_hit_rate_without_lookups(self, collector):
        assert collector.hit_rate == 0.0

    def test_operation_counter_labels(self, collector):
        collector.record_operation("set", "benchmarks", "stored", 0.002)

        assert (
            collector.registry.get_sample_value(
                "saas_benchmarks_cache_operations_total",
                {"operation": "set", "category": "benchmarks", "outcome": "stored"},
            )
            == 1.0
        )

    def test_record_payload(self, collector):
        collector.record_payload("sources", 4096, compressed=True)
        collector.record_payload("sources", 100, compressed=False)

        assert (
            collector.registry.get_sample_value(
                "saas_benchmarks_cache_compressed_total", {"category": "sources"}
            )
            == 1.0
        )
        assert (
            collector.registry.get_sample_value(
                "saas_benchmarks_cache_payload_bytes_count", {"category": "sources"}
            )
            == 2.0
        )

    def test_record_invalidation(self, collector):
        collector.record_invalidation(3)
        collector.record_invalidation(0)

        assert (
            collector.registry.get_sample_value(
                "saas_benchmarks_cache_invalidated_keys_total"
            )
            == 3.0
        )

    @pytest.mark.parametrize(
        "state,expected",
        [
            (CircuitState.CLOSED, 0.0),
            (CircuitState.HALF_OPEN, 1.0),
            (CircuitState.OPEN, 2.0),
        ],
    )
    def test_circuit_state_gauge(self, collector, state, expected):
        collector.set_circuit_state(state)

        assert (
            collector.registry.get_sample_value("saas_benchmarks_cache_circuit_state")
            == expected
        )

    def test_export(self, collector):
        collector.record_operation("get", "session", "miss", 0.001)

        exported = collector.export()

        assert "saas_benchmarks_cache_operations_total" in exported
        assert 'outcome="miss"' in exported
