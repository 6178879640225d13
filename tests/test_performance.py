"""
Unit tests for PerformanceMonitor.
"""

from datetime import datetime

import pytest

from docgate.services.performance import PerformanceMetric, PerformanceMonitor


def metric(service="orders", operation="findById", duration_ms=10.0, success=True, cache_hit=None):
    return PerformanceMetric(
        service=service,
        operation=operation,
        duration_ms=duration_ms,
        timestamp=datetime(2024, 1, 1),
        success=success,
        cache_hit=cache_hit,
    )


class TestMeasure:
    async def test_records_success(self, monitor):
        async def work():
            return {"id": "1"}

        assert await monitor.measure("orders", "findById", work) == {"id": "1"}

        [m] = monitor.export_metrics()
        assert m.success is True
        assert m.service == "orders"
        assert m.duration_ms >= 0

    async def test_records_failure_and_reraises(self, monitor):
        async def work():
            raise RuntimeError("backend exploded")

        with pytest.raises(RuntimeError):
            await monitor.measure("orders", "create", work)

        [m] = monitor.export_metrics()
        assert m.success is False
        assert m.error == "backend exploded"

    async def test_result_success_field_marks_failure(self, monitor):
        async def work():
            return {"success": False, "error": "not found"}

        await monitor.measure("orders", "findById", work)

        [m] = monitor.get_recent_errors()
        assert m.error == "not found"

    async def test_span_records_cache_hit(self, monitor):
        async with monitor.span("orders", "findById") as span:
            span.cache_hit = True

        assert monitor.get_cache_stats()["cache_hits"] == 1


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_ring_buffer_is_bounded(self):
        monitor = PerformanceMonitor(max_metrics=5)
        for i in range(8):
            monitor.record_metric(metric(duration_ms=float(i)))

        durations = [m.duration_ms for m in monitor.export_metrics()]
        assert durations == [3.0, 4.0, 5.0, 6.0, 7.0]

    def test_empty_stats_are_zero(self, monitor):
        stats = monitor.get_stats()

        assert stats.total_operations == 0
        assert stats.average_duration == 0
        assert stats.success_rate == 0
        assert stats.slowest_operations == []

    def test_stats(self, monitor):
        monitor.record_metric(metric(duration_ms=10, cache_hit=True))
        monitor.record_metric(metric(duration_ms=30, success=False))
        monitor.record_metric(metric(service="users", duration_ms=50))

        stats = monitor.get_stats("orders")

        assert stats.total_operations == 2
        assert stats.average_duration == pytest.approx(20)
        assert stats.success_rate == pytest.approx(50)
        assert stats.error_rate == pytest.approx(50)
        assert stats.cache_hit_rate == pytest.approx(50)
        assert stats.slowest_operations[0].duration_ms == 30

    def test_service_stats(self, monitor):
        monitor.record_metric(metric(service="orders"))
        monitor.record_metric(metric(service="users"))

        assert set(monitor.get_service_stats()) == {"orders", "users"}

    def test_cache_stats_counts_read_operations_only(self, monitor):
        monitor.record_metric(metric(operation="findById", cache_hit=True))
        monitor.record_metric(metric(operation="findMany", cache_hit=False))
        monitor.record_metric(metric(operation="create"))

        stats = monitor.get_cache_stats()

        assert stats["total_queries"] == 2
        assert stats["cache_hits"] == 1
        assert stats["cache_misses"] == 1
        assert stats["hit_rate"] == pytest.approx(50)

    def test_operations_by_duration(self, monitor):
        monitor.record_metric(metric(duration_ms=500))
        monitor.record_metric(metric(duration_ms=1500))
        monitor.record_metric(metric(duration_ms=2500))

        slow = monitor.get_operations_by_duration(1000)
        assert [m.duration_ms for m in slow] == [2500, 1500]

    def test_clear(self, monitor):
        monitor.record_metric(metric())
        monitor.clear_metrics()

        assert monitor.export_metrics() == []
