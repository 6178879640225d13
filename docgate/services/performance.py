"""
PerformanceMonitor - Records call durations and outcomes in a bounded buffer.
"""

import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from loguru import logger

from docgate.services.error_tracker import TimeRange

T = TypeVar("T")


@dataclass
class PerformanceMetric:
    service: str
    operation: str
    duration_ms: float
    timestamp: datetime
    success: bool
    cache_hit: bool | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "operation": self.operation,
            "duration_ms": round(self.duration_ms, 3),
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "cache_hit": self.cache_hit,
            "error": self.error,
        }


@dataclass
class PerformanceStats:
    total_operations: int = 0
    average_duration: float = 0.0
    success_rate: float = 0.0
    cache_hit_rate: float = 0.0
    slowest_operations: list[PerformanceMetric] = field(default_factory=list)
    error_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_operations": self.total_operations,
            "average_duration": self.average_duration,
            "success_rate": self.success_rate,
            "cache_hit_rate": self.cache_hit_rate,
            "slowest_operations": [m.to_dict() for m in self.slowest_operations],
            "error_rate": self.error_rate,
        }


@dataclass
class Span:
    """Mutable outcome of a measured call, filled in while it runs."""

    success: bool = True
    cache_hit: bool | None = None
    error: str | None = None

    def observe_result(self, result: Any) -> None:
        """Infer success from a `success` field on the result, when present."""
        success = _field(result, "success")
        if isinstance(success, bool):
            self.success = success
            if not success:
                error = _field(result, "error")
                self.error = str(error) if error is not None else None


def _field(result: Any, name: str) -> Any:
    if isinstance(result, dict):
        return result.get(name)
    return getattr(result, name, None)


class PerformanceMonitor:
    """
    Ring buffer of performance metrics with aggregate statistics.

    Usage:
        monitor = PerformanceMonitor()
        doc = await monitor.measure("orders", "findById", lambda: store.get("orders", "42"))

        async with monitor.span("orders", "findMany") as span:
            span.cache_hit = True
    """

    def __init__(
        self,
        max_metrics: int = 1000,
        slow_threshold_ms: float = 1000.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._metrics: deque[PerformanceMetric] = deque(maxlen=max_metrics)
        self._slow_threshold_ms = slow_threshold_ms
        self._clock = clock

    @asynccontextmanager
    async def span(self, service: str, operation: str) -> AsyncIterator[Span]:
        """Time the enclosed block and record it; exceptions mark failure and propagate."""
        span = Span()
        started = time.perf_counter()
        try:
            yield span
        except BaseException as e:
            span.success = False
            span.error = str(e) or type(e).__name__
            raise
        finally:
            self.record_metric(
                PerformanceMetric(
                    service=service,
                    operation=operation,
                    duration_ms=(time.perf_counter() - started) * 1000,
                    timestamp=self._clock(),
                    success=span.success,
                    cache_hit=span.cache_hit,
                    error=span.error,
                )
            )

    async def measure(
        self, service: str, operation: str, fn: Callable[[], Awaitable[T]]
    ) -> T:
        """Await fn and record its duration and outcome."""
        async with self.span(service, operation) as span:
            result = await fn()
            span.observe_result(result)
            return result

    def record_metric(self, metric: PerformanceMetric) -> None:
        self._metrics.append(metric)

        if metric.duration_ms > self._slow_threshold_ms:
            logger.warning(
                f"Slow operation detected: {metric.service}.{metric.operation} "
                f"took {metric.duration_ms:.0f}ms"
            )

        if not metric.success and metric.error:
            logger.error(
                f"Operation failed: {metric.service}.{metric.operation} - {metric.error}"
            )

    def get_stats(
        self, service: str | None = None, time_range: TimeRange | None = None
    ) -> PerformanceStats:
        metrics = list(self._metrics)
        if service:
            metrics = [m for m in metrics if m.service == service]
        if time_range:
            metrics = [m for m in metrics if time_range.contains(m.timestamp)]

        if not metrics:
            return PerformanceStats()

        total = len(metrics)
        successes = sum(1 for m in metrics if m.success)
        cache_hits = sum(1 for m in metrics if m.cache_hit)

        return PerformanceStats(
            total_operations=total,
            average_duration=sum(m.duration_ms for m in metrics) / total,
            success_rate=successes / total * 100,
            cache_hit_rate=cache_hits / total * 100,
            slowest_operations=sorted(metrics, key=lambda m: m.duration_ms, reverse=True)[:10],
            error_rate=(total - successes) / total * 100,
        )

    def get_recent_errors(self, limit: int = 10) -> list[PerformanceMetric]:
        failed = [m for m in self._metrics if not m.success]
        return sorted(failed, key=lambda m: m.timestamp, reverse=True)[:limit]

    def get_operations_by_duration(self, min_duration_ms: float = 1000.0) -> list[PerformanceMetric]:
        slow = [m for m in self._metrics if m.duration_ms >= min_duration_ms]
        return sorted(slow, key=lambda m: m.duration_ms, reverse=True)

    def get_service_stats(self) -> dict[str, PerformanceStats]:
        services = dict.fromkeys(m.service for m in self._metrics)
        return {service: self.get_stats(service) for service in services}

    def get_cache_stats(self) -> dict[str, Any]:
        """Hit/miss counts over read (find*/get*) operations only."""
        queries = [
            m
            for m in self._metrics
            if "find" in m.operation.lower() or "get" in m.operation.lower()
        ]
        hits = sum(1 for m in queries if m.cache_hit)
        return {
            "total_queries": len(queries),
            "cache_hits": hits,
            "cache_misses": len(queries) - hits,
            "hit_rate": hits / len(queries) * 100 if queries else 0.0,
        }

    def clear_metrics(self) -> None:
        self._metrics.clear()
        logger.debug("Performance metrics cleared")

    def export_metrics(self) -> list[PerformanceMetric]:
        return list(self._metrics)
