"""
Health aggregation for the data-access layer.

Named async probes run concurrently; each probe failure becomes an
UNHEALTHY result instead of an exception. The overall status is the worst
individual status.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

import psutil
from loguru import logger

from docgate.datastore.base import DocumentStore, Limit
from docgate.services.cache import TTLCache
from docgate.services.performance import PerformanceMonitor


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    """Result of a single health probe."""

    service: str
    status: HealthStatus
    response_time_ms: float
    error: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "status": self.status.value,
            "response_time_ms": round(self.response_time_ms, 3),
            "error": self.error,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    overall: HealthStatus
    timestamp: datetime
    checks: list[HealthCheckResult] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    def get(self, service: str) -> HealthCheckResult | None:
        return next((c for c in self.checks if c.service == service), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.value,
            "timestamp": self.timestamp.isoformat(),
            "checks": [c.to_dict() for c in self.checks],
            "summary": self.summary,
        }


HealthProbe = Callable[[], Awaitable[HealthCheckResult]]


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class HealthAggregator:
    """
    Registry of named health probes.

    Usage:
        health = HealthAggregator()
        health.register_check("database", backend_probe(store))
        status = await health.get_health_status()
    """

    def __init__(
        self,
        timeout: float = 10.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._checks: dict[str, HealthProbe] = {}
        self._timeout = timeout
        self._clock = clock

    def register_check(self, name: str, probe: HealthProbe) -> None:
        self._checks[name] = probe
        logger.debug(f"Health check registered: {name}")

    def unregister_check(self, name: str) -> None:
        self._checks.pop(name, None)
        logger.debug(f"Health check unregistered: {name}")

    def check_names(self) -> list[str]:
        return list(self._checks)

    async def _safe_run(self, name: str, probe: HealthProbe) -> HealthCheckResult:
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(probe(), timeout=self._timeout)
        except asyncio.TimeoutError:
            return HealthCheckResult(
                service=name,
                status=HealthStatus.UNHEALTHY,
                response_time_ms=_elapsed_ms(started),
                error=f"Health check timed out after {self._timeout}s",
            )
        except Exception as e:
            return HealthCheckResult(
                service=name,
                status=HealthStatus.UNHEALTHY,
                response_time_ms=_elapsed_ms(started),
                error=str(e) or "Health check failed",
            )

        if result.service != name:
            result = replace(result, service=name)
        return result

    async def run_check(self, name: str) -> HealthCheckResult | None:
        """Run one named check, or None when it is not registered."""
        probe = self._checks.get(name)
        if probe is None:
            return None
        return await self._safe_run(name, probe)

    async def run_all_checks(self) -> SystemHealth:
        """Run every registered check concurrently."""
        checks = list(
            await asyncio.gather(
                *(self._safe_run(name, probe) for name, probe in self._checks.items())
            )
        )

        summary = {
            status.value: sum(1 for c in checks if c.status == status)
            for status in HealthStatus
        }

        overall = HealthStatus.HEALTHY
        if summary[HealthStatus.UNHEALTHY.value] > 0:
            overall = HealthStatus.UNHEALTHY
        elif summary[HealthStatus.DEGRADED.value] > 0:
            overall = HealthStatus.DEGRADED

        logger.debug(
            f"System health check completed: {overall.value} "
            f"(healthy={summary['healthy']}, degraded={summary['degraded']}, "
            f"unhealthy={summary['unhealthy']})"
        )

        return SystemHealth(
            overall=overall, timestamp=self._clock(), checks=checks, summary=summary
        )

    async def get_health_status(self) -> dict[str, Any]:
        """Health report for external monitoring."""
        health = await self.run_all_checks()
        return {
            "status": health.overall.value,
            "timestamp": health.timestamp.isoformat(),
            "details": health.to_dict(),
        }

    async def is_ready(self, critical_services: Iterable[str] = ("database",)) -> bool:
        """False if any critical check is missing or unhealthy."""
        health = await self.run_all_checks()
        for service in critical_services:
            check = health.get(service)
            if check is None or check.status == HealthStatus.UNHEALTHY:
                return False
        return True

    async def is_alive(self) -> bool:
        return True


def backend_probe(
    store: DocumentStore, sentinel_collection: str = "health-check", name: str = "database"
) -> HealthProbe:
    """Reachability: a limit-1 query against a sentinel collection."""

    async def probe() -> HealthCheckResult:
        started = time.perf_counter()
        try:
            await store.query(sentinel_collection, [Limit(1)])
        except Exception as e:
            return HealthCheckResult(
                service=name,
                status=HealthStatus.UNHEALTHY,
                response_time_ms=_elapsed_ms(started),
                error=str(e) or "Unknown database error",
            )
        return HealthCheckResult(
            service=name,
            status=HealthStatus.HEALTHY,
            response_time_ms=_elapsed_ms(started),
        )

    return probe


def cache_probe(cache: TTLCache, name: str = "cache") -> HealthProbe:
    """Round-trip a probe key through the cache."""

    async def probe() -> HealthCheckResult:
        started = time.perf_counter()
        key = f"health-check-{uuid.uuid4().hex}"
        value = {"test": True}
        try:
            cache.set(key, value)
            retrieved = cache.get(key)
            cache.delete(key)
        except Exception as e:
            return HealthCheckResult(
                service=name,
                status=HealthStatus.UNHEALTHY,
                response_time_ms=_elapsed_ms(started),
                error=str(e) or "Unknown cache error",
            )
        return HealthCheckResult(
            service=name,
            status=HealthStatus.HEALTHY if retrieved == value else HealthStatus.DEGRADED,
            response_time_ms=_elapsed_ms(started),
            details={"size": cache.size(), "stats": cache.get_stats()},
        )

    return probe


def performance_probe(
    monitor: PerformanceMonitor,
    name: str = "performance",
    unhealthy_error_rate: float = 10.0,
    degraded_error_rate: float = 5.0,
    degraded_avg_duration_ms: float = 2000.0,
) -> HealthProbe:
    """Classify recent error rate and latency."""

    async def probe() -> HealthCheckResult:
        started = time.perf_counter()
        stats = monitor.get_stats()

        status = HealthStatus.HEALTHY
        if stats.error_rate > unhealthy_error_rate:
            status = HealthStatus.UNHEALTHY
        elif (
            stats.error_rate > degraded_error_rate
            or stats.average_duration > degraded_avg_duration_ms
        ):
            status = HealthStatus.DEGRADED

        return HealthCheckResult(
            service=name,
            status=status,
            response_time_ms=_elapsed_ms(started),
            details={
                "total_operations": stats.total_operations,
                "average_duration": stats.average_duration,
                "success_rate": stats.success_rate,
                "error_rate": stats.error_rate,
                "recent_error_count": len(monitor.get_recent_errors(5)),
            },
        )

    return probe


def _process_rss_mb() -> float:
    return psutil.Process().memory_info().rss / 1024 / 1024


def memory_probe(
    limit_mb: float,
    name: str = "memory",
    usage_mb: Callable[[], float] = _process_rss_mb,
) -> HealthProbe:
    """Process memory against a configured limit (degraded ≥75%, unhealthy ≥90%)."""

    async def probe() -> HealthCheckResult:
        started = time.perf_counter()
        used = usage_mb()
        percent = used / limit_mb * 100 if limit_mb > 0 else 0.0

        status = HealthStatus.HEALTHY
        if percent >= 90:
            status = HealthStatus.UNHEALTHY
        elif percent >= 75:
            status = HealthStatus.DEGRADED

        return HealthCheckResult(
            service=name,
            status=status,
            response_time_ms=_elapsed_ms(started),
            details={
                "used_mb": round(used, 1),
                "limit_mb": limit_mb,
                "usage_percent": round(percent, 1),
            },
        )

    return probe
