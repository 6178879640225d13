"""
Runtime - Explicitly constructed container for the shared resilience components.

One Runtime owns the cache, breaker registry, error tracker, performance
buffer and health registry of a process (or of a test). Gateways handed out
by the runtime share those components.
"""

from datetime import timedelta
from typing import Any

from loguru import logger

from docgate.datastore.base import DocumentStore
from docgate.services.cache import TTLCache
from docgate.services.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from docgate.services.error_tracker import ErrorTracker
from docgate.services.gateway import DocumentGateway, GatewayConfig
from docgate.services.health import (
    HealthAggregator,
    backend_probe,
    cache_probe,
    memory_probe,
    performance_probe,
)
from docgate.services.performance import PerformanceMonitor
from docgate.services.retry import RetryExecutor, RetryOptions
from docgate.settings import Settings


class Runtime:
    """
    Wires the data-access layer together.

    Usage:
        runtime = Runtime.from_settings(store, global_settings)
        orders = runtime.gateway("orders")
        snapshot = runtime.metrics_snapshot()
        await runtime.close()
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: TTLCache | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        error_tracker: ErrorTracker | None = None,
        monitor: PerformanceMonitor | None = None,
        health: HealthAggregator | None = None,
        retry_options: RetryOptions | None = None,
        gateway_config: GatewayConfig | None = None,
    ):
        self.store = store
        self.cache = cache or TTLCache()
        self.breakers = breakers or CircuitBreakerRegistry()
        self.error_tracker = error_tracker or ErrorTracker()
        self.monitor = monitor or PerformanceMonitor()
        self.health = health or HealthAggregator()
        self.retry = RetryExecutor(self.breakers, self.error_tracker, retry_options)
        self.gateway_config = gateway_config or GatewayConfig()
        self._gateways: dict[str, DocumentGateway] = {}

    @classmethod
    def from_settings(cls, store: DocumentStore, settings: Settings) -> "Runtime":
        """Build a runtime from settings and register the default health probes."""
        runtime = cls(
            store=store,
            cache=TTLCache(
                max_size=settings.cache_max_size,
                default_ttl=timedelta(seconds=settings.cache_default_ttl),
            ),
            breakers=CircuitBreakerRegistry(
                CircuitBreakerConfig(
                    failure_threshold=settings.circuit_failure_threshold,
                    reset_timeout=timedelta(seconds=settings.circuit_reset_timeout),
                    required_successes=settings.circuit_required_successes,
                )
            ),
            error_tracker=ErrorTracker(max_errors=settings.error_tracker_capacity),
            monitor=PerformanceMonitor(
                max_metrics=settings.performance_capacity,
                slow_threshold_ms=settings.performance_slow_threshold_ms,
            ),
            health=HealthAggregator(timeout=settings.health_check_timeout),
            retry_options=RetryOptions(
                max_attempts=settings.retry_max_attempts,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                backoff_multiplier=settings.retry_backoff_multiplier,
                jitter=settings.retry_jitter,
                attempt_timeout=settings.retry_attempt_timeout,
            ),
        )
        runtime.register_default_checks(
            sentinel_collection=settings.health_sentinel_collection,
            memory_limit_mb=settings.memory_limit_mb,
        )
        return runtime

    def register_default_checks(
        self,
        sentinel_collection: str = "health-check",
        memory_limit_mb: float | None = None,
    ) -> None:
        """Database, cache, performance and (optionally) memory probes."""
        self.health.register_check("database", backend_probe(self.store, sentinel_collection))
        self.health.register_check("cache", cache_probe(self.cache))
        self.health.register_check("performance", performance_probe(self.monitor))
        if memory_limit_mb:
            self.health.register_check("memory", memory_probe(memory_limit_mb))

    def gateway(self, collection: str, config: GatewayConfig | None = None) -> DocumentGateway:
        """Get or create the gateway for a collection."""
        if collection not in self._gateways or config is not None:
            self._gateways[collection] = DocumentGateway(
                collection,
                self.store,
                self.cache,
                self.retry,
                self.monitor,
                config or self.gateway_config,
            )
        return self._gateways[collection]

    def metrics_snapshot(self) -> dict[str, Any]:
        """Cache, performance, error and breaker statistics for dashboards."""
        return {
            "cache": self.cache.get_stats(),
            "cache_effectiveness": self.monitor.get_cache_stats(),
            "performance": self.monitor.get_stats().to_dict(),
            "performance_by_service": {
                service: stats.to_dict()
                for service, stats in self.monitor.get_service_stats().items()
            },
            "errors": self.error_tracker.get_metrics().to_dict(),
            "circuit_breakers": self.breakers.get_stats(),
        }

    async def close(self) -> None:
        self.cache.clear()
        await self.store.close()
        logger.info("Runtime closed")
