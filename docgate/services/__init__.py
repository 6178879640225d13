"""
Service layer infrastructure - resilience patterns for document store access.

Provides:
- TTLCache: In-memory cache with TTL, eviction and collection invalidation
- CircuitBreaker: Fails fast while a backend operation is failing
- RetryExecutor: Exponential backoff with jitter through a circuit breaker
- ErrorTracker: Fingerprinted, classified error buckets with metrics
- PerformanceMonitor: Bounded latency/outcome metrics
- HealthAggregator: Concurrent health probes with an overall status
- DocumentGateway: Resilient CRUD combining all of the above
"""

from docgate.services.errors import (
    ServiceError,
    CircuitOpenError,
    DocumentNotFoundError,
    RequestTimeoutError,
)
from docgate.services.cache import CacheEntry, CacheKey, TTLCache
from docgate.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from docgate.services.error_tracker import (
    ErrorContext,
    ErrorFilter,
    ErrorMetrics,
    ErrorTracker,
    Severity,
    TimeRange,
    TrackedError,
)
from docgate.services.performance import PerformanceMetric, PerformanceMonitor, PerformanceStats
from docgate.services.retry import RetryContext, RetryExecutor, RetryOptions, UserContext
from docgate.services.health import (
    HealthAggregator,
    HealthCheckResult,
    HealthStatus,
    SystemHealth,
)
from docgate.services.gateway import (
    DocumentGateway,
    ErrorDetail,
    GatewayConfig,
    GatewayResult,
    Page,
    QueryOptions,
)

__all__ = [
    # Errors
    "ServiceError",
    "CircuitOpenError",
    "DocumentNotFoundError",
    "RequestTimeoutError",
    # Cache
    "CacheEntry",
    "CacheKey",
    "TTLCache",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Error Tracking
    "ErrorContext",
    "ErrorFilter",
    "ErrorMetrics",
    "ErrorTracker",
    "Severity",
    "TimeRange",
    "TrackedError",
    # Performance
    "PerformanceMetric",
    "PerformanceMonitor",
    "PerformanceStats",
    # Retry
    "RetryContext",
    "RetryExecutor",
    "RetryOptions",
    "UserContext",
    # Health
    "HealthAggregator",
    "HealthCheckResult",
    "HealthStatus",
    "SystemHealth",
    # Gateway
    "DocumentGateway",
    "ErrorDetail",
    "GatewayConfig",
    "GatewayResult",
    "Page",
    "QueryOptions",
]
