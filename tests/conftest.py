"""
Shared fixtures: a controllable clock and a call-counting document store.
"""

from datetime import datetime, timedelta
from typing import Any

import pytest

from docgate.datastore.base import Document, QueryConstraint, StoreError
from docgate.datastore.memory import InMemoryDocumentStore
from docgate.services.cache import TTLCache
from docgate.services.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from docgate.services.error_tracker import ErrorTracker
from docgate.services.gateway import DocumentGateway
from docgate.services.performance import PerformanceMonitor
from docgate.services.retry import RetryExecutor, RetryOptions


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


class CountingStore(InMemoryDocumentStore):
    """In-memory store that counts calls and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: dict[str, int] = {"get": 0, "query": 0, "insert": 0, "patch": 0, "remove": 0}
        self.failures: dict[str, list[Exception]] = {}
        self.always_fail: dict[str, Exception] = {}

    def fail_next(self, method: str, *errors: Exception) -> None:
        self.failures.setdefault(method, []).extend(errors)

    def _maybe_fail(self, method: str) -> None:
        self.calls[method] += 1
        if method in self.always_fail:
            raise self.always_fail[method]
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    async def get(self, collection: str, document_id: str) -> Document | None:
        self._maybe_fail("get")
        return await super().get(collection, document_id)

    async def query(self, collection: str, constraints: list[QueryConstraint]) -> list[Document]:
        self._maybe_fail("query")
        return await super().query(collection, constraints)

    async def insert(self, collection: str, data: Document, document_id: str | None = None) -> str:
        self._maybe_fail("insert")
        return await super().insert(collection, data, document_id)

    async def patch(self, collection: str, document_id: str, partial: Document) -> None:
        self._maybe_fail("patch")
        await super().patch(collection, document_id, partial)

    async def remove(self, collection: str, document_id: str) -> None:
        self._maybe_fail("remove")
        await super().remove(collection, document_id)


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def network_error() -> StoreError:
    return StoreError("network timeout", code="unavailable")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def tracker(clock: FakeClock) -> ErrorTracker:
    return ErrorTracker(clock=clock)


@pytest.fixture
def monitor() -> PerformanceMonitor:
    return PerformanceMonitor()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(max_size=100, clock=clock)


@pytest.fixture
def breakers(clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(
        CircuitBreakerConfig(failure_threshold=5, reset_timeout=timedelta(seconds=60)),
        clock=clock,
    )


@pytest.fixture
def retry(breakers, tracker, sleep) -> RetryExecutor:
    return RetryExecutor(
        breakers,
        tracker,
        RetryOptions(max_attempts=3, base_delay=0.01, jitter=False),
        sleep=sleep,
    )


@pytest.fixture
def gateway(store, cache, retry, monitor) -> DocumentGateway:
    return DocumentGateway("orders", store, cache, retry, monitor)
