"""
Tests for DocumentGateway, including failure and recovery paths end to end.
"""

from datetime import timedelta

import pytest

from docgate.datastore.base import FieldFilter, StoreError
from docgate.services.cache import CacheKey, TTLCache
from docgate.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from docgate.services.error_tracker import ErrorTracker
from docgate.services.gateway import DocumentGateway, QueryOptions
from docgate.services.performance import PerformanceMonitor
from docgate.services.retry import RetryExecutor, RetryOptions, UserContext
from tests.conftest import network_error


class TestReads:
    async def test_create_then_find_served_from_cache(self, gateway, store):
        created = await gateway.create({"status": "pending", "total": 10})
        assert created.success
        document_id = created.data["id"]

        fetched = await gateway.find_by_id(document_id)

        assert fetched.success
        assert fetched.from_cache is True
        assert fetched.data["status"] == "pending"
        assert store.calls["get"] == 0

    async def test_create_stamps_timestamps_and_uses_custom_id(self, gateway):
        created = await gateway.create({"id": "ignored", "status": "new"}, custom_id="order-1")

        assert created.data["id"] == "order-1"
        assert created.data["created_at"] == created.data["updated_at"]

    async def test_find_by_id_caches_backend_result(self, gateway, store):
        await store.insert("orders", {"status": "paid"}, "o1")

        first = await gateway.find_by_id("o1")
        second = await gateway.find_by_id("o1")

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.data == first.data
        assert store.calls["get"] == 1

    async def test_bypass_cache(self, gateway, store):
        await store.insert("orders", {"status": "paid"}, "o1")

        await gateway.find_by_id("o1")
        result = await gateway.find_by_id("o1", use_cache=False)

        assert result.from_cache is False
        assert store.calls["get"] == 2

    async def test_cached_copy_is_isolated_from_callers(self, gateway):
        created = await gateway.create({"tags": ["a"]}, custom_id="o1")
        created.data["tags"].append("mutated")

        first = await gateway.find_by_id("o1")
        first.data["tags"].append("again")
        second = await gateway.find_by_id("o1")

        assert second.data["tags"] == ["a"]

    async def test_not_found_is_failure_and_not_cached(self, gateway, store, tracker):
        result = await gateway.find_by_id("missing")

        assert result.success is False
        assert result.error == "Document not found"
        assert result.error_detail.code == "not-found"

        await gateway.find_by_id("missing")
        assert store.calls["get"] == 2
        assert tracker.get_all_errors() == []

    async def test_find_many_caches_and_write_invalidates(self, gateway, store):
        await gateway.create({"n": 1})
        await gateway.create({"n": 2})

        first = await gateway.find_many()
        cached = await gateway.find_many()
        assert first.data.total == 2
        assert cached.from_cache is True
        assert store.calls["query"] == 1

        await gateway.create({"n": 3})
        fresh = await gateway.find_many()

        assert fresh.from_cache is False
        assert fresh.data.total == 3
        assert store.calls["query"] == 2

    async def test_find_many_applies_options(self, gateway):
        for n in (5, 1, 9, 3):
            await gateway.create({"n": n, "kind": "odd" if n % 2 else "even"})

        result = await gateway.find_many(
            QueryOptions(
                filters=[FieldFilter("n", ">", 1)],
                order_by="n",
                order_direction="asc",
                limit=2,
            )
        )

        assert [d["n"] for d in result.data.items] == [3, 5]
        assert result.data.limit == 2

    async def test_exists_and_count(self, gateway):
        await gateway.create({"n": 1}, custom_id="a")
        await gateway.create({"n": 2}, custom_id="b")

        assert await gateway.exists("a") is True
        assert await gateway.exists("zzz") is False
        assert await gateway.count() == 2
        assert await gateway.count(QueryOptions(filters=[FieldFilter("n", "==", 2)])) == 1

    async def test_cache_hits_reported_to_monitor(self, gateway, monitor):
        await gateway.create({"n": 1}, custom_id="a")
        await gateway.find_by_id("a")

        stats = monitor.get_cache_stats()
        assert stats["cache_hits"] == 1


class TestWrites:
    async def test_update_then_find_returns_patched_value(self, gateway, store):
        await gateway.create({"status": "pending"}, custom_id="o1")
        await gateway.find_by_id("o1")

        updated = await gateway.update("o1", {"status": "shipped", "id": "x", "created_at": "x"})
        assert updated.success
        assert updated.data["status"] == "shipped"
        assert updated.data["id"] == "o1"
        assert updated.data["created_at"] != "x"

        fetched = await gateway.find_by_id("o1")
        assert fetched.data["status"] == "shipped"

    async def test_update_missing_document_fails(self, gateway, store):
        result = await gateway.update("missing", {"status": "shipped"})

        assert result.success is False
        assert result.error_detail.code == "not-found"
        assert store.calls["patch"] == 1

    async def test_delete_invalidates(self, gateway):
        await gateway.create({"n": 1}, custom_id="a")

        assert (await gateway.delete("a")).success
        result = await gateway.find_by_id("a")

        assert result.success is False
        assert result.error_detail.code == "not-found"

    async def test_writes_leave_other_collections_cached(self, store, cache, retry, monitor):
        orders = DocumentGateway("orders", store, cache, retry, monitor)
        users = DocumentGateway("users", store, cache, retry, monitor)
        await users.create({"name": "ann"}, custom_id="u1")

        await orders.create({"n": 1})

        assert cache.has(CacheKey.build("users", "findById", {"id": "u1"}))


class TestFailures:
    async def test_failure_returns_uniform_result(self, gateway, store, tracker):
        store.always_fail["get"] = StoreError("permission denied", code="permission-denied", status=403)

        result = await gateway.find_by_id("o1", user=UserContext("u1", "viewer"))

        assert result.success is False
        assert result.error == "permission denied"
        assert result.error_detail.code == "permission-denied"
        assert result.error_detail.details["status"] == 403
        assert store.calls["get"] == 1

        [tracked] = tracker.get_all_errors()
        assert tracked.context.user_id == "u1"
        assert tracked.context.user_role == "viewer"

    async def test_error_without_code_maps_to_unknown(self, gateway, store):
        store.always_fail["insert"] = ValueError("")

        result = await gateway.create({"n": 1})

        assert result.error_detail.code == "unknown-error"
        assert result.error == "Failed to create"

    async def test_transient_failure_is_retried(self, gateway, store):
        await store.insert("orders", {"n": 1}, "o1")
        store.fail_next("get", network_error())

        result = await gateway.find_by_id("o1")

        assert result.success
        assert store.calls["get"] == 2

    async def test_persistent_failure_opens_circuit_and_fails_fast(
        self, gateway, store, breakers, clock
    ):
        store.always_fail["get"] = network_error()

        first = await gateway.find_by_id("o1")
        assert first.success is False
        assert store.calls["get"] == 3

        await gateway.find_by_id("o1")
        assert store.calls["get"] == 5
        assert breakers.get("orders:findById").state == CircuitState.OPEN

        rejected = await gateway.find_by_id("o1")
        assert rejected.error_detail.code == "circuit-open"
        assert store.calls["get"] == 5

        clock.advance(seconds=30)
        await gateway.find_by_id("o1")
        assert store.calls["get"] == 5

        clock.advance(seconds=31)
        await gateway.find_by_id("o1")
        assert store.calls["get"] == 6

    async def test_repeated_rejections_collapse_into_one_record(
        self, gateway, store, tracker, clock
    ):
        store.always_fail["get"] = network_error()
        await gateway.find_by_id("o1")
        await gateway.find_by_id("o1")

        for _ in range(3):
            clock.advance(seconds=5)
            rejected = await gateway.find_by_id("o1")
            assert rejected.error_detail.code == "circuit-open"

        [circuit_open] = [e for e in tracker.get_all_errors() if e.code == "circuit-open"]
        assert circuit_open.occurrences == 3
        assert circuit_open.message == "Circuit breaker is OPEN for 'orders:findById'"
        assert rejected.error_detail.details["reset_after_seconds"] == pytest.approx(45)


async def test_recovers_after_transient_outage(store, clock):
    """A backend failing twice then succeeding recovers within one call."""
    breakers = CircuitBreakerRegistry(
        CircuitBreakerConfig(
            failure_threshold=2,
            reset_timeout=timedelta(0),
            required_successes=1,
        ),
        clock=clock,
    )
    retry = RetryExecutor(
        breakers,
        ErrorTracker(clock=clock),
        RetryOptions(max_attempts=3, base_delay=0.01),
    )
    gateway = DocumentGateway("orders", store, TTLCache(clock=clock), retry, PerformanceMonitor())
    await store.insert("orders", {"status": "paid"}, "o1")
    store.fail_next("get", network_error(), network_error())

    result = await gateway.find_by_id("o1")

    assert result.success
    assert result.data["status"] == "paid"
    assert store.calls["get"] == 3
    breaker = breakers.get("orders:findById")
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failures == 0


@pytest.mark.parametrize("operation", ["create", "delete"])
async def test_write_failures_do_not_touch_cache(gateway, store, cache, operation):
    await gateway.create({"n": 1}, custom_id="a")
    await gateway.find_many()
    size = cache.size()
    store.always_fail["insert"] = StoreError("denied", code="permission-denied")
    store.always_fail["remove"] = StoreError("denied", code="permission-denied")

    if operation == "create":
        result = await gateway.create({"n": 2})
    else:
        result = await gateway.delete("a")

    assert result.success is False
    assert cache.size() == size
