"""
DocumentGateway - Resilient CRUD access to one collection of a document store.

Combines:
- TTLCache for read caching and collection-wide invalidation on writes
- RetryExecutor (with CircuitBreaker and ErrorTracker) around every backend call
- PerformanceMonitor spans around every public operation

Public methods never raise; they return a GatewayResult.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from docgate.datastore.base import (
    Document,
    DocumentStore,
    FieldFilter,
    Limit,
    OrderBy,
    QueryConstraint,
)
from docgate.services.cache import CacheKey, TTLCache
from docgate.services.circuit_breaker import CircuitBreakerConfig
from docgate.services.errors import DocumentNotFoundError, error_code, error_details
from docgate.services.performance import PerformanceMonitor, Span
from docgate.services.retry import RetryContext, RetryExecutor, RetryOptions, UserContext

T = TypeVar("T")

FIND_BY_ID = "findById"
FIND_MANY = "findMany"
CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass
class ErrorDetail:
    """Structured error for callers that need more than a message."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayResult(Generic[T]):
    """Uniform result of every gateway operation."""

    success: bool
    data: T | None = None
    error: str | None = None
    error_detail: ErrorDetail | None = None
    from_cache: bool = False

    @classmethod
    def ok(cls, data: T | None = None, from_cache: bool = False) -> "GatewayResult[T]":
        return cls(success=True, data=data, from_cache=from_cache)

    @classmethod
    def fail(cls, error: BaseException, fallback: str) -> "GatewayResult[T]":
        message = str(error) or fallback
        return cls(
            success=False,
            error=message,
            error_detail=ErrorDetail(
                code=error_code(error) or "unknown-error",
                message=message,
                details=error_details(error),
            ),
        )


@dataclass
class QueryOptions:
    """Filters, ordering and limit for find_many."""

    filters: list[FieldFilter] = field(default_factory=list)
    order_by: str | None = None
    order_direction: str = "desc"
    limit: int | None = None

    def constraints(self) -> list[QueryConstraint]:
        constraints: list[QueryConstraint] = list(self.filters)
        if self.order_by:
            constraints.append(OrderBy(self.order_by, self.order_direction == "desc"))
        if self.limit:
            constraints.append(Limit(self.limit))
        return constraints

    def cache_params(self) -> dict[str, Any]:
        return {
            "filters": [[f.field, f.op, f.value] for f in self.filters],
            "order_by": self.order_by,
            "order_direction": self.order_direction,
            "limit": self.limit,
        }


@dataclass
class Page:
    """A list result."""

    items: list[Document]
    total: int
    page: int = 1
    limit: int = 0
    has_more: bool = False


@dataclass
class GatewayConfig:
    """Per-gateway tuning."""

    document_ttl: timedelta = timedelta(minutes=2)
    # Lists go stale faster under concurrent writes
    list_ttl: timedelta = timedelta(minutes=1)
    retry_options: RetryOptions | None = None
    breaker_config: CircuitBreakerConfig | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentGateway:
    """
    Cached, retried and instrumented CRUD for a named collection.

    Usage:
        orders = DocumentGateway("orders", store, cache, retry, monitor)

        created = await orders.create({"status": "pending"})
        fetched = await orders.find_by_id(created.data["id"])
        if not fetched.success:
            print(fetched.error_detail.code)
    """

    def __init__(
        self,
        collection: str,
        store: DocumentStore,
        cache: TTLCache,
        retry: RetryExecutor,
        monitor: PerformanceMonitor,
        config: GatewayConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.collection = collection
        self._store = store
        self._cache = cache
        self._retry = retry
        self._monitor = monitor
        self.config = config or GatewayConfig()
        self._clock = clock

    def _key(self, operation: str, params: Any) -> CacheKey:
        return CacheKey.build(self.collection, operation, params)

    def _document_key(self, document_id: str) -> CacheKey:
        return self._key(FIND_BY_ID, {"id": document_id})

    async def _call(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        user: UserContext | None,
    ) -> T:
        return await self._retry.execute(
            fn,
            RetryContext.for_user(self.collection, operation, user),
            self.config.retry_options,
            self.config.breaker_config,
        )

    def _failed(self, span: Span, operation: str, error: BaseException) -> GatewayResult[Any]:
        result: GatewayResult[Any] = GatewayResult.fail(error, f"Failed to {operation}")
        span.observe_result(result)
        logger.error(f"{operation} failed in {self.collection}: {result.error}")
        return result

    def _cache_put(self, key: CacheKey, value: Any, ttl: timedelta) -> None:
        try:
            self._cache.set(key, copy.deepcopy(value), ttl)
        except Exception:
            logger.exception(f"Failed to cache {key}")

    def _invalidate(self) -> None:
        try:
            self._cache.invalidate_collection(self.collection)
        except Exception:
            logger.exception(f"Failed to invalidate cache for {self.collection}")

    async def find_by_id(
        self,
        document_id: str,
        use_cache: bool = True,
        user: UserContext | None = None,
    ) -> GatewayResult[Document]:
        """Fetch one document, from cache when allowed."""
        key = self._document_key(document_id)

        async with self._monitor.span(self.collection, FIND_BY_ID) as span:
            if use_cache:
                cached = self._cache.get(key)
                if cached is not None:
                    span.cache_hit = True
                    return GatewayResult.ok(copy.deepcopy(cached), from_cache=True)
            span.cache_hit = False

            try:
                document = await self._call(
                    FIND_BY_ID,
                    lambda: self._store.get(self.collection, document_id),
                    user,
                )
            except Exception as e:
                return self._failed(span, FIND_BY_ID, e)

            if document is None:
                result: GatewayResult[Document] = GatewayResult.fail(
                    DocumentNotFoundError(self.collection, document_id), "Document not found"
                )
                span.observe_result(result)
                return result

            self._cache_put(key, document, self.config.document_ttl)
            return GatewayResult.ok(document)

    async def find_many(
        self,
        options: QueryOptions | None = None,
        use_cache: bool = True,
        user: UserContext | None = None,
    ) -> GatewayResult[Page]:
        """Query documents, from cache when allowed."""
        options = options or QueryOptions()
        key = self._key(FIND_MANY, options.cache_params())

        async with self._monitor.span(self.collection, FIND_MANY) as span:
            if use_cache:
                cached = self._cache.get(key)
                if cached is not None:
                    span.cache_hit = True
                    return GatewayResult.ok(copy.deepcopy(cached), from_cache=True)
            span.cache_hit = False

            try:
                documents = await self._call(
                    FIND_MANY,
                    lambda: self._store.query(self.collection, options.constraints()),
                    user,
                )
            except Exception as e:
                return self._failed(span, FIND_MANY, e)

            page = Page(
                items=documents,
                total=len(documents),
                limit=options.limit or len(documents),
            )
            self._cache_put(key, page, self.config.list_ttl)
            return GatewayResult.ok(page)

    async def create(
        self,
        data: Document,
        custom_id: str | None = None,
        user: UserContext | None = None,
    ) -> GatewayResult[Document]:
        """Insert a document, then invalidate the collection and seed its cache entry."""
        now = self._clock().isoformat()
        entity = {k: v for k, v in data.items() if k != "id"}
        entity.update(created_at=now, updated_at=now)

        async with self._monitor.span(self.collection, CREATE) as span:
            try:
                document_id = await self._call(
                    CREATE,
                    lambda: self._store.insert(self.collection, entity, custom_id),
                    user,
                )
            except Exception as e:
                return self._failed(span, CREATE, e)

            created = {"id": document_id, **entity}
            self._invalidate()
            self._cache_put(self._document_key(document_id), created, self.config.document_ttl)
            return GatewayResult.ok(created)

    async def update(
        self,
        document_id: str,
        patch: Document,
        user: UserContext | None = None,
    ) -> GatewayResult[Document]:
        """Patch a document and return a fresh copy read past the cache."""
        changes = {k: v for k, v in patch.items() if k not in ("id", "created_at")}
        changes["updated_at"] = self._clock().isoformat()

        async with self._monitor.span(self.collection, UPDATE) as span:
            try:
                await self._call(
                    UPDATE,
                    lambda: self._store.patch(self.collection, document_id, changes),
                    user,
                )
            except Exception as e:
                return self._failed(span, UPDATE, e)

            self._invalidate()
            result = await self.find_by_id(document_id, use_cache=False, user=user)
            span.observe_result(result)
            return result

    async def delete(
        self,
        document_id: str,
        user: UserContext | None = None,
    ) -> GatewayResult[None]:
        """Remove a document and invalidate the collection."""
        async with self._monitor.span(self.collection, DELETE) as span:
            try:
                await self._call(
                    DELETE,
                    lambda: self._store.remove(self.collection, document_id),
                    user,
                )
            except Exception as e:
                return self._failed(span, DELETE, e)

            self._invalidate()
            return GatewayResult.ok()

    async def exists(self, document_id: str, user: UserContext | None = None) -> bool:
        result = await self.find_by_id(document_id, user=user)
        return result.success

    async def count(
        self, options: QueryOptions | None = None, user: UserContext | None = None
    ) -> int:
        result = await self.find_many(options, user=user)
        return result.data.total if result.success and result.data else 0
