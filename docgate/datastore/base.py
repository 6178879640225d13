"""
Remote document store contract.

The gateway only speaks to a backend through this interface: documents are
plain dicts addressed by (collection, id), and queries are expressed as a
list of constraints.
"""

import operator
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Union

Document = dict[str, Any]

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class StoreError(Exception):
    """Transport-level failure raised by a document store."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status: int | None = None,
    ):
        self.code = code
        self.status = status
        super().__init__(message)


@dataclass(frozen=True)
class FieldFilter:
    """Equality/inequality/range filter on a single field."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, document: Document) -> bool:
        if self.field not in document:
            return False
        try:
            return _OPERATORS[self.op](document[self.field], self.value)
        except TypeError:
            return False


@dataclass(frozen=True)
class OrderBy:
    """Single-field ordering."""

    field: str
    descending: bool = False


@dataclass(frozen=True)
class Limit:
    """Result-count limit."""

    count: int


QueryConstraint = Union[FieldFilter, OrderBy, Limit]


def apply_constraints(
    documents: list[Document], constraints: list[QueryConstraint]
) -> list[Document]:
    """Evaluate constraints in memory: filters, then ordering, then limit."""
    filters = [c for c in constraints if isinstance(c, FieldFilter)]
    orders = [c for c in constraints if isinstance(c, OrderBy)]
    limits = [c for c in constraints if isinstance(c, Limit)]

    result = [d for d in documents if all(f.matches(d) for f in filters)]

    if orders:
        order = orders[-1]
        present = [d for d in result if d.get(order.field) is not None]
        missing = [d for d in result if d.get(order.field) is None]
        present.sort(key=lambda d: d[order.field], reverse=order.descending)
        result = present + missing

    if limits:
        result = result[: max(0, limits[-1].count)]

    return result


class DocumentStore(ABC):
    """Abstract async document store."""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Document | None:
        """Fetch a single document, or None when it does not exist."""
        ...

    @abstractmethod
    async def query(
        self, collection: str, constraints: list[QueryConstraint]
    ) -> list[Document]:
        """Fetch documents matching the constraints."""
        ...

    @abstractmethod
    async def insert(
        self, collection: str, data: Document, document_id: str | None = None
    ) -> str:
        """Insert a document and return its id (generated when not given)."""
        ...

    @abstractmethod
    async def patch(self, collection: str, document_id: str, partial: Document) -> None:
        """Merge fields into an existing document."""
        ...

    @abstractmethod
    async def remove(self, collection: str, document_id: str) -> None:
        """Delete a document."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None
