"""
Document store backends behind the gateway.
"""

from docgate.datastore.base import (
    Document,
    DocumentStore,
    FieldFilter,
    Limit,
    OrderBy,
    QueryConstraint,
    StoreError,
)
from docgate.datastore.memory import InMemoryDocumentStore
from docgate.datastore.sql import SqlDocumentStore

__all__ = [
    "Document",
    "DocumentStore",
    "FieldFilter",
    "Limit",
    "OrderBy",
    "QueryConstraint",
    "StoreError",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
]
