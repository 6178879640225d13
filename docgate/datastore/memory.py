"""
In-process document store, used for local runs and tests.
"""

import copy
import uuid

from loguru import logger

from docgate.datastore.base import (
    Document,
    DocumentStore,
    QueryConstraint,
    StoreError,
    apply_constraints,
)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed document store. Documents are copied in and out."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}

    def _collection(self, name: str) -> dict[str, Document]:
        return self._collections.setdefault(name, {})

    async def get(self, collection: str, document_id: str) -> Document | None:
        document = self._collection(collection).get(document_id)
        if document is None:
            return None
        return {"id": document_id, **copy.deepcopy(document)}

    async def query(
        self, collection: str, constraints: list[QueryConstraint]
    ) -> list[Document]:
        documents = [
            {"id": doc_id, **copy.deepcopy(doc)}
            for doc_id, doc in self._collection(collection).items()
        ]
        return apply_constraints(documents, constraints)

    async def insert(
        self, collection: str, data: Document, document_id: str | None = None
    ) -> str:
        document_id = document_id or uuid.uuid4().hex
        body = {k: v for k, v in copy.deepcopy(data).items() if k != "id"}
        self._collection(collection)[document_id] = body
        logger.debug(f"[InMemoryStore] insert {collection}/{document_id}")
        return document_id

    async def patch(self, collection: str, document_id: str, partial: Document) -> None:
        documents = self._collection(collection)
        if document_id not in documents:
            raise StoreError(
                f"No document to update: {collection}/{document_id}",
                code="not-found",
                status=404,
            )
        documents[document_id].update(
            {k: v for k, v in copy.deepcopy(partial).items() if k != "id"}
        )

    async def remove(self, collection: str, document_id: str) -> None:
        self._collection(collection).pop(document_id, None)
