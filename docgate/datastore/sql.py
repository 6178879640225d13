"""
SQL-backed document store.

Documents are persisted as JSON text in a single table through an async
SQLAlchemy engine (SQLite via aiosqlite by default). Query constraints are
evaluated in Python over the collection's rows.
"""

import json
import uuid
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docgate.datastore.base import (
    Document,
    DocumentStore,
    QueryConstraint,
    StoreError,
    apply_constraints,
)
from docgate.datastore.models import Base, DocumentDB


def _dump(data: Document) -> str:
    body = {k: v for k, v in data.items() if k != "id"}
    return json.dumps(body, ensure_ascii=False, default=str)


def _load(row: DocumentDB) -> Document:
    try:
        body: dict[str, Any] = json.loads(row.body) if row.body else {}
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse document {row.collection}/{row.doc_id}: {e}")
        body = {}
    return {"id": row.doc_id, **body}


class SqlDocumentStore(DocumentStore):
    """
    Document store over an async SQLAlchemy engine.

    Usage:
        store = SqlDocumentStore("sqlite+aiosqlite:///./docgate.db")
        await store.init()
        ...
        await store.close()
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        """Create the engine, session factory and tables."""
        if self._engine is not None:
            return

        self._engine = create_async_engine(self.database_url, echo=self.echo)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StoreError(f"Database connection failed: {e}", code="unavailable") from e

        logger.info(f"SQL document store initialized: {self.database_url}")

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise StoreError(
                "Database not initialized. Call init() first.", code="unavailable"
            )
        return self._session_factory

    async def _find_row(
        self, session: AsyncSession, collection: str, document_id: str
    ) -> DocumentDB | None:
        result = await session.execute(
            select(DocumentDB).where(
                DocumentDB.collection == collection,
                DocumentDB.doc_id == document_id,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, collection: str, document_id: str) -> Document | None:
        try:
            async with self._sessions()() as session:
                row = await self._find_row(session, collection, document_id)
                return _load(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError(f"Database read failed: {e}", code="unavailable") from e

    async def query(
        self, collection: str, constraints: list[QueryConstraint]
    ) -> list[Document]:
        try:
            async with self._sessions()() as session:
                result = await session.execute(
                    select(DocumentDB).where(DocumentDB.collection == collection)
                )
                documents = [_load(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Database query failed: {e}", code="unavailable") from e
        return apply_constraints(documents, constraints)

    async def insert(
        self, collection: str, data: Document, document_id: str | None = None
    ) -> str:
        document_id = document_id or uuid.uuid4().hex
        try:
            async with self._sessions()() as session:
                existing = await self._find_row(session, collection, document_id)
                if existing:
                    existing.body = _dump(data)
                    existing.updated_at = datetime.now()
                else:
                    session.add(
                        DocumentDB(
                            collection=collection,
                            doc_id=document_id,
                            body=_dump(data),
                        )
                    )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Database write failed: {e}", code="unavailable") from e

        logger.debug(f"[SqlStore] insert {collection}/{document_id}")
        return document_id

    async def patch(self, collection: str, document_id: str, partial: Document) -> None:
        try:
            async with self._sessions()() as session:
                row = await self._find_row(session, collection, document_id)
                if row is None:
                    raise StoreError(
                        f"No document to update: {collection}/{document_id}",
                        code="not-found",
                        status=404,
                    )
                merged = {**_load(row), **partial}
                row.body = _dump(merged)
                row.updated_at = datetime.now()
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Database write failed: {e}", code="unavailable") from e

    async def remove(self, collection: str, document_id: str) -> None:
        try:
            async with self._sessions()() as session:
                await session.execute(
                    delete(DocumentDB).where(
                        DocumentDB.collection == collection,
                        DocumentDB.doc_id == document_id,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Database delete failed: {e}", code="unavailable") from e

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
