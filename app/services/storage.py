# =============================================================================
# Query Store — Pluggable Persistence for Question/Response Records
# =============================================================================
#
# The last pipeline stage appends the finished question/response pair here.
#
#   QueryStore (Protocol)
#   ├── MemoryQueryStore   — process-local list (default, no infra)
#   └── DatabaseQueryStore — `queries` table via async SQLAlchemy
#
# DESIGN DECISION: The backend is chosen once at startup by
# create_query_store() and handed to the app via app.state. No module-level
# store instance exists.
#
# Both backends are append-only and hand out frozen StoredQuery values;
# callers never get a reference to the canonical copy.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import QueryRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredQuery:
    """Immutable value copy of a persisted record."""

    id: str
    question: str
    response: str
    created_at: datetime


class QueryStore(Protocol):
    """Append-only store of answered questions."""

    async def create_query(self, question: str, response: str) -> StoredQuery:
        """Persist a new record with a fresh id and timestamp."""
        ...

    async def list_queries(self) -> list[StoredQuery]:
        """All records, newest first."""
        ...

    async def get_query(self, query_id: str) -> StoredQuery | None:
        """A single record, or None if the id is unknown."""
        ...


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Implementation 1: In-Memory
# ---------------------------------------------------------------------------


class MemoryQueryStore:
    """
    Keeps records in a list in insertion order.

    Appends are single operations on the event loop thread, so concurrent
    requests need no lock.
    """

    def __init__(self) -> None:
        self._records: list[StoredQuery] = []

    async def create_query(self, question: str, response: str) -> StoredQuery:
        record = StoredQuery(
            id=_new_id(),
            question=question,
            response=response,
            created_at=datetime.now(UTC),
        )
        self._records.append(record)
        logger.info("Stored query %s (memory)", record.id)
        return record

    async def list_queries(self) -> list[StoredQuery]:
        # Insertion order is creation order; reversing gives newest first
        # even when two timestamps collide.
        return list(reversed(self._records))

    async def get_query(self, query_id: str) -> StoredQuery | None:
        for record in self._records:
            if record.id == query_id:
                return record
        return None


# ---------------------------------------------------------------------------
# Implementation 2: Relational Database
# ---------------------------------------------------------------------------


class DatabaseQueryStore:
    """Stores records in the `queries` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_query(self, question: str, response: str) -> StoredQuery:
        row = QueryRecord(
            id=_new_id(),
            question=question,
            response=response,
            created_at=datetime.now(UTC),
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()

        logger.info("Stored query %s (database)", row.id)
        return _to_value(row)

    async def list_queries(self) -> list[StoredQuery]:
        stmt = select(QueryRecord).order_by(QueryRecord.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_value(row) for row in result.scalars().all()]

    async def get_query(self, query_id: str) -> StoredQuery | None:
        async with self._session_factory() as session:
            row = await session.get(QueryRecord, query_id)
            return _to_value(row) if row is not None else None


def _to_value(row: QueryRecord) -> StoredQuery:
    return StoredQuery(
        id=row.id,
        question=row.question,
        response=row.response,
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_query_store(backend: str) -> QueryStore:
    """
    Build the store selected by STORAGE_BACKEND.

    Raises:
        ValueError: unknown backend name.
    """
    if backend == "memory":
        return MemoryQueryStore()
    if backend == "database":
        from app.db.engine import get_session_factory

        return DatabaseQueryStore(get_session_factory())
    raise ValueError(
        f"Unknown storage backend '{backend}'. Expected 'memory' or 'database'."
    )
