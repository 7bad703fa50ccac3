# =============================================================================
# SQL Runner — Relational Execution Backend
# =============================================================================
#
# Runs generated SQL text as-is and returns the rows as dicts.
#
# WARNING: The text comes from the reasoning service and is NOT parsed,
# validated or sanitized. The only guard is that the transaction is always
# rolled back, so writes never persist. Point DATABASE_URL at a read-only
# role in any shared deployment.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.errors import ExecutionError

logger = logging.getLogger(__name__)


class SqlRunner(Protocol):
    async def run(self, sql: str) -> list[dict[str, Any]]:
        ...


class SqlAlchemyRunner:
    """SqlRunner backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def run(self, sql: str) -> list[dict[str, Any]]:
        """
        Execute `sql` and return every row.

        Raises:
            ExecutionError: any database or driver error. Never retried.
        """
        logger.info("Executing generated SQL: %s", sql[:200])
        try:
            async with self._session_factory() as session:
                # Driver-level execution: no bind-parameter parsing of ":name"
                conn = await session.connection()
                result = await conn.exec_driver_sql(sql)
                rows = (
                    [dict(row._mapping) for row in result]
                    if result.returns_rows
                    else []
                )
                await session.rollback()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Generated SQL failed: %s", e)
            raise ExecutionError(
                detail=f"Database error: {type(e).__name__}",
                stage="executing",
            ) from e

        logger.info("Generated SQL returned %d rows", len(rows))
        return rows
