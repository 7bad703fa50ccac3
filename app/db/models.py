# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# Only the table the query pipeline writes to is mapped here. The business
# tables that generated SQL reads (customers, products, orders, ...) are
# owned by the seeding tooling and queried with raw SQL.
#
# ┌──────────────────────────────┐
# │  queries                     │
# ├──────────────────────────────┤
# │ id (PK, uuid4 hex string)    │
# │ question (text)              │
# │ response (text)              │
# │ created_at (timestamptz)     │
# └──────────────────────────────┘
#
# Rows are append-only: created once per successful pipeline run, never
# updated or deleted by the service.
# =============================================================================

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    pass


class QueryRecord(Base):
    """A persisted question and the narrative answer returned for it."""

    __tablename__ = "queries"

    # Generated by the store, not the database, so the same id scheme works
    # for the in-memory backend.
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    question: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        # GET /queries lists newest first
        Index("ix_queries_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<QueryRecord(id={self.id!r}, question={self.question[:40]!r})>"
