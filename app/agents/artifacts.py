# =============================================================================
# Query Artifacts — What a Question Turns Into
# =============================================================================
#
# One tagged union, dispatched once per request by the orchestrator:
#
#   Artifact = SqlArtifact | RestDescriptor | SheetArtifact | DirectAnswer
#
#   SqlArtifact     — generated SQL text for the relational backend
#   RestDescriptor  — {table, select, order?, limit?} for the REST backend
#   SheetArtifact   — the special-case spreadsheet export
#   DirectAnswer    — the generator answered in text; nothing to execute
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# REST backend schema
# ---------------------------------------------------------------------------
# Tables a RestDescriptor may target and the columns each one can be
# ordered by. "quanity" is the column name as deployed.
# ---------------------------------------------------------------------------

REST_TABLES: dict[str, tuple[str, ...]] = {
    "transactions": (
        "id", "customer_id", "store_id", "product_id", "transaction_date",
        "quanity", "total_amount", "discount_amount", "final_amount",
        "loyalty_points",
    ),
    "customers": ("id", "name", "email", "gender"),
    "products": ("id", "product_name", "aisle", "unit_price"),
    "stores": ("id", "store_name"),
}


@dataclass(frozen=True)
class SqlArtifact:
    sql: str


@dataclass(frozen=True)
class RestDescriptor:
    """
    Structured REST fetch.

    `order` uses the backend's "<column>.<asc|desc>" syntax. `limit` of None
    means the configured default.
    """

    table: str
    select: str = "*"
    order: str | None = None
    limit: int | None = None

    @property
    def order_column(self) -> str | None:
        if not self.order:
            return None
        return self.order.split(".", 1)[0]


@dataclass(frozen=True)
class SheetArtifact:
    sheet_id: str


@dataclass(frozen=True)
class DirectAnswer:
    text: str


Artifact = SqlArtifact | RestDescriptor | SheetArtifact | DirectAnswer
