# =============================================================================
# Artifact Generator — Question → Executable Query
# =============================================================================
#
# Two strategies with one contract (question in, GenerationResult out):
#
#   generate_sql()        — relational strategy. The reasoning service writes
#                           SQL directly. Returns SqlArtifact, or DirectAnswer
#                           when the reply is a cannot-answer marker or not a
#                           query envelope at all.
#   generate_descriptor() — REST strategy. The reasoning service fills in a
#                           RestDescriptor. Invalid output or a failed call
#                           falls back to a keyword heuristic.
#
# DESIGN DECISION: Descriptors are checked at runtime, not only in the
# prompt. Unknown tables trigger the heuristic; an order column missing
# from the table is dropped; limits are clamped.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.agents.artifacts import (
    REST_TABLES,
    Artifact,
    DirectAnswer,
    RestDescriptor,
    SqlArtifact,
)
from app.agents.parsing import parse_json_object, unwrap_envelope
from app.config import settings
from app.services.errors import UpstreamServiceError
from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)

HEURISTIC_LIMIT = 50


@dataclass
class GenerationResult:
    """Artifact produced by a strategy, flagged when a fallback was used."""

    artifact: Artifact
    degraded: bool = False
    reason: str | None = None


# ---------------------------------------------------------------------------
# Relational Strategy
# ---------------------------------------------------------------------------

SQL_SYSTEM_PROMPT = """You are an AI assistant that converts user requests \
into SQL queries for a PostgreSQL e-commerce database.

DATABASE SCHEMA:
- customers: id, first_name, last_name, email, city, state, country, \
registration_date, created_at
- categories: id, name, description, created_at
- products: id, name, description, category_id, price, stock_quantity, \
is_active (1=active, 0=inactive), created_at
- orders: id, customer_id, order_date, status \
(pending | processing | shipped | completed), total_amount, \
shipping_address, created_at
- order_items: id, order_id, product_id, quantity, unit_price, created_at

RELATIONSHIPS:
- customers (1) → (many) orders
- categories (1) → (many) products
- orders (1) → (many) order_items
- products (1) → (many) order_items

RULES:
1. Produce a single read-only SQL query. Do not give anything else.
2. Only include columns and filters relevant to the request.
3. Do NOT add natural language to the response, only JSON.
4. Respond in this exact format:
{"query": "<SQL>"}
5. If the request cannot be fulfilled, respond with:
{"error": "Cannot generate query for this request"}"""


async def generate_sql(question: str, llm: LLMProvider) -> GenerationResult:
    """
    Ask the reasoning service for SQL.

    No structural validation is applied to the returned SQL.

    Raises:
        UpstreamServiceError: the reasoning service call itself failed.
    """
    response = await llm.complete(
        messages=[{
            "role": "user",
            "content": f"Here is the user's question: {question}",
        }],
        system=SQL_SYSTEM_PROMPT,
        temperature=0.0,
    )

    text = unwrap_envelope(response.content)
    parsed = parse_json_object(text)

    if parsed is None:
        logger.info("Generator replied in plain text, using it as the answer")
        return GenerationResult(
            artifact=DirectAnswer(text=text),
            degraded=True,
            reason="response is not a query envelope",
        )

    query = parsed.get("query")
    if isinstance(query, str) and query.strip():
        logger.info("Generated SQL: %s", query[:200])
        return GenerationResult(artifact=SqlArtifact(sql=query.strip()))

    error = parsed.get("error")
    if isinstance(error, str) and error.strip():
        logger.info("Generator declined the question: %s", error)
        return GenerationResult(
            artifact=DirectAnswer(text=error),
            reason="cannot answer",
        )

    logger.warning("Query envelope without a query: %r", text[:200])
    return GenerationResult(
        artifact=DirectAnswer(text=text),
        degraded=True,
        reason="query envelope without a query",
    )


# ---------------------------------------------------------------------------
# Descriptor Strategy
# ---------------------------------------------------------------------------

DESCRIPTOR_SYSTEM_PROMPT = """You are an AI assistant that generates accurate \
REST API queries. Always respond with valid JSON only.

DATABASE SCHEMA:
- transactions: id, customer_id, store_id, product_id, transaction_date, \
quanity, total_amount, discount_amount, final_amount, loyalty_points
- customers: id, name, email, gender
- products: id, product_name, aisle, unit_price
- stores: id, store_name

RELATIONSHIPS:
- transactions.customer_id → customers.id
- transactions.product_id → products.id
- transactions.store_id → stores.id

QUERY RULES:
1. Table: choose the primary table for the main entity being asked about.
2. Select: use "*" to get all fields for analysis.
3. Joins: use "*,customers(*)" when customer data is needed with \
transactions, "*,stores(*)" for store data.
4. Ordering: "<column>.asc" or "<column>.desc", only with columns that \
exist in the selected table.
5. Limits: 500 for analysis, 50 for specific lookups.

EXAMPLES:
- "What's the total revenue?" → {"table": "transactions", "select": "*", \
"limit": 500}
- "Who are the top customers by spending?" → {"table": "transactions", \
"select": "*,customers(*)", "order": "final_amount.desc", "limit": 100}
- "Show me recent transactions" → {"table": "transactions", "select": "*", \
"order": "transaction_date.desc", "limit": 50}
- "Show me transactions with customer and store info" → \
{"table": "transactions", "select": "*,customers(*),stores(*)", "limit": 50}
- "List all customers" → {"table": "customers", "select": "*", "limit": 500}
- "What products do we have?" → {"table": "products", "select": "*", \
"limit": 100}

CRITICAL: Never order by fields that don't exist in the selected table.

Return ONLY the JSON object."""


async def generate_descriptor(question: str, llm: LLMProvider) -> GenerationResult:
    """
    Ask the reasoning service for a RestDescriptor.

    Never raises: a failed call or an invalid descriptor degrades to
    fallback_descriptor().
    """
    try:
        response = await llm.complete(
            messages=[{"role": "user", "content": f'User question: "{question}"'}],
            system=DESCRIPTOR_SYSTEM_PROMPT,
            temperature=0.1,
            max_tokens=500,
        )
    except UpstreamServiceError as e:
        logger.warning("Descriptor generation failed (%s), using heuristic", e)
        return GenerationResult(
            artifact=fallback_descriptor(question),
            degraded=True,
            reason="reasoning service unavailable",
        )

    parsed = parse_json_object(unwrap_envelope(response.content))
    descriptor = validate_descriptor(parsed) if parsed is not None else None
    if descriptor is None:
        logger.warning(
            "Invalid descriptor %r, using heuristic", response.content[:200],
        )
        return GenerationResult(
            artifact=fallback_descriptor(question),
            degraded=True,
            reason="invalid descriptor",
        )

    logger.info("Generated descriptor: %s", descriptor)
    return GenerationResult(artifact=descriptor)


def validate_descriptor(data: dict[str, Any]) -> RestDescriptor | None:
    """
    Build a RestDescriptor from parsed JSON.

    Returns None when `table` is missing or unknown, or `select` is missing.
    Bad `order`/`limit` values are repaired rather than rejected.
    """
    table = data.get("table")
    select = data.get("select")
    if not isinstance(table, str) or table not in REST_TABLES:
        return None
    if not isinstance(select, str) or not select.strip():
        return None

    order = data.get("order")
    if order is not None:
        column = order.split(".", 1)[0] if isinstance(order, str) else None
        if column not in REST_TABLES[table]:
            logger.warning(
                "Dropping order %r: not a column of %s", order, table,
            )
            order = None

    return RestDescriptor(
        table=table,
        select=select.strip(),
        order=order,
        limit=_clamp_limit(data.get("limit")),
    )


def _clamp_limit(value: Any) -> int | None:
    # bool is an int subclass; true/false is not a row count
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return max(1, min(value, settings.rest_max_limit))


def fallback_descriptor(question: str) -> RestDescriptor:
    """
    Keyword heuristic used when the reasoning service can't help.

    Checks are ordered from most to least specific; transactions is the
    default table.
    """
    lowered = question.lower()

    if "transaction" in lowered:
        if "customer" in lowered:
            return RestDescriptor(
                table="transactions", select="*,customers(*)",
                limit=HEURISTIC_LIMIT,
            )
        return RestDescriptor(
            table="transactions", select="*", limit=HEURISTIC_LIMIT,
        )

    if "customer" in lowered:
        return RestDescriptor(table="customers", select="*", limit=HEURISTIC_LIMIT)

    if "product" in lowered:
        return RestDescriptor(table="products", select="*", limit=HEURISTIC_LIMIT)

    return RestDescriptor(table="transactions", select="*", limit=HEURISTIC_LIMIT)
