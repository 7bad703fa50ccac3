# =============================================================================
# Formatter — Raw Rows → Narrative Report
# =============================================================================
#
# Sends the question, the rows and a few worked examples to the reasoning
# service and expects {"response": "<markdown report>"} back.
#
# This stage never fails the request. Any problem (transport error,
# malformed JSON, missing or empty field) falls back to render_rows(), which
# makes no external call.
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from app.agents.parsing import parse_json_object
from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)

DATABASE_HEADER = "Query Results\n\nBased on the available data:\n\n"
EMPTY_ROWS_TEXT = "No rows returned."
FIELD_SEPARATOR = " | "

EXAMPLE_RESPONSES: list[dict[str, str]] = [
    {"response": (
        "Based on the sales data analysis, the top selling products last "
        "quarter were:\n\n"
        "1. **Premium Widget Pro** - 1,247 units sold ($62,350 revenue)\n"
        "2. **Standard Widget** - 982 units sold ($29,460 revenue)\n"
        "3. **Widget Accessories Kit** - 756 units sold ($15,120 revenue)\n\n"
        "The Premium Widget Pro showed a 23% increase compared to the "
        "previous quarter, indicating strong market demand for premium "
        "features."
    )},
    {"response": (
        "Revenue analysis reveals:\n\n"
        "• **Total revenue:** $2.4M (↑18% YoY)\n"
        "• **Monthly recurring revenue:** $450K\n"
        "• **Average deal size:** $3,200\n\n"
        "Growth drivers include expansion in the enterprise segment and "
        "successful launch of the premium tier."
    )},
    {"response": (
        "The conversion funnel analysis shows:\n\n"
        "• **Website visitors:** 45,200\n"
        "• **Lead generation:** 3,840 (8.5% conversion)\n"
        "• **Qualified leads:** 1,920 (50% of leads)\n"
        "• **Closed deals:** 384 (20% close rate)\n\n"
        "Recommendations: Focus on improving lead qualification and consider "
        "A/B testing the pricing page."
    )},
]

FORMAT_SYSTEM_PROMPT = (
    "You are an AI assistant that converts data into beautiful markdown "
    "reports.\n\n"
    f"Example responses:\n{json.dumps(EXAMPLE_RESPONSES, ensure_ascii=False)}\n\n"
    "Format the data you are given into a markdown report similar to the "
    "examples above. Respond ONLY with a JSON object with a key of "
    "'response' and a value of the markdown report."
)


@dataclass
class FormattedReport:
    """Final narrative text, flagged when it is the deterministic fallback."""

    text: str
    degraded: bool = False
    reason: str | None = None


async def format_report(
    question: str,
    rows: list[Any],
    llm: LLMProvider,
    header: str = DATABASE_HEADER,
) -> FormattedReport:
    """Turn result rows into a narrative. Never raises."""
    user_message = (
        f"Original question: {question}\n"
        f"Data: {json.dumps(rows, default=str, ensure_ascii=False)}"
    )

    try:
        response = await llm.complete(
            messages=[{"role": "user", "content": user_message}],
            system=FORMAT_SYSTEM_PROMPT,
        )
    except Exception as e:
        logger.warning("Formatting call failed: %s. Using plain rendering.", e)
        return FormattedReport(
            text=render_rows(rows, header),
            degraded=True,
            reason=f"reasoning service error: {type(e).__name__}",
        )

    parsed = parse_json_object(response.content)
    narrative = parsed.get("response") if parsed is not None else None
    if not isinstance(narrative, str) or not narrative.strip():
        logger.warning(
            "Unusable formatting response %r. Using plain rendering.",
            response.content[:200],
        )
        return FormattedReport(
            text=render_rows(rows, header),
            degraded=True,
            reason="malformed formatting response",
        )

    return FormattedReport(text=narrative)


def render_rows(rows: list[Any], header: str = DATABASE_HEADER) -> str:
    """
    Deterministic plain-text rendering of result rows.

    List rows join their cells; dict rows join their values in column order.
    Any other row renders as a single cell.
    """
    if not rows:
        return header + EMPTY_ROWS_TEXT

    lines = []
    for row in rows:
        if isinstance(row, dict):
            fields = row.values()
        elif isinstance(row, (list, tuple)):
            fields = row
        else:
            fields = [row]
        lines.append(FIELD_SEPARATOR.join(_cell(value) for value in fields))
    return header + "\n".join(lines)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str, ensure_ascii=False)
    return str(value)


def special_source_header(source_name: str) -> str:
    return f"{source_name} Data Analysis\n\nBased on the available data:\n\n"
