# =============================================================================
# Classifier — Special-Case Source Detection
# =============================================================================
#
# Asks the reasoning service whether a question is about the special-case
# source (a named external metric served from a spreadsheet export) rather
# than the general business database.
#
# FAILURE POLICY (deliberately asymmetric):
#   - transport failure      → UpstreamServiceError, request aborts
#   - malformed-but-received → degraded result, general path (False)
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.agents.parsing import parse_json_object, unwrap_envelope
from app.config import settings
from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)

LABEL_KEY = "isSpecialSource"


@dataclass
class Classification:
    """Outcome of the classify stage."""

    is_special_source: bool
    degraded: bool = False
    reason: str | None = None


def build_classifier_prompt(source_name: str) -> str:
    return f"""You are an AI assistant that determines if a user question is \
about {source_name} data.

Analyze the question and decide whether it asks for {source_name} figures, \
prices, performance or any other {source_name} market information.

Examples of {source_name} questions:
- "What is the current {source_name} price?"
- "How is {source_name} performing in the market?"
- "Show me {source_name} data"
- "{source_name} performance today"

Examples of other questions:
- "What are our top selling products?"
- "Who are our best customers?"
- "Show me customer data"
- "What's the revenue breakdown?"

Respond ONLY with a JSON object in this exact format:
{{"{LABEL_KEY}": boolean}}"""


async def classify_question(question: str, llm: LLMProvider) -> Classification:
    """
    Decide which source path a question takes.

    Raises:
        UpstreamServiceError: the reasoning service call itself failed.
    """
    response = await llm.complete(
        messages=[{
            "role": "user",
            "content": f"Here is the user's question: {question}",
        }],
        system=build_classifier_prompt(settings.special_source_name),
        temperature=0.0,
        max_tokens=50,
    )

    parsed = parse_json_object(unwrap_envelope(response.content))
    if parsed is None or not isinstance(parsed.get(LABEL_KEY), bool):
        logger.warning(
            "Unparseable classification response, using general path: %r",
            response.content[:200],
        )
        return Classification(
            is_special_source=False,
            degraded=True,
            reason="malformed classification response",
        )

    label = parsed[LABEL_KEY]
    logger.info(
        "Classified question as %s: '%s'",
        "special source" if label else "general", question[:80],
    )
    return Classification(is_special_source=label)
