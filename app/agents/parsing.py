# =============================================================================
# Reasoning-Service Response Parsing
# =============================================================================
#
# The reasoning service answers in several shapes depending on the backend:
#
#   {"isSpecialSource": true}                  bare JSON object
#   {"response": "{\"query\": \"SELECT ...\"}"} webhook envelope around text
#   ```json\n{"table": "customers", ...}\n```   fenced JSON from a chat model
#   Accepted                                   plain text
#
# These helpers never raise. They return None when the text is not the
# expected shape and leave the degrade decision to the calling stage.
# =============================================================================

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)

_ENVELOPE_KEYS = ("response", "message")


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse `text` as a JSON object. Returns None for anything else."""
    try:
        value = json.loads(strip_code_fence(text))
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def unwrap_envelope(text: str) -> str:
    """
    Return the payload carried by a webhook envelope.

    `{"response": "..."}` and `{"message": "..."}` yield the inner string.
    Anything else (bare objects, plain text) is returned unchanged.
    """
    obj = parse_json_object(text)
    if obj is None:
        return text
    for key in _ENVELOPE_KEYS:
        inner = obj.get(key)
        if isinstance(inner, str):
            return inner
    return text
