# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Wire names follow the existing web client: `createdAt` is camelCase on the
# wire and snake_case in Python (serialization_alias). FastAPI serialises
# response models by alias.
# =============================================================================

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class QueryRecordResponse(BaseModel):
    """A persisted question with its narrative answer."""

    id: str = Field(description="Opaque unique identifier")
    question: str = Field(description="The question as submitted (trimmed)")
    response: str = Field(description="Narrative answer or fallback rendering")
    created_at: datetime = Field(
        serialization_alias="createdAt",
        description="When the record was stored",
    )

    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseModel):
    """
    Error body for 400/404/500 responses.

    `error` carries a short cause summary for upstream/execution failures;
    `errors` lists field problems for malformed request bodies.
    """

    message: str
    error: str | None = None
    errors: list[dict[str, Any]] | None = None
