# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Body shape only. The minimum-length rule is enforced by the pipeline's
# validate_question() so that the 400 body carries a readable message
# instead of a field-level validation error.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class QueryRequest(BaseModel):
    """
    Request body for POST /queries and POST /structured-queries.

    Example:
        {"question": "What were our top selling products last quarter?"}
    """

    question: str = Field(
        ...,
        description="Free-form business question (at least 10 characters once trimmed)",
        examples=["What were our top selling products last quarter?"],
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"question": "What were our top selling products last quarter?"},
                {"question": "Who are the top customers by spending?"},
                {"question": "How is Netflix stock performing this month?"},
            ]
        }
    )
