# =============================================================================
# Pipeline Errors
# =============================================================================
#
# Failures that abort a query request. Every class carries:
#   - message: short, caller-safe text returned in the 500/400 body
#   - detail:  optional cause summary returned as the `error` field
#   - stage:   pipeline stage that raised it (for server-side logs)
#   - final_stage: set to "failed" once the orchestrator aborts the request
#
# Malformed-but-received responses are NOT errors. Stages report them as
# degraded results instead (see `degraded` on the stage result dataclasses).
# =============================================================================

from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures that end a request."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        detail: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.detail = detail
        self.stage = stage
        self.final_stage: str | None = None
        super().__init__(detail or self.message)


class QuestionValidationError(PipelineError):
    """Question is empty or too short. Raised before any external call."""

    status_code = 400
    default_message = "Invalid question"


class UpstreamServiceError(PipelineError):
    """The reasoning service returned a non-success response or was unreachable."""

    default_message = "Error calling external service"


class ExecutionError(PipelineError):
    """A data backend failed to run the generated artifact."""

    default_message = "Error executing query"
