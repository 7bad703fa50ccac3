# =============================================================================
# LangGraph Orchestrator — Query Pipeline Assembly
# =============================================================================
#
# Two compiled graphs, one per endpoint.
#
# query_graph (POST /queries):
#
#   START ──▶ classify ──┬──▶ fetch_sheet ─────────────┐
#                        │                             ▼
#                        └──▶ generate_sql ──┬──▶ run_sql ──▶ format ──▶ persist ──▶ END
#                                            │                            ▲
#                                            └── (direct answer) ─────────┘
#
# structured_graph (POST /structured-queries):
#
#   START ──▶ generate_descriptor ──▶ fetch_rest ──▶ format ──▶ persist ──▶ END
#
# Stage states: received → classifying → generating → executing →
# formatting → persisted → returned, or failed. A PipelineError raised by
# any node stops the graph; the error carries the stage it was raised in
# and the request ends in the failed state.
#
# DESIGN DECISION: Collaborators (reasoning provider, store, HTTP client,
# SQL runner) travel in the state as one PipelineContext. Nodes hold no
# state between requests, and tests inject fakes the same way the API
# injects real ones. The context is not serialisable; no checkpointer is
# configured on either graph.
# =============================================================================

from __future__ import annotations

import enum
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import httpx
from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from app.agents.artifacts import (
    Artifact,
    DirectAnswer,
    RestDescriptor,
    SheetArtifact,
    SqlArtifact,
)
from app.agents.classifier import Classification, classify_question
from app.agents.executor import fetch_rest, fetch_sheet, run_sql
from app.agents.formatter import (
    DATABASE_HEADER,
    FormattedReport,
    format_report,
    special_source_header,
)
from app.agents.generator import GenerationResult, generate_descriptor, generate_sql
from app.config import settings
from app.services.errors import PipelineError, QuestionValidationError
from app.services.llm import LLMProvider
from app.services.sql_runner import SqlRunner
from app.services.storage import QueryStore, StoredQuery

logger = logging.getLogger(__name__)


class PipelineStage(str, enum.Enum):
    RECEIVED = "received"
    CLASSIFYING = "classifying"
    GENERATING = "generating"
    EXECUTING = "executing"
    FORMATTING = "formatting"
    PERSISTED = "persisted"
    RETURNED = "returned"
    FAILED = "failed"


@dataclass
class PipelineContext:
    """External collaborators for one request."""

    llm: LLMProvider
    store: QueryStore
    http_client: httpx.AsyncClient
    sql_runner: SqlRunner


class QueryState(TypedDict, total=False):
    """
    State that flows through both graphs.

    total=False so nodes only return the keys they update.
    """

    # --- Input ---
    question: str
    context: PipelineContext

    # --- Intermediate ---
    stage: PipelineStage
    classification: Classification
    generation: GenerationResult
    artifact: Artifact
    rows: list[Any]
    report: FormattedReport

    # --- Output ---
    response_text: str
    record: StoredQuery


@contextmanager
def _stage(stage: PipelineStage) -> Iterator[None]:
    """Tag PipelineErrors raised inside the block with `stage`."""
    try:
        yield
    except PipelineError as e:
        if e.stage is None:
            e.stage = stage.value
        raise


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def classify_node(state: QueryState) -> dict:
    ctx = state["context"]
    with _stage(PipelineStage.CLASSIFYING):
        classification = await classify_question(state["question"], ctx.llm)

    update: dict = {
        "stage": PipelineStage.CLASSIFYING,
        "classification": classification,
    }
    if classification.is_special_source:
        update["artifact"] = SheetArtifact(sheet_id=settings.special_source_sheet_id)
    return update


async def generate_sql_node(state: QueryState) -> dict:
    ctx = state["context"]
    with _stage(PipelineStage.GENERATING):
        generation = await generate_sql(state["question"], ctx.llm)

    update: dict = {
        "stage": PipelineStage.GENERATING,
        "generation": generation,
        "artifact": generation.artifact,
    }
    if isinstance(generation.artifact, DirectAnswer):
        update["response_text"] = generation.artifact.text
    return update


async def generate_descriptor_node(state: QueryState) -> dict:
    ctx = state["context"]
    generation = await generate_descriptor(state["question"], ctx.llm)
    return {
        "stage": PipelineStage.GENERATING,
        "generation": generation,
        "artifact": generation.artifact,
    }


async def run_sql_node(state: QueryState) -> dict:
    ctx = state["context"]
    with _stage(PipelineStage.EXECUTING):
        rows = await run_sql(state["artifact"], ctx.sql_runner)
    return {"stage": PipelineStage.EXECUTING, "rows": rows}


async def fetch_rest_node(state: QueryState) -> dict:
    ctx = state["context"]
    with _stage(PipelineStage.EXECUTING):
        rows = await fetch_rest(state["artifact"], ctx.http_client)
    return {"stage": PipelineStage.EXECUTING, "rows": rows}


async def fetch_sheet_node(state: QueryState) -> dict:
    ctx = state["context"]
    with _stage(PipelineStage.EXECUTING):
        rows = await fetch_sheet(state["artifact"], ctx.http_client)
    return {"stage": PipelineStage.EXECUTING, "rows": rows}


async def format_node(state: QueryState) -> dict:
    ctx = state["context"]
    header = (
        special_source_header(settings.special_source_name)
        if isinstance(state["artifact"], SheetArtifact)
        else DATABASE_HEADER
    )
    report = await format_report(
        state["question"], state.get("rows", []), ctx.llm, header=header,
    )
    return {
        "stage": PipelineStage.FORMATTING,
        "report": report,
        "response_text": report.text,
    }


async def persist_node(state: QueryState) -> dict:
    ctx = state["context"]
    record = await ctx.store.create_query(state["question"], state["response_text"])
    return {"stage": PipelineStage.PERSISTED, "record": record}


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

_EXECUTE_NODE: dict[type, str] = {
    SqlArtifact: "run_sql",
    RestDescriptor: "fetch_rest",
    SheetArtifact: "fetch_sheet",
    DirectAnswer: "persist",
}


def route_after_classify(state: QueryState) -> str:
    if state["classification"].is_special_source:
        return "fetch_sheet"
    return "generate_sql"


def route_artifact(state: QueryState) -> str:
    return _EXECUTE_NODE[type(state["artifact"])]


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_query_builder = StateGraph(QueryState)
_query_builder.add_node("classify", classify_node)
_query_builder.add_node("generate_sql", generate_sql_node)
_query_builder.add_node("run_sql", run_sql_node)
_query_builder.add_node("fetch_sheet", fetch_sheet_node)
_query_builder.add_node("format", format_node)
_query_builder.add_node("persist", persist_node)

_query_builder.add_edge(START, "classify")
_query_builder.add_conditional_edges(
    "classify",
    route_after_classify,
    {"fetch_sheet": "fetch_sheet", "generate_sql": "generate_sql"},
)
_query_builder.add_conditional_edges(
    "generate_sql",
    route_artifact,
    {"run_sql": "run_sql", "persist": "persist"},
)
_query_builder.add_edge("run_sql", "format")
_query_builder.add_edge("fetch_sheet", "format")
_query_builder.add_edge("format", "persist")
_query_builder.add_edge("persist", END)

query_graph = _query_builder.compile()


_structured_builder = StateGraph(QueryState)
_structured_builder.add_node("generate_descriptor", generate_descriptor_node)
_structured_builder.add_node("fetch_rest", fetch_rest_node)
_structured_builder.add_node("format", format_node)
_structured_builder.add_node("persist", persist_node)

_structured_builder.add_edge(START, "generate_descriptor")
_structured_builder.add_edge("generate_descriptor", "fetch_rest")
_structured_builder.add_edge("fetch_rest", "format")
_structured_builder.add_edge("format", "persist")
_structured_builder.add_edge("persist", END)

structured_graph = _structured_builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_question(question: str) -> str:
    """
    Return the trimmed question.

    Raises:
        QuestionValidationError: empty or shorter than min_question_length.
    """
    trimmed = question.strip()
    if not trimmed:
        raise QuestionValidationError(
            "Question cannot be empty", stage=PipelineStage.RECEIVED.value,
        )
    if len(trimmed) < settings.min_question_length:
        raise QuestionValidationError(
            "Please enter a more detailed question "
            f"(at least {settings.min_question_length} characters)",
            stage=PipelineStage.RECEIVED.value,
        )
    return trimmed


async def run_query(question: str, context: PipelineContext) -> QueryState:
    """Answer a question through the classify / SQL / spreadsheet pipeline."""
    return await _invoke(query_graph, "query", question, context)


async def run_structured_query(question: str, context: PipelineContext) -> QueryState:
    """Answer a question through the descriptor / REST pipeline."""
    return await _invoke(structured_graph, "structured", question, context)


async def _invoke(
    graph: Any,
    name: str,
    question: str,
    context: PipelineContext,
) -> QueryState:
    trimmed = validate_question(question)

    logger.info("Invoking %s pipeline: question='%s'", name, trimmed[:80])

    initial_state: QueryState = {
        "question": trimmed,
        "context": context,
        "stage": PipelineStage.RECEIVED,
    }
    try:
        result = await graph.ainvoke(initial_state)
    except PipelineError as e:
        e.final_stage = PipelineStage.FAILED.value
        logger.error(
            "%s pipeline %s at stage %s: %s",
            name, PipelineStage.FAILED.value, e.stage, e,
        )
        raise

    result["stage"] = PipelineStage.RETURNED
    logger.info(
        "%s pipeline complete: record=%s", name, result["record"].id,
    )
    return result
