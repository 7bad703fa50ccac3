# =============================================================================
# Queries API — Natural-Language BI Questions
# =============================================================================
#
#   POST /queries             classify → (spreadsheet | SQL) → format → persist
#   POST /structured-queries  descriptor → REST fetch → format → persist
#   GET  /queries             stored records, newest first
#   GET  /queries/{query_id}  one stored record
#
# Handlers stay thin: validate, build the PipelineContext, invoke the graph,
# map the stored record. PipelineErrors propagate to the exception handlers
# registered in app/main.py, which shape the 400/500 bodies.
# =============================================================================

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.agents.orchestrator import (
    PipelineContext,
    run_query,
    run_structured_query,
    validate_question,
)
from app.api.deps import (
    LLMResolver,
    get_http_client,
    get_query_llm,
    get_query_store,
    get_sql_runner,
    get_structured_llm,
)
from app.models.requests import QueryRequest
from app.models.responses import ErrorResponse, QueryRecordResponse
from app.services.sql_runner import SqlRunner
from app.services.storage import QueryStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Queries"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Question missing or too short"},
    500: {"model": ErrorResponse, "description": "Upstream or execution failure"},
}


@router.post(
    "/queries",
    response_model=QueryRecordResponse,
    responses=_ERROR_RESPONSES,
    summary="Answer a business question",
    description=(
        "Classifies the question, answers it from the spreadsheet export or "
        "from generated SQL, formats the rows into a narrative report and "
        "stores the result."
    ),
)
async def create_query(
    request: QueryRequest,
    store: QueryStore = Depends(get_query_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    sql_runner: SqlRunner = Depends(get_sql_runner),
    resolve_llm: LLMResolver = Depends(get_query_llm),
) -> QueryRecordResponse:
    validate_question(request.question)

    context = PipelineContext(
        llm=resolve_llm(),
        store=store,
        http_client=http_client,
        sql_runner=sql_runner,
    )
    result = await run_query(request.question, context)
    return QueryRecordResponse.model_validate(result["record"])


@router.post(
    "/structured-queries",
    response_model=QueryRecordResponse,
    responses=_ERROR_RESPONSES,
    summary="Answer a business question via the REST backend",
    description=(
        "Generates a structured REST descriptor (with a keyword fallback), "
        "fetches the rows, formats them and stores the result."
    ),
)
async def create_structured_query(
    request: QueryRequest,
    store: QueryStore = Depends(get_query_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    sql_runner: SqlRunner = Depends(get_sql_runner),
    resolve_llm: LLMResolver = Depends(get_structured_llm),
) -> QueryRecordResponse:
    validate_question(request.question)

    context = PipelineContext(
        llm=resolve_llm(),
        store=store,
        http_client=http_client,
        sql_runner=sql_runner,
    )
    result = await run_structured_query(request.question, context)
    return QueryRecordResponse.model_validate(result["record"])


@router.get(
    "/queries",
    response_model=list[QueryRecordResponse],
    summary="List answered questions, newest first",
)
async def list_queries(
    store: QueryStore = Depends(get_query_store),
) -> list[QueryRecordResponse]:
    records = await store.list_queries()
    return [QueryRecordResponse.model_validate(r) for r in records]


@router.get(
    "/queries/{query_id}",
    response_model=QueryRecordResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get one answered question",
)
async def get_query(
    query_id: str,
    store: QueryStore = Depends(get_query_store),
):
    record = await store.get_query(query_id)
    if record is None:
        return JSONResponse(
            status_code=404,
            content={"message": f"Query {query_id} not found"},
        )
    return QueryRecordResponse.model_validate(record)
