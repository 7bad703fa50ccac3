# =============================================================================
# Integration Tests — Pipeline Graphs
# =============================================================================
#
# Runs both compiled LangGraph graphs end to end with a scripted reasoning
# service, the in-memory store, a fake SQL runner and MockTransport HTTP.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx

from app.agents.artifacts import DirectAnswer, RestDescriptor, SheetArtifact, SqlArtifact
from app.agents.formatter import DATABASE_HEADER, render_rows, special_source_header
from app.agents.orchestrator import (
    PipelineContext,
    PipelineStage,
    run_query,
    run_structured_query,
    validate_question,
)
from app.config import settings
from app.services.errors import ExecutionError, QuestionValidationError, UpstreamServiceError
from app.services.llm import LLMResponse
from app.services.storage import MemoryQueryStore

QUESTION = "What were our top selling products last quarter?"

PRODUCT_ROWS = [
    {"name": "iPhone 15 Pro", "units_sold": 12},
    {"name": "Atomic Habits", "units_sold": 9},
]


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _llm(*contents):
    mock_llm = AsyncMock()
    mock_llm.complete.side_effect = [
        c if isinstance(c, Exception) else LLMResponse(content=c, model="test-model")
        for c in contents
    ]
    return mock_llm


class FakeRunner:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    async def run(self, sql):
        self.calls.append(sql)
        if self.error:
            raise self.error
        return self.rows


def _context(llm, runner=None, handler=None, store=None):
    handler = handler or (lambda request: httpx.Response(500))
    return PipelineContext(
        llm=llm,
        store=store or MemoryQueryStore(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sql_runner=runner or FakeRunner(),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidateQuestion:
    def test_trims(self):
        assert validate_question("   What is our revenue?  ") == "What is our revenue?"

    def test_empty(self):
        try:
            validate_question("   ")
            assert False, "Should have raised QuestionValidationError"
        except QuestionValidationError as e:
            assert e.message == "Question cannot be empty"

    def test_too_short_after_trim(self):
        try:
            validate_question("   short    ")
            assert False, "Should have raised QuestionValidationError"
        except QuestionValidationError as e:
            assert "at least 10 characters" in e.message

    def test_exactly_minimum_length(self):
        assert validate_question("0123456789") == "0123456789"

    def test_short_question_makes_no_calls(self):
        llm = _llm()
        ctx = _context(llm)
        try:
            _run(run_query("short", ctx))
            assert False, "Should have raised QuestionValidationError"
        except QuestionValidationError:
            pass
        llm.complete.assert_not_called()
        assert _run(ctx.store.list_queries()) == []


# ---------------------------------------------------------------------------
# /queries graph
# ---------------------------------------------------------------------------


class TestQueryGraph:
    def test_sql_path_end_to_end(self):
        llm = _llm(
            '{"isSpecialSource": false}',
            json.dumps({"response": json.dumps({
                "query": "SELECT p.name, SUM(oi.quantity) AS units_sold FROM ...",
            })}),
            json.dumps({"response": (
                "Top sellers last quarter:\n\n1. **iPhone 15 Pro** - 12 units\n"
                "2. **Atomic Habits** - 9 units"
            )}),
        )
        runner = FakeRunner(rows=PRODUCT_ROWS)
        ctx = _context(llm, runner=runner)

        result = _run(run_query(QUESTION, ctx))

        assert result["stage"] == PipelineStage.RETURNED
        assert result["classification"].is_special_source is False
        assert isinstance(result["artifact"], SqlArtifact)
        assert runner.calls == ["SELECT p.name, SUM(oi.quantity) AS units_sold FROM ..."]

        record = result["record"]
        assert record.question == QUESTION
        assert "iPhone 15 Pro" in record.response
        assert "Atomic Habits" in record.response
        assert _run(ctx.store.list_queries()) == [record]
        assert llm.complete.call_count == 3

    def test_malformed_classification_takes_general_path(self):
        llm = _llm(
            "Accepted",
            '{"query": "SELECT 1"}',
            '{"response": "One row."}',
        )
        ctx = _context(llm, runner=FakeRunner(rows=[{"one": 1}]))

        result = _run(run_query(QUESTION, ctx))

        assert result["classification"].degraded is True
        assert result["record"].response == "One row."

    def test_formatting_failure_persists_fallback_rendering(self):
        llm = _llm(
            '{"isSpecialSource": false}',
            '{"query": "SELECT name, units_sold FROM top_products"}',
            UpstreamServiceError(detail="Webhook returned 500"),
        )
        ctx = _context(llm, runner=FakeRunner(rows=PRODUCT_ROWS))

        result = _run(run_query(QUESTION, ctx))

        assert result["report"].degraded is True
        assert result["record"].response == render_rows(PRODUCT_ROWS, DATABASE_HEADER)

    def test_empty_result_still_formatted(self):
        llm = _llm(
            '{"isSpecialSource": false}',
            '{"query": "SELECT * FROM orders WHERE 1 = 0"}',
            '{"response": "No orders matched."}',
        )
        ctx = _context(llm, runner=FakeRunner(rows=[]))
        result = _run(run_query(QUESTION, ctx))
        assert result["record"].response == "No orders matched."

    def test_direct_answer_skips_execution_and_formatting(self):
        llm = _llm(
            '{"isSpecialSource": false}',
            "I can only answer questions about the store database.",
        )
        runner = FakeRunner()
        ctx = _context(llm, runner=runner)

        result = _run(run_query("What is the weather like today?", ctx))

        assert isinstance(result["artifact"], DirectAnswer)
        assert "report" not in result
        assert runner.calls == []
        assert result["record"].response == (
            "I can only answer questions about the store database."
        )
        assert llm.complete.call_count == 2

    def test_cannot_answer_marker_is_persisted(self):
        llm = _llm(
            '{"isSpecialSource": false}',
            '{"error": "Cannot generate query for this request"}',
        )
        ctx = _context(llm)
        result = _run(run_query("What is the weather like today?", ctx))
        assert result["record"].response == "Cannot generate query for this request"

    def test_special_source_path(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, text="Date,Close\n2024-01-02,468.50\n")

        llm = _llm(
            '{"isSpecialSource": true}',
            '{"response": "Netflix closed at **$468.50** on 2024-01-02."}',
        )
        runner = FakeRunner()
        ctx = _context(llm, runner=runner, handler=handler)

        with patch.object(settings, "special_source_sheet_id", "nflx-sheet"):
            result = _run(run_query("What is the Netflix stock price?", ctx))

        assert result["artifact"] == SheetArtifact(sheet_id="nflx-sheet")
        assert "nflx-sheet" in seen["url"]
        assert result["rows"] == [["Date", "Close"], ["2024-01-02", "468.50"]]
        assert "$468.50" in result["record"].response
        assert runner.calls == []
        # classify + format only; no generation call on this path
        assert llm.complete.call_count == 2

    def test_special_source_formatting_fallback(self):
        def handler(request):
            return httpx.Response(200, text="Date,Close\n2024-01-02,468.50\n")

        llm = _llm('{"isSpecialSource": true}', "not json")
        ctx = _context(llm, handler=handler)

        with patch.object(settings, "special_source_name", "Netflix stock"):
            result = _run(run_query("What is the Netflix stock price?", ctx))

        assert result["record"].response == (
            special_source_header("Netflix stock")
            + "Date | Close\n2024-01-02 | 468.50"
        )

    def test_classification_transport_failure_aborts(self):
        llm = _llm(UpstreamServiceError(detail="Webhook returned 502"))
        ctx = _context(llm)

        try:
            _run(run_query(QUESTION, ctx))
            assert False, "Should have raised UpstreamServiceError"
        except UpstreamServiceError as e:
            assert e.stage == "classifying"
            assert e.final_stage == "failed"
        assert _run(ctx.store.list_queries()) == []

    def test_generation_transport_failure_aborts(self):
        llm = _llm(
            '{"isSpecialSource": false}',
            UpstreamServiceError(detail="Webhook returned 500"),
        )
        ctx = _context(llm)

        try:
            _run(run_query(QUESTION, ctx))
            assert False, "Should have raised UpstreamServiceError"
        except UpstreamServiceError as e:
            assert e.stage == "generating"
        assert _run(ctx.store.list_queries()) == []

    def test_execution_failure_aborts(self):
        llm = _llm('{"isSpecialSource": false}', '{"query": "SELECT * FROM nope"}')
        runner = FakeRunner(error=ExecutionError(detail="Database error: ProgrammingError"))
        ctx = _context(llm, runner=runner)

        try:
            _run(run_query(QUESTION, ctx))
            assert False, "Should have raised ExecutionError"
        except ExecutionError as e:
            assert e.stage == "executing"
            assert e.final_stage == "failed"
        assert _run(ctx.store.list_queries()) == []
        # The formatter is never reached
        assert llm.complete.call_count == 2

    def test_special_source_fetch_failure_aborts(self):
        llm = _llm('{"isSpecialSource": true}')
        ctx = _context(llm, handler=lambda request: httpx.Response(403))

        try:
            _run(run_query("What is the Netflix stock price?", ctx))
            assert False, "Should have raised ExecutionError"
        except ExecutionError as e:
            assert "403" in e.detail
        assert _run(ctx.store.list_queries()) == []


# ---------------------------------------------------------------------------
# /structured-queries graph
# ---------------------------------------------------------------------------


class TestStructuredGraph:
    def test_descriptor_path_end_to_end(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[
                {"id": 7, "final_amount": 310.5, "customers": {"name": "Alice Johnson"}},
            ])

        llm = _llm(
            json.dumps({
                "table": "transactions", "select": "*,customers(*)",
                "order": "final_amount.desc", "limit": 100,
            }),
            '{"response": "**Alice Johnson** is the top customer ($310.50)."}',
        )
        ctx = _context(llm, handler=handler)

        with patch.object(settings, "rest_api_key", "test-key"):
            result = _run(run_structured_query(
                "Who are the top customers by spending?", ctx,
            ))

        assert result["artifact"] == RestDescriptor(
            table="transactions", select="*,customers(*)",
            order="final_amount.desc", limit=100,
        )
        assert seen["path"].endswith("/transactions")
        assert seen["params"]["order"] == "final_amount.desc"
        assert "Alice Johnson" in result["record"].response
        # No classification call on the structured path
        assert llm.complete.call_count == 2

    def test_generation_failure_uses_heuristic(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[{"id": 1, "product_name": "Oat Milk"}])

        llm = _llm(
            UpstreamServiceError(detail="LLM API error: APIConnectionError"),
            '{"response": "We stock **Oat Milk**."}',
        )
        ctx = _context(llm, handler=handler)

        with patch.object(settings, "rest_api_key", "test-key"):
            result = _run(run_structured_query("What products do we have?", ctx))

        assert result["generation"].degraded is True
        assert seen["path"].endswith("/products")
        assert seen["params"]["limit"] == "50"
        assert result["record"].response == "We stock **Oat Milk**."

    def test_rest_failure_aborts(self):
        llm = _llm('{"table": "customers", "select": "*"}')
        ctx = _context(llm, handler=lambda request: httpx.Response(401))

        with patch.object(settings, "rest_api_key", "bad-key"):
            try:
                _run(run_structured_query("List all customers please", ctx))
                assert False, "Should have raised ExecutionError"
            except ExecutionError as e:
                assert e.stage == "executing"
        assert _run(ctx.store.list_queries()) == []

    def test_non_record_rest_rows_abort_before_formatting(self):
        llm = _llm(
            UpstreamServiceError(detail="LLM API error: APIConnectionError"),
            UpstreamServiceError(detail="LLM API error: APIConnectionError"),
        )
        ctx = _context(llm, handler=lambda request: httpx.Response(200, json=[1, None]))

        with patch.object(settings, "rest_api_key", "test-key"):
            try:
                _run(run_structured_query("What products do we have?", ctx))
                assert False, "Should have raised ExecutionError"
            except ExecutionError as e:
                assert e.stage == "executing"
                assert e.final_stage == PipelineStage.FAILED.value
        # Only the descriptor call was made; the formatter never ran
        assert llm.complete.call_count == 1
        assert _run(ctx.store.list_queries()) == []
