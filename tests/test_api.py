# =============================================================================
# API Tests — Queries Endpoints
# =============================================================================
#
# Drives the FastAPI app through TestClient. The lifespan is not entered;
# every collaborator is injected through app.dependency_overrides so the
# tests never touch a database, a webhook or the network.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
from fastapi.testclient import TestClient

from app.api.deps import (
    get_http_client,
    get_query_llm,
    get_query_store,
    get_sql_runner,
    get_structured_llm,
)
from app.config import settings
from app.main import app
from app.services.errors import ExecutionError, UpstreamServiceError
from app.services.llm import LLMResponse
from app.services.storage import MemoryQueryStore

QUESTION = "What were our top selling products last quarter?"


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


class ApiTestBase:
    """Wires fresh fakes into the app before each test and clears them after."""

    def setup_method(self):
        self.store = MemoryQueryStore()
        self.runner = FakeRunner(rows=[{"name": "iPhone 15 Pro", "units_sold": 12}])
        self.handler = lambda request: httpx.Response(500)
        self.llm = _llm()

        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: self.handler(request)),
        )
        app.dependency_overrides[get_query_store] = lambda: self.store
        app.dependency_overrides[get_sql_runner] = lambda: self.runner
        app.dependency_overrides[get_http_client] = lambda: http_client
        app.dependency_overrides[get_query_llm] = lambda: (lambda: self.llm)
        app.dependency_overrides[get_structured_llm] = lambda: (lambda: self.llm)
        self.client = TestClient(app)

    def teardown_method(self):
        app.dependency_overrides.clear()

    def stored(self):
        return asyncio.run(self.store.list_queries())


# ---------------------------------------------------------------------------
# POST /queries
# ---------------------------------------------------------------------------


class TestCreateQuery(ApiTestBase):
    def test_successful_query(self):
        self.llm = _llm(
            '{"isSpecialSource": false}',
            '{"query": "SELECT name, units_sold FROM top_products"}',
            '{"response": "**iPhone 15 Pro** led with 12 units."}',
        )

        response = self.client.post("/queries", json={"question": QUESTION})

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"id", "question", "response", "createdAt"}
        assert body["question"] == QUESTION
        assert "iPhone 15 Pro" in body["response"]
        assert [r.id for r in self.stored()] == [body["id"]]

    def test_question_is_trimmed(self):
        self.llm = _llm(
            '{"isSpecialSource": false}',
            '{"query": "SELECT 1"}',
            '{"response": "Done."}',
        )
        response = self.client.post("/queries", json={"question": f"   {QUESTION}   "})
        assert response.status_code == 200
        assert response.json()["question"] == QUESTION

    def test_long_question_accepted(self):
        self.llm = _llm(
            '{"isSpecialSource": false}',
            '{"query": "SELECT 1"}',
            '{"response": "Done."}',
        )
        question = QUESTION + " " + "Break it down by store and region. " * 100

        response = self.client.post("/queries", json={"question": question})

        assert response.status_code == 200
        assert response.json()["question"] == question.strip()

    def test_short_question_rejected(self):
        response = self.client.post("/queries", json={"question": "short"})

        assert response.status_code == 400
        assert response.json() == {
            "message": "Please enter a more detailed question (at least 10 characters)",
        }
        self.llm.complete.assert_not_called()
        assert self.stored() == []

    def test_empty_question_rejected(self):
        response = self.client.post("/queries", json={"question": "    "})
        assert response.status_code == 400
        assert response.json()["message"] == "Question cannot be empty"
        self.llm.complete.assert_not_called()

    def test_missing_body_rejected(self):
        response = self.client.post("/queries", json={})
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid request data"
        assert response.json()["errors"]
        self.llm.complete.assert_not_called()

    def test_upstream_failure_returns_500(self):
        self.llm = _llm(UpstreamServiceError(detail="Webhook returned 502"))

        response = self.client.post("/queries", json={"question": QUESTION})

        assert response.status_code == 500
        assert response.json() == {
            "message": "Error calling external service",
            "error": "Webhook returned 502",
        }
        assert self.stored() == []

    def test_execution_failure_returns_500(self):
        self.llm = _llm('{"isSpecialSource": false}', '{"query": "SELECT * FROM nope"}')
        self.runner = FakeRunner(error=ExecutionError(detail="Database error: ProgrammingError"))

        response = self.client.post("/queries", json={"question": QUESTION})

        assert response.status_code == 500
        assert response.json()["message"] == "Error executing query"
        assert response.json()["error"] == "Database error: ProgrammingError"
        assert self.stored() == []

    def test_formatting_failure_still_succeeds(self):
        self.llm = _llm(
            '{"isSpecialSource": false}',
            '{"query": "SELECT name, units_sold FROM top_products"}',
            "not json at all",
        )

        response = self.client.post("/queries", json={"question": QUESTION})

        assert response.status_code == 200
        assert response.json()["response"].startswith("Query Results\n\n")
        assert "iPhone 15 Pro | 12" in response.json()["response"]

    def test_special_source_question(self):
        self.handler = lambda request: httpx.Response(
            200, text="Date,Close\n2024-01-02,468.50\n",
        )
        self.llm = _llm(
            '{"isSpecialSource": true}',
            '{"response": "Netflix closed at **$468.50**."}',
        )

        response = self.client.post(
            "/queries", json={"question": "How is Netflix stock doing lately?"},
        )

        assert response.status_code == 200
        assert response.json()["response"] == "Netflix closed at **$468.50**."
        assert self.runner.calls == []


# ---------------------------------------------------------------------------
# POST /structured-queries
# ---------------------------------------------------------------------------


class TestCreateStructuredQuery(ApiTestBase):
    def test_successful_query(self):
        self.handler = lambda request: httpx.Response(
            200, json=[{"id": 1, "name": "Alice Johnson", "total_spent": 310.5}],
        )
        self.llm = _llm(
            '{"table": "customers", "select": "*", "order": "total_spent.desc", "limit": 5}',
            '{"response": "**Alice Johnson** spent the most."}',
        )

        with patch.object(settings, "rest_api_key", "test-key"):
            response = self.client.post(
                "/structured-queries",
                json={"question": "Who are the top customers by spending?"},
            )

        assert response.status_code == 200
        assert response.json()["response"] == "**Alice Johnson** spent the most."
        assert len(self.stored()) == 1

    def test_short_question_rejected(self):
        response = self.client.post("/structured-queries", json={"question": "top"})
        assert response.status_code == 400
        self.llm.complete.assert_not_called()
        assert self.stored() == []

    def test_rest_failure_returns_500(self):
        self.handler = lambda request: httpx.Response(401)
        self.llm = _llm('{"table": "customers", "select": "*"}')

        with patch.object(settings, "rest_api_key", "bad-key"):
            response = self.client.post(
                "/structured-queries",
                json={"question": "List all customers please"},
            )

        assert response.status_code == 500
        assert response.json()["message"] == "Error executing query"
        assert "401" in response.json()["error"]


# ---------------------------------------------------------------------------
# GET /queries, GET /queries/{id}
# ---------------------------------------------------------------------------


class TestListQueries(ApiTestBase):
    def test_empty(self):
        response = self.client.get("/queries")
        assert response.status_code == 200
        assert response.json() == []

    def test_newest_first(self):
        async def seed():
            first = await self.store.create_query("First question here", "one")
            second = await self.store.create_query("Second question here", "two")
            return first, second

        first, second = asyncio.run(seed())

        response = self.client.get("/queries")

        assert response.status_code == 200
        assert [r["id"] for r in response.json()] == [second.id, first.id]
        assert "createdAt" in response.json()[0]

    def test_get_one(self):
        record = asyncio.run(self.store.create_query("Single question here", "answer"))
        response = self.client.get(f"/queries/{record.id}")
        assert response.status_code == 200
        assert response.json()["response"] == "answer"

    def test_get_unknown(self):
        response = self.client.get("/queries/does-not-exist")
        assert response.status_code == 404
        assert "does-not-exist" in response.json()["message"]

    def test_unhandled_error_returns_generic_500(self):
        broken = AsyncMock()
        broken.list_queries.side_effect = RuntimeError("disk on fire")
        app.dependency_overrides[get_query_store] = lambda: broken

        client = TestClient(app, raise_server_exceptions=False)
        response = client.get("/queries")

        assert response.status_code == 500
        assert response.json() == {"message": "Internal server error"}


class TestHealth:
    def test_health(self):
        response = TestClient(app).get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["service"] == settings.app_name
