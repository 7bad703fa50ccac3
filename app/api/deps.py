# =============================================================================
# API Dependencies — Pipeline Collaborators
# =============================================================================
#
# The store, HTTP client and SQL runner are created once in the app
# lifespan and kept on app.state. Reasoning providers are resolved per
# request through a resolver callable, so a missing API key only surfaces
# once a valid question actually needs the provider.
#
# Tests swap any of these via app.dependency_overrides.
# =============================================================================

from __future__ import annotations

from collections.abc import Callable

import httpx
from fastapi import Request

from app.services.llm import LLMProvider, get_llm_provider, get_structured_llm_provider
from app.services.sql_runner import SqlRunner
from app.services.storage import QueryStore

LLMResolver = Callable[[], LLMProvider]


def get_query_store(request: Request) -> QueryStore:
    return request.app.state.query_store


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_sql_runner(request: Request) -> SqlRunner:
    return request.app.state.sql_runner


def get_query_llm() -> LLMResolver:
    """Resolver for the /queries pipeline provider."""
    return get_llm_provider


def get_structured_llm() -> LLMResolver:
    """Resolver for the /structured-queries pipeline provider."""
    return get_structured_llm_provider
