# =============================================================================
# FastAPI Application — Entry Point
# =============================================================================
#
# Run locally:
#   uvicorn app.main:app --reload
#
# The lifespan builds the per-process collaborators once:
#   - query store (memory or database, from STORAGE_BACKEND)
#   - shared httpx.AsyncClient with a bounded timeout
#   (reasoning providers are cached on first use and closed here too)
#   - SQL runner over the lazily created async engine
# and tears them down on shutdown.
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.queries import router as queries_router
from app.config import settings
from app.db.engine import dispose_engine, get_async_engine, get_session_factory
from app.db.models import Base
from app.models.responses import HealthResponse
from app.services.errors import PipelineError
from app.services.llm import close_providers
from app.services.sql_runner import SqlAlchemyRunner
from app.services.storage import create_query_store

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.storage_backend == "database":
        async with get_async_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    app.state.query_store = create_query_store(settings.storage_backend)
    app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    app.state.sql_runner = SqlAlchemyRunner(get_session_factory())

    logger.info(
        "%s %s started (storage=%s, llm=%s)",
        settings.app_name, settings.app_version,
        settings.storage_backend, settings.llm_provider,
    )

    yield

    await app.state.http_client.aclose()
    await close_providers()
    await dispose_engine()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)
app.include_router(queries_router)


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------
# All error bodies share the {message, error?} shape the web client reads.
# ---------------------------------------------------------------------------


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    content = {"message": exc.message}
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed at stage %s: %s",
            request.method, request.url.path, exc.stage, exc,
        )
        if exc.detail:
            content["error"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "message": "Invalid request data",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
