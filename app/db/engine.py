# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine shared by two consumers:
#   1. DatabaseQueryStore — persists question/response records
#   2. SqlRunner          — executes generated SQL against the same database
#
# DESIGN DECISION: Lazy initialization. Importing this module creates no
# engine, and with STORAGE_BACKEND=memory the service boots without a
# reachable database: no connection is opened until generated SQL runs.
#
# The store and the SQL runner open their own sessions from
# get_session_factory() and manage their own commits.
# =============================================================================

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings

_async_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Lazily create and cache the async engine."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
    return _async_engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Lazily create and cache the session factory.

    expire_on_commit=False keeps loaded attributes readable after commit,
    which async code needs once the session is gone.
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


async def dispose_engine() -> None:
    """Close pooled connections. Called from the app lifespan on shutdown."""
    global _async_engine, _async_session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_factory = None

