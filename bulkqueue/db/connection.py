"""
Database connection management.

One async engine and session factory per process. PostgreSQL (asyncpg)
is the production target; SQLite (aiosqlite) serves single-node setups
and the test suite.
"""

import logging
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from bulkqueue.config import Settings, get_settings
from bulkqueue.db.models import Base

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(database_url: str, settings: Settings) -> dict[str, Any]:
    """Keyword arguments for create_async_engine for the given URL's dialect."""
    options: dict[str, Any] = {"echo": settings.log_level.upper() == "DEBUG"}
    if make_url(database_url).get_backend_name() == "sqlite":
        # SQLite serializes writers; wait for the lock instead of erroring
        options["connect_args"] = {"timeout": 30}
    else:
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
    return options


def create_engine_for(database_url: str, settings: Settings | None = None) -> AsyncEngine:
    settings = settings or get_settings()
    return create_async_engine(database_url, **engine_options(database_url, settings))


def get_engine() -> AsyncEngine:
    """Get or create the process-wide engine from DATABASE_URL."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for(settings.database_url, settings)
    return _engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def create_schema(engine: AsyncEngine) -> None:
    """Create the job_records table and its indexes if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """
    Prepare the engine on process startup.

    The schema is created only when DATABASE_CREATE_SCHEMA is set.
    """
    settings = get_settings()
    engine = get_engine()
    get_session_factory()
    if settings.database_create_schema:
        await create_schema(engine)
    logger.info(
        "Database connection initialized",
        extra={"dialect": engine.dialect.name},
    )


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database connection closed")
