"""Async engine and session factory for the record store.

PostgreSQL (asyncpg) is the deployment database; a ``sqlite+aiosqlite`` URL
is accepted for local runs. SQLite engines get no pool sizing and an
in-memory SQLite URL is pinned to a single connection, otherwise every
pooled connection would see its own empty database.

SQL statement logging is controlled by ``setup_logging(sql_echo=...)``,
never by the engine's ``echo`` flag, so it goes through structlog.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from milestone_escrow.config import get_settings
from milestone_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from milestone_escrow.config import Settings

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(database_url: str, settings: Settings) -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine`` given the URL's backend."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            return {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_pre_ping": True,
    }


def build_engine(database_url: str | None = None) -> AsyncEngine:
    settings = get_settings()
    url = database_url or settings.database_url
    engine = create_async_engine(url, **engine_options(url, settings))
    logger.info(
        "database.engine_created",
        backend=engine.dialect.name,
        driver=engine.dialect.driver,
        pool=type(engine.pool).__name__,
    )
    return engine


def get_engine() -> AsyncEngine:
    """The process-wide engine, built on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Sessions that keep loaded rows usable after commit (SqlRecordStore returns them)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def init_db() -> None:
    """Create the schema in development, or on any SQLite database.

    PostgreSQL outside development is migrated with Alembic instead.
    """
    from milestone_escrow.infrastructure.database.orm_models import Base

    engine = get_engine()
    if not (get_settings().is_development or engine.dialect.name == "sqlite"):
        logger.info("database.schema_managed_by_migrations", backend=engine.dialect.name)
        return

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.tables_created", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
    _engine = None
    _session_factory = None
