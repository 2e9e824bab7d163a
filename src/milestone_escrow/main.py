"""FastAPI application entry point for the milestone escrow platform.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode),
       start the activity poller when enabled.
    2. Running: Serve REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: Stop the poller, close database and Redis connections.

The MCP server is mounted at /mcp so agents can discover tools
alongside the REST API at /api/v1/*.

Run with:
    uv run uvicorn milestone_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from milestone_escrow.config import get_settings
from milestone_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


def _start_poller(interval_seconds: float) -> tuple[asyncio.Task, asyncio.Event]:
    from milestone_escrow.infrastructure.database.engine import get_session_factory
    from milestone_escrow.infrastructure.database.store import SqlRecordStore
    from milestone_escrow.ledger import get_ledger_client
    from milestone_escrow.services.poller import VerificationPoller
    from milestone_escrow.services.verification_coordinator import VerificationCoordinator

    store = SqlRecordStore(get_session_factory())
    poller = VerificationPoller(VerificationCoordinator(store, get_ledger_client()), store)
    stop_event = asyncio.Event()
    task = asyncio.create_task(poller.run(interval_seconds, stop_event))
    return task, stop_event


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
        sql_echo=settings.db_echo_sql,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        ledger_backend=settings.ledger_backend,
    )

    # 2. Initialize database
    from milestone_escrow.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis
    from milestone_escrow.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Activity poller
    poller = None
    if settings.poller_enabled:
        poller = _start_poller(settings.poller_interval_seconds)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    async with AsyncExitStack() as stack:
        if settings.mcp_transport == "streamable-http":
            from milestone_escrow.mcp_server.tools import mcp

            await stack.enter_async_context(mcp.session_manager.run())
        yield

    # Shutdown
    logger.info("app.shutting_down")
    if poller is not None:
        task, stop_event = poller
        stop_event.set()
        await task
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Milestone Escrow",
        description=(
            "Milestone-based escrow: funds held in a ledger, released per "
            "milestone once verified by repository activity, design versions "
            "or a reviewer."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from milestone_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from milestone_escrow.api.routes.health import router as health_router
    from milestone_escrow.api.routes.projects import router as projects_router

    app.include_router(health_router)
    app.include_router(projects_router)

    # --- MCP Server (mounted as sub-application) ---
    from milestone_escrow.mcp_server.tools import mcp

    if settings.mcp_transport == "streamable-http":
        mcp_app = mcp.streamable_http_app()
    else:
        mcp_app = mcp.sse_app()
    app.mount("/mcp", mcp_app)

    return app


# The app instance used by Uvicorn
app = create_app()
