"""Health check: database, Redis and the ledger gateway.

The database and the ledger are required for every escrow operation, Redis
only backs idempotency keys. A Redis outage therefore reports ``degraded``
while a database or ledger outage reports ``unavailable`` with status 503.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text

from milestone_escrow.api.deps import get_gateway
from milestone_escrow.config import get_settings
from milestone_escrow.infrastructure.database.engine import get_engine
from milestone_escrow.infrastructure.redis_client import get_redis
from milestone_escrow.ledger import LedgerGateway
from milestone_escrow.logging_config import get_logger
from milestone_escrow.schemas.project import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

HEALTHY = "healthy"
_UNKNOWN_TX = "0x" + "00" * 32


async def _check_database() -> str:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health.database_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


async def _check_redis() -> str:
    try:
        await get_redis().ping()
    except Exception as exc:
        logger.warning("health.redis_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


async def _check_ledger(gateway: LedgerGateway) -> str:
    # Any read works; a receipt lookup for an unknown hash touches no ledger.
    try:
        await gateway.get_receipt(_UNKNOWN_TX)
    except Exception as exc:
        logger.error("health.ledger_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    responses={503: {"model": HealthResponse}},
)
async def health_check(
    response: Response,
    gateway: LedgerGateway = Depends(get_gateway),
) -> HealthResponse:
    database = await _check_database()
    redis = await _check_redis()
    ledger = await _check_ledger(gateway)

    if database != HEALTHY or ledger != HEALTHY:
        status = "unavailable"
        response.status_code = 503
    elif redis != HEALTHY:
        status = "degraded"
    else:
        status = "ok"

    return HealthResponse(
        status=status,
        version="0.1.0",
        database=database,
        redis=redis,
        ledger=ledger,
        ledger_backend=get_settings().ledger_backend,
    )
