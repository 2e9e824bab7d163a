"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the record store,
ledger access, services, Redis client and configuration. Tests override
``get_record_store``, ``get_gateway``, ``get_oracle_resolver`` and
``get_redis_client`` through ``app.dependency_overrides``.
"""

from __future__ import annotations

from collections.abc import Callable

import redis.asyncio as aioredis
from fastapi import Depends

from milestone_escrow.config import Settings, get_settings
from milestone_escrow.domain.store_protocol import RecordStore
from milestone_escrow.infrastructure.database.engine import get_session_factory
from milestone_escrow.infrastructure.database.store import SqlRecordStore
from milestone_escrow.infrastructure.redis_client import get_redis
from milestone_escrow.ledger import LedgerClient, LedgerGateway, get_ledger_gateway
from milestone_escrow.oracles import OracleFactory
from milestone_escrow.services.project_service import ProjectService
from milestone_escrow.services.verification_coordinator import VerificationCoordinator


def get_record_store() -> RecordStore:
    """Provide the SQL-backed record store (one short transaction per call)."""
    return SqlRecordStore(get_session_factory())


def get_gateway() -> LedgerGateway:
    """Provide the ledger gateway for the configured backend."""
    return get_ledger_gateway()


def get_oracle_resolver() -> Callable:
    """Provide the callable that builds an oracle for a verification method."""
    return OracleFactory.create


def get_ledger_client(gateway: LedgerGateway = Depends(get_gateway)) -> LedgerClient:
    return LedgerClient(gateway)


def get_project_service(
    store: RecordStore = Depends(get_record_store),
    gateway: LedgerGateway = Depends(get_gateway),
) -> ProjectService:
    return ProjectService(store, gateway)


def get_coordinator(
    store: RecordStore = Depends(get_record_store),
    ledger: LedgerClient = Depends(get_ledger_client),
    oracle_resolver: Callable = Depends(get_oracle_resolver),
) -> VerificationCoordinator:
    return VerificationCoordinator(store, ledger, oracle_resolver=oracle_resolver)


def get_redis_client() -> aioredis.Redis | None:
    """Provide the Redis client, or None when Redis was not reachable at startup."""
    try:
        return get_redis()
    except RuntimeError:
        return None


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
