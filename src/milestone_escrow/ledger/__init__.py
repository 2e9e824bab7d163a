"""Escrow ledger access: gateway protocol, simulated chain and confirmation client.

Usage:
    from milestone_escrow.ledger import get_ledger_client
    client = get_ledger_client()
    receipt = await client.execute(address, LedgerOperation.fund(total), sender=client_address)
"""

from __future__ import annotations

from milestone_escrow.config import get_settings
from milestone_escrow.ledger.client import LedgerClient
from milestone_escrow.ledger.gateway import (
    LedgerDeployment,
    LedgerEvent,
    LedgerGateway,
    LedgerOperation,
    LedgerReceipt,
    SlotView,
)
from milestone_escrow.ledger.simulated import SimulatedLedgerGateway
from milestone_escrow.logging_config import get_logger

logger = get_logger(__name__)

_gateway: LedgerGateway | None = None


def get_ledger_gateway() -> LedgerGateway:
    """Return the process-wide gateway for the configured ledger backend."""
    global _gateway
    if _gateway is None:
        settings = get_settings()
        if settings.ledger_backend == "simulated":
            _gateway = SimulatedLedgerGateway()
        else:
            raise ValueError(f"Unsupported ledger backend: {settings.ledger_backend}")
        logger.info("ledger.gateway_created", backend=settings.ledger_backend)
    return _gateway


def get_ledger_client() -> LedgerClient:
    return LedgerClient(get_ledger_gateway())


__all__ = [
    "LedgerClient",
    "LedgerDeployment",
    "LedgerEvent",
    "LedgerGateway",
    "LedgerOperation",
    "LedgerReceipt",
    "SimulatedLedgerGateway",
    "SlotView",
    "get_ledger_client",
    "get_ledger_gateway",
]
