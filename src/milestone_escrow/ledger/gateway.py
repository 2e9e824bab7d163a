"""Ledger gateway protocol: the transaction interface to deployed escrow ledgers.

Writes are two suspension points: ``submit`` returns a transaction hash as soon
as the operation is accepted, and ``get_receipt`` returns the outcome once it
is confirmed (None until then). A receipt either reports success with the
ledger events it produced, or a revert carrying the ledger error name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from milestone_escrow.domain.enums import LedgerOperationType, LedgerState


@dataclass(frozen=True)
class LedgerOperation:
    """One write operation against a ledger."""

    kind: LedgerOperationType
    slot_index: int | None = None
    evidence_hash: str | None = None
    value: int = 0

    @classmethod
    def fund(cls, value: int) -> LedgerOperation:
        return cls(LedgerOperationType.FUND, value=value)

    @classmethod
    def verify(cls, slot_index: int, evidence_hash: str) -> LedgerOperation:
        return cls(LedgerOperationType.VERIFY, slot_index=slot_index, evidence_hash=evidence_hash)

    @classmethod
    def release(cls, slot_index: int) -> LedgerOperation:
        return cls(LedgerOperationType.RELEASE, slot_index=slot_index)

    @classmethod
    def cancel(cls) -> LedgerOperation:
        return cls(LedgerOperationType.CANCEL)


@dataclass(frozen=True)
class LedgerEvent:
    """An event emitted by a confirmed ledger transaction.

    ``name`` is one of Funded, MilestoneVerified, MilestonePaid, Cancelled.
    """

    name: str
    tx_hash: str
    block_number: int
    slot_index: int | None = None
    amount: int = 0
    counterparty: str | None = None
    evidence_hash: str | None = None


@dataclass(frozen=True)
class LedgerReceipt:
    tx_hash: str
    success: bool
    block_number: int
    revert_reason: str | None = None
    events: list[LedgerEvent] = field(default_factory=list)


@dataclass(frozen=True)
class SlotView:
    index: int
    amount: int
    verified: bool
    paid: bool
    evidence_hash: str | None = None


@dataclass(frozen=True)
class LedgerDeployment:
    address: str
    tx_hash: str
    block_number: int


@runtime_checkable
class LedgerGateway(Protocol):
    """Async access to escrow ledgers, one address per project."""

    async def deploy(
        self,
        client: str,
        freelancer: str,
        asset: str,
        slot_amounts: list[int],
    ) -> LedgerDeployment: ...

    async def submit(self, address: str, operation: LedgerOperation, sender: str) -> str:
        """Submit a signed write and return its transaction hash."""
        ...

    async def get_receipt(self, tx_hash: str) -> LedgerReceipt | None: ...

    async def get_slot(self, address: str, slot_index: int) -> SlotView: ...

    async def get_slot_count(self, address: str) -> int: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_state(self, address: str) -> LedgerState:
        """Stored lifecycle state. Reads raise LedgerNotFoundError for an unknown address."""
        ...

    async def get_events(self, address: str) -> list[LedgerEvent]: ...
