"""Escrow ledger: fund custody for one project.

A deterministic, transaction-gated component. It is mutated only through
``fund``, ``verify``, ``release`` and ``cancel``; each call either applies
completely or raises a LedgerError and changes nothing. Amounts are integers
in the asset's base units.

The ledger never interprets evidence hashes. It only guarantees ordering:
a slot is verified at most once, paid at most once, and only after it was
verified. Funds leave the ledger only to the freelancer (release) or back to
the client (cancel).

Usage:
    ledger = EscrowLedger(client="0xc...", freelancer="0xf...", asset=NATIVE_ASSET,
                          slot_amounts=[100])
    ledger.fund(sender="0xc...", amount=100)
    ledger.verify(sender="0xc...", slot_index=0, evidence_hash="0x...")
    ledger.release(sender="0xc...", slot_index=0)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from milestone_escrow.domain.enums import LedgerState
from milestone_escrow.domain.exceptions import (
    AlreadyFundedError,
    AlreadyPaidError,
    AlreadyVerifiedError,
    AmountMismatchError,
    InvalidSlotError,
    NotActiveError,
    NotClientError,
    NotVerifiedError,
)
from milestone_escrow.domain.state_machine import LedgerLifecycle

NATIVE_ASSET = "0x0000000000000000000000000000000000000000"


def to_base_units(amount: Decimal, decimals: int = 18) -> int:
    """Convert a decimal asset amount into integer base units."""
    scaled = Decimal(amount) * (Decimal(10) ** decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} has more than {decimals} decimal places")
    return int(scaled)


def from_base_units(value: int, decimals: int = 18) -> Decimal:
    return Decimal(value) / (Decimal(10) ** decimals)


@dataclass
class MilestoneSlot:
    """One milestone's entry inside the ledger, addressed by order index."""

    amount: int
    verified: bool = False
    paid: bool = False
    evidence_hash: str | None = None

    def to_dict(self) -> dict:
        return {
            "amount": self.amount,
            "verified": self.verified,
            "paid": self.paid,
            "evidence_hash": self.evidence_hash,
        }


@dataclass(frozen=True)
class LedgerTransfer:
    """A movement of funds into or out of the ledger."""

    kind: str  # "deposit", "payment" or "refund"
    amount: int
    counterparty: str
    slot_index: int | None = None


@dataclass
class EscrowLedger:
    client: str
    freelancer: str
    asset: str
    slot_amounts: list[int]
    slots: list[MilestoneSlot] = field(init=False)
    transfers: list[LedgerTransfer] = field(init=False, default_factory=list)
    balance: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if not self.slot_amounts:
            raise ValueError("An escrow ledger needs at least one milestone slot")
        if any(amount <= 0 for amount in self.slot_amounts):
            raise ValueError("Milestone slot amounts must be positive")
        self.slots = [MilestoneSlot(amount=amount) for amount in self.slot_amounts]
        self._lifecycle = LedgerLifecycle()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def total_amount(self) -> int:
        return sum(self.slot_amounts)

    @property
    def completed(self) -> bool:
        return all(slot.paid for slot in self.slots)

    @property
    def state(self) -> LedgerState:
        lifecycle_state = LedgerState(self._lifecycle.status)
        if lifecycle_state is LedgerState.ACTIVE and self.completed:
            return LedgerState.COMPLETED
        return lifecycle_state

    @property
    def total_paid(self) -> int:
        return sum(slot.amount for slot in self.slots if slot.paid)

    def get_slot(self, slot_index: int) -> MilestoneSlot:
        self._check_slot(slot_index)
        return self.slots[slot_index]

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def fund(self, sender: str, amount: int) -> LedgerTransfer:
        self._check_client(sender)
        if self._lifecycle.status != LedgerState.UNFUNDED:
            raise AlreadyFundedError()
        if amount != self.total_amount:
            raise AmountMismatchError(
                f"Deposit of {amount} does not match committed total {self.total_amount}"
            )
        self._lifecycle.fund()
        self.balance += amount
        return self._record(LedgerTransfer("deposit", amount, self.client))

    def verify(self, sender: str, slot_index: int, evidence_hash: str) -> MilestoneSlot:
        self._check_client(sender)
        self._check_active()
        slot = self.get_slot(slot_index)
        if slot.paid:
            raise AlreadyPaidError()
        if slot.verified:
            raise AlreadyVerifiedError()
        slot.verified = True
        slot.evidence_hash = evidence_hash
        return slot

    def release(self, sender: str, slot_index: int) -> LedgerTransfer:
        self._check_client(sender)
        self._check_active()
        slot = self.get_slot(slot_index)
        if slot.paid:
            raise AlreadyPaidError()
        if not slot.verified:
            raise NotVerifiedError()
        slot.paid = True
        self.balance -= slot.amount
        return self._record(
            LedgerTransfer("payment", slot.amount, self.freelancer, slot_index=slot_index)
        )

    def cancel(self, sender: str) -> LedgerTransfer:
        self._check_client(sender)
        self._check_active()
        if self.completed:
            raise NotActiveError("Escrow is completed, nothing left to refund")
        refund = self.total_amount - self.total_paid
        self._lifecycle.cancel()
        self.balance -= refund
        return self._record(LedgerTransfer("refund", refund, self.client))

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _check_client(self, sender: str) -> None:
        if sender.lower() != self.client.lower():
            raise NotClientError()

    def _check_active(self) -> None:
        # Completed ledgers stay active so repeated calls report AlreadyPaid.
        if self._lifecycle.status != LedgerState.ACTIVE:
            raise NotActiveError(f"Escrow is {self._lifecycle.status}")

    def _check_slot(self, slot_index: int) -> None:
        if not 0 <= slot_index < len(self.slots):
            raise InvalidSlotError(
                f"Slot {slot_index} out of range (ledger has {len(self.slots)} slots)"
            )

    def _record(self, transfer: LedgerTransfer) -> LedgerTransfer:
        self.transfers.append(transfer)
        return transfer
