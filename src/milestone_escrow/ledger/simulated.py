"""In-process simulated chain hosting escrow ledgers.

Each submitted operation is applied atomically to its EscrowLedger, mined into
its own block and given a receipt. Operations against one chain are applied
strictly one at a time, which is the only serialization the coordinator
relies on.

Two knobs let callers exercise confirmation handling without a real network:
    confirmation_delay: receipt polls that return None before a receipt shows.
    lose_confirmations: effects are applied but receipts never become visible.
"""

from __future__ import annotations

import asyncio
import uuid

from milestone_escrow.domain.enums import LedgerOperationType, LedgerState
from milestone_escrow.domain.exceptions import LedgerError, LedgerNotFoundError
from milestone_escrow.domain.ledger import EscrowLedger
from milestone_escrow.ledger.gateway import (
    LedgerDeployment,
    LedgerEvent,
    LedgerOperation,
    LedgerReceipt,
    SlotView,
)
from milestone_escrow.logging_config import get_logger

logger = get_logger(__name__)


def _new_tx_hash() -> str:
    return "0x" + uuid.uuid4().hex + uuid.uuid4().hex


def _new_address() -> str:
    return "0x" + (uuid.uuid4().hex + uuid.uuid4().hex)[:40]


class SimulatedLedgerGateway:
    """LedgerGateway backed by in-memory EscrowLedger instances."""

    def __init__(self, confirmation_delay: int = 0, lose_confirmations: bool = False) -> None:
        self.confirmation_delay = confirmation_delay
        self.lose_confirmations = lose_confirmations
        self._ledgers: dict[str, EscrowLedger] = {}
        self._events: dict[str, list[LedgerEvent]] = {}
        self._receipts: dict[str, LedgerReceipt] = {}
        self._polls_until_visible: dict[str, int] = {}
        self._hidden: set[str] = set()
        self._block_number = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def deploy(
        self,
        client: str,
        freelancer: str,
        asset: str,
        slot_amounts: list[int],
    ) -> LedgerDeployment:
        async with self._lock:
            ledger = EscrowLedger(
                client=client,
                freelancer=freelancer,
                asset=asset,
                slot_amounts=list(slot_amounts),
            )
            address = _new_address()
            self._ledgers[address] = ledger
            self._events[address] = []
            self._block_number += 1
            deployment = LedgerDeployment(
                address=address,
                tx_hash=_new_tx_hash(),
                block_number=self._block_number,
            )

        logger.info(
            "ledger.simulated.deployed",
            address=address,
            slots=len(slot_amounts),
            total=sum(slot_amounts),
        )
        return deployment

    async def submit(self, address: str, operation: LedgerOperation, sender: str) -> str:
        async with self._lock:
            ledger = self._get_ledger(address)
            tx_hash = _new_tx_hash()
            self._block_number += 1
            block_number = self._block_number
            try:
                events = self._apply(ledger, operation, sender, tx_hash, block_number)
            except LedgerError as exc:
                receipt = LedgerReceipt(
                    tx_hash=tx_hash,
                    success=False,
                    block_number=block_number,
                    revert_reason=exc.reason,
                )
            else:
                self._events[address].extend(events)
                receipt = LedgerReceipt(
                    tx_hash=tx_hash,
                    success=True,
                    block_number=block_number,
                    events=events,
                )
            self._receipts[tx_hash] = receipt
            self._polls_until_visible[tx_hash] = self.confirmation_delay
            if self.lose_confirmations:
                self._hidden.add(tx_hash)

        logger.debug(
            "ledger.simulated.mined",
            address=address,
            operation=operation.kind.value,
            tx_hash=tx_hash,
            success=receipt.success,
            revert_reason=receipt.revert_reason,
        )
        # Hand control back as a network round trip would.
        await asyncio.sleep(0)
        return tx_hash

    def reveal_receipts(self) -> None:
        """Make receipts withheld by ``lose_confirmations`` visible again."""
        self._hidden.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_receipt(self, tx_hash: str) -> LedgerReceipt | None:
        await asyncio.sleep(0)
        if tx_hash in self._hidden:
            return None
        remaining = self._polls_until_visible.get(tx_hash, 0)
        if remaining > 0:
            self._polls_until_visible[tx_hash] = remaining - 1
            return None
        return self._receipts.get(tx_hash)

    async def get_slot(self, address: str, slot_index: int) -> SlotView:
        slot = self._get_ledger(address).get_slot(slot_index)
        return SlotView(
            index=slot_index,
            amount=slot.amount,
            verified=slot.verified,
            paid=slot.paid,
            evidence_hash=slot.evidence_hash,
        )

    async def get_slot_count(self, address: str) -> int:
        return len(self._get_ledger(address).slots)

    async def get_balance(self, address: str) -> int:
        return self._get_ledger(address).balance

    async def get_state(self, address: str) -> LedgerState:
        return self._get_ledger(address).state

    async def get_events(self, address: str) -> list[LedgerEvent]:
        self._get_ledger(address)
        return list(self._events[address])

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_ledger(self, address: str) -> EscrowLedger:
        ledger = self._ledgers.get(address)
        if ledger is None:
            raise LedgerNotFoundError(address)
        return ledger

    def _apply(
        self,
        ledger: EscrowLedger,
        operation: LedgerOperation,
        sender: str,
        tx_hash: str,
        block_number: int,
    ) -> list[LedgerEvent]:
        kind = operation.kind
        if kind is LedgerOperationType.FUND:
            transfer = ledger.fund(sender=sender, amount=operation.value)
            return [
                LedgerEvent(
                    "Funded", tx_hash, block_number,
                    amount=transfer.amount, counterparty=transfer.counterparty,
                )
            ]
        if kind is LedgerOperationType.VERIFY:
            ledger.verify(
                sender=sender,
                slot_index=operation.slot_index,
                evidence_hash=operation.evidence_hash,
            )
            return [
                LedgerEvent(
                    "MilestoneVerified", tx_hash, block_number,
                    slot_index=operation.slot_index, evidence_hash=operation.evidence_hash,
                )
            ]
        if kind is LedgerOperationType.RELEASE:
            transfer = ledger.release(sender=sender, slot_index=operation.slot_index)
            return [
                LedgerEvent(
                    "MilestonePaid", tx_hash, block_number,
                    slot_index=operation.slot_index,
                    amount=transfer.amount, counterparty=transfer.counterparty,
                )
            ]
        if kind is LedgerOperationType.CANCEL:
            transfer = ledger.cancel(sender=sender)
            return [
                LedgerEvent(
                    "Cancelled", tx_hash, block_number,
                    amount=transfer.amount, counterparty=transfer.counterparty,
                )
            ]
        raise ValueError(f"Unknown ledger operation: {kind}")
