"""LedgerClient: submit ledger operations and wait for their confirmation.

A submitted operation is not complete until its receipt is observed. Receipt
polling backs off exponentially within a bounded window; running out of
attempts raises ConfirmationPendingError (the operation may still confirm
later) instead of a failure. Reverted receipts are turned back into the
matching LedgerError subclass.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from milestone_escrow.config import get_settings
from milestone_escrow.domain.exceptions import (
    ConfirmationPendingError,
    ledger_error_from_reason,
)
from milestone_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from milestone_escrow.ledger.gateway import (
        LedgerGateway,
        LedgerOperation,
        LedgerReceipt,
    )

logger = get_logger(__name__)


class _ReceiptNotAvailable(Exception):
    pass


class LedgerClient:
    """Confirmation-aware wrapper around a LedgerGateway."""

    def __init__(
        self,
        gateway: LedgerGateway,
        confirmation_attempts: int | None = None,
        backoff_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self._gateway = gateway
        self._attempts = confirmation_attempts or settings.ledger_confirmation_attempts
        self._backoff = (
            backoff_seconds
            if backoff_seconds is not None
            else settings.ledger_confirmation_backoff_seconds
        )
        self._backoff_max = (
            backoff_max_seconds
            if backoff_max_seconds is not None
            else settings.ledger_confirmation_backoff_max_seconds
        )

    @property
    def gateway(self) -> LedgerGateway:
        return self._gateway

    async def submit(self, address: str, operation: LedgerOperation, sender: str) -> str:
        tx_hash = await self._gateway.submit(address, operation, sender)
        logger.info(
            "ledger.submitted",
            address=address,
            operation=operation.kind.value,
            slot_index=operation.slot_index,
            tx_hash=tx_hash,
        )
        return tx_hash

    async def wait_for_confirmation(self, tx_hash: str, operation_name: str) -> LedgerReceipt:
        """Poll for the receipt of ``tx_hash``.

        Raises:
            ConfirmationPendingError: no receipt within the retry window.
            LedgerError: the operation was reverted (subclass per revert reason).
        """
        receipt: LedgerReceipt | None = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._attempts),
                wait=wait_exponential(multiplier=self._backoff, max=self._backoff_max),
                retry=retry_if_exception_type(_ReceiptNotAvailable),
                reraise=True,
            ):
                with attempt:
                    receipt = await self._gateway.get_receipt(tx_hash)
                    if receipt is None:
                        raise _ReceiptNotAvailable(tx_hash)
        except _ReceiptNotAvailable as exc:
            logger.warning(
                "ledger.confirmation_pending",
                tx_hash=tx_hash,
                operation=operation_name,
                attempts=self._attempts,
            )
            raise ConfirmationPendingError(tx_hash, operation_name) from exc

        assert receipt is not None
        if not receipt.success:
            logger.info(
                "ledger.reverted",
                tx_hash=tx_hash,
                operation=operation_name,
                reason=receipt.revert_reason,
            )
            raise ledger_error_from_reason(receipt.revert_reason or "", tx_hash=tx_hash)

        logger.info(
            "ledger.confirmed",
            tx_hash=tx_hash,
            operation=operation_name,
            block_number=receipt.block_number,
        )
        return receipt

    async def execute(
        self, address: str, operation: LedgerOperation, sender: str
    ) -> LedgerReceipt:
        """Submit ``operation`` and wait for its confirmation."""
        tx_hash = await self.submit(address, operation, sender)
        return await self.wait_for_confirmation(tx_hash, operation.kind.value)
