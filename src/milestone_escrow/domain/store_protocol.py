"""Off-chain record store protocol.

The coordinator is a pure consumer of this create/read/update interface over
projects, milestones, verification records and transaction records. Schema
management and access control belong to the store implementation.

Returned entities expose attributes named like the ORM columns in
infrastructure/database/orm_models.py (``id``, ``status``, ``order_index``,
``amount``, ``ledger_address`` ...). Writes are durable when the call
returns.

Status writes are monotonic compare-and-set operations: ``advance_milestone``
only moves a milestone forward in the lifecycle and reports whether it did,
so interleaved coordinators can never move a status backward.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence
    from decimal import Decimal

    from milestone_escrow.domain.enums import (
        MilestoneStatus,
        ProjectStatus,
        TransactionStatus,
        TransactionType,
        VerificationMethod,
        VerificationOutcome,
    )


@runtime_checkable
class RecordStore(Protocol):
    # --- Projects ---

    async def create_project(self, project: dict, milestones: Sequence[dict]) -> Any:
        """Insert a project and its milestones in one write."""
        ...

    async def get_project(self, project_id: uuid.UUID) -> Any | None: ...

    async def list_projects(self, status: ProjectStatus | None = None) -> list[Any]: ...

    async def update_project(self, project_id: uuid.UUID, **fields: Any) -> Any:
        """Update non-status business fields (ledger address, activity snapshot)."""
        ...

    async def advance_project(
        self,
        project_id: uuid.UUID,
        from_statuses: Sequence[ProjectStatus],
        to_status: ProjectStatus,
    ) -> bool:
        """Set ``to_status`` if the project is currently in ``from_statuses``."""
        ...

    async def overwrite_project_status(
        self, project_id: uuid.UUID, status: ProjectStatus
    ) -> None:
        """Unconditional write used only when reconciliation finds a status the ledger contradicts."""
        ...

    # --- Milestones ---

    async def get_milestones(self, project_id: uuid.UUID) -> list[Any]:
        """All milestones of a project ordered by order index."""
        ...

    async def get_milestone(self, project_id: uuid.UUID, order_index: int) -> Any | None: ...

    async def advance_milestone(
        self,
        milestone_id: uuid.UUID,
        to_status: MilestoneStatus,
        **fields: Any,
    ) -> bool:
        """Move a milestone forward to ``to_status``; no-op if already there or beyond."""
        ...

    async def overwrite_milestone_status(
        self, milestone_id: uuid.UUID, status: MilestoneStatus
    ) -> None:
        """Unconditional write used only when reconciling a store found ahead of the ledger."""
        ...

    # --- Verification records (append-only) ---

    async def append_verification_record(
        self,
        milestone_id: uuid.UUID,
        verification_method: VerificationMethod,
        oracle_response: dict,
        outcome: VerificationOutcome,
        evidence_hash: str | None = None,
        error_message: str | None = None,
    ) -> Any: ...

    async def list_verification_records(self, project_id: uuid.UUID) -> list[Any]: ...

    # --- Transaction records ---

    async def record_transaction(
        self,
        transaction_hash: str,
        project_id: uuid.UUID,
        transaction_type: TransactionType,
        amount: Decimal,
        from_address: str,
        to_address: str,
        milestone_id: uuid.UUID | None = None,
        status: TransactionStatus | None = None,
        block_number: int | None = None,
    ) -> Any:
        """Create a record keyed by transaction hash, or return the existing one."""
        ...

    async def update_transaction(
        self,
        transaction_hash: str,
        status: TransactionStatus,
        block_number: int | None = None,
        error_message: str | None = None,
    ) -> Any | None:
        """Resolve a pending record. Confirmed or failed records are left as they are."""
        ...

    async def list_transactions(
        self,
        project_id: uuid.UUID,
        transaction_type: TransactionType | None = None,
        status: TransactionStatus | None = None,
    ) -> list[Any]: ...
