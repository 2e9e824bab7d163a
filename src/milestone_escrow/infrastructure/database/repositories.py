"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface to the
store. They accept an AsyncSession and never manage their own transactions
(that's the caller's responsibility).

Status writes are conditional UPDATEs (compare-and-set on the current status)
so that concurrent writers can only move a row forward.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update

from milestone_escrow.domain.enums import MilestoneStatus, TransactionStatus
from milestone_escrow.infrastructure.database.orm_models import (
    Milestone,
    Project,
    TransactionRecord,
    VerificationRecord,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from milestone_escrow.domain.enums import (
        ProjectStatus,
        TransactionType,
    )

# Timestamp column stamped when a milestone reaches the given status.
_STATUS_TIMESTAMPS = {
    MilestoneStatus.SUBMITTED: "submitted_at",
    MilestoneStatus.VERIFIED: "verified_at",
    MilestoneStatus.PAID: "paid_at",
}


class ProjectRepository:
    """Data access for projects."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, project: Project) -> Project:
        """Insert a new project (with any milestones attached to it)."""
        self._session.add(project)
        await self._session.flush()
        return project

    async def get_by_id(self, project_id: uuid.UUID) -> Project | None:
        result = await self._session.execute(
            select(Project)
            .where(Project.id == project_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_all(self, status: ProjectStatus | None = None) -> list[Project]:
        query = select(Project).order_by(Project.created_at.desc())
        if status is not None:
            query = query.where(Project.status == status.value)
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def update_fields(self, project: Project, **fields: object) -> Project:
        """Update business fields. Status changes go through ``transition_status``."""
        for name, value in fields.items():
            setattr(project, name, value)
        await self._session.flush()
        return project

    async def transition_status(
        self,
        project_id: uuid.UUID,
        from_statuses: Sequence[ProjectStatus],
        to_status: ProjectStatus,
    ) -> bool:
        """Set ``to_status`` only if the row is in one of ``from_statuses``."""
        result = await self._session.execute(
            update(Project)
            .where(
                Project.id == project_id,
                Project.status.in_([s.value for s in from_statuses]),
            )
            .values(status=to_status.value, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def overwrite_status(self, project_id: uuid.UUID, status: ProjectStatus) -> None:
        """Unconditional status write (reconciliation against the ledger only)."""
        await self._session.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(status=status.value, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )


class MilestoneRepository:
    """Data access for milestones."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_project(self, project_id: uuid.UUID) -> list[Milestone]:
        """Fetch all milestones of a project ordered by slot."""
        result = await self._session.execute(
            select(Milestone)
            .where(Milestone.project_id == project_id)
            .order_by(Milestone.order_index.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_by_index(self, project_id: uuid.UUID, order_index: int) -> Milestone | None:
        result = await self._session.execute(
            select(Milestone)
            .where(
                Milestone.project_id == project_id,
                Milestone.order_index == order_index,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def advance_status(
        self,
        milestone_id: uuid.UUID,
        to_status: MilestoneStatus,
        **fields: object,
    ) -> bool:
        """Move a milestone forward to ``to_status``.

        Only rows currently at a status strictly below ``to_status`` are
        touched, so the write is a no-op for rows already there or beyond.
        """
        behind = [s.value for s in MilestoneStatus if s.rank < to_status.rank]
        values: dict[str, object] = {"status": to_status.value, **fields}
        stamp = _STATUS_TIMESTAMPS.get(to_status)
        if stamp is not None:
            values.setdefault(stamp, datetime.now(UTC))

        result = await self._session.execute(
            update(Milestone)
            .where(Milestone.id == milestone_id, Milestone.status.in_(behind))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def overwrite_status(self, milestone_id: uuid.UUID, status: MilestoneStatus) -> None:
        """Unconditional status write (reconciliation against the ledger only)."""
        await self._session.execute(
            update(Milestone)
            .where(Milestone.id == milestone_id)
            .values(status=status.value)
            .execution_options(synchronize_session=False)
        )


class VerificationRecordRepository:
    """Data access for the append-only verification log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, record: VerificationRecord) -> VerificationRecord:
        """Append a new record. This is the ONLY write operation allowed."""
        self._session.add(record)
        await self._session.flush()
        return record

    async def get_by_milestone(self, milestone_id: uuid.UUID) -> list[VerificationRecord]:
        result = await self._session.execute(
            select(VerificationRecord)
            .where(VerificationRecord.milestone_id == milestone_id)
            .order_by(VerificationRecord.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_by_project(self, project_id: uuid.UUID) -> list[VerificationRecord]:
        """Fetch all records for a project in chronological order."""
        result = await self._session.execute(
            select(VerificationRecord)
            .join(Milestone, Milestone.id == VerificationRecord.milestone_id)
            .where(Milestone.project_id == project_id)
            .order_by(VerificationRecord.created_at.asc())
        )
        return list(result.scalars().all())


class TransactionRecordRepository:
    """Data access for ledger transaction records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, record: TransactionRecord) -> TransactionRecord:
        self._session.add(record)
        await self._session.flush()
        return record

    async def get_by_hash(self, transaction_hash: str) -> TransactionRecord | None:
        result = await self._session.execute(
            select(TransactionRecord)
            .where(TransactionRecord.transaction_hash == transaction_hash)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_project(
        self,
        project_id: uuid.UUID,
        transaction_type: TransactionType | None = None,
        status: TransactionStatus | None = None,
    ) -> list[TransactionRecord]:
        query = (
            select(TransactionRecord)
            .where(TransactionRecord.project_id == project_id)
            .order_by(TransactionRecord.created_at.asc())
        )
        if transaction_type is not None:
            query = query.where(TransactionRecord.transaction_type == transaction_type.value)
        if status is not None:
            query = query.where(TransactionRecord.status == status.value)
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def resolve(
        self,
        transaction_hash: str,
        status: TransactionStatus,
        block_number: int | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Move a pending record to confirmed or failed. Resolved records stay as they are."""
        result = await self._session.execute(
            update(TransactionRecord)
            .where(
                TransactionRecord.transaction_hash == transaction_hash,
                TransactionRecord.status == TransactionStatus.PENDING.value,
            )
            .values(
                status=status.value,
                block_number=block_number,
                error_message=error_message,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
