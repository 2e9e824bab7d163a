"""SqlRecordStore: the RecordStore protocol over SQLAlchemy repositories.

Every call runs in its own short transaction and commits before returning,
so each coordinator checkpoint is durable on its own. Entities are returned
detached (the session factory uses ``expire_on_commit=False``).

Usage:
    store = SqlRecordStore(get_session_factory())
    project = await store.get_project(project_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError

from milestone_escrow.domain.enums import (
    MilestoneStatus,
    ProjectStatus,
    TransactionStatus,
)
from milestone_escrow.domain.exceptions import ProjectNotFoundError
from milestone_escrow.infrastructure.database.orm_models import (
    Milestone,
    Project,
    TransactionRecord,
    VerificationRecord,
)
from milestone_escrow.infrastructure.database.repositories import (
    MilestoneRepository,
    ProjectRepository,
    TransactionRecordRepository,
    VerificationRecordRepository,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from milestone_escrow.domain.enums import (
        TransactionType,
        VerificationMethod,
        VerificationOutcome,
    )


class SqlRecordStore:
    """Off-chain record store backed by the relational database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(self, project: dict, milestones: Sequence[dict]) -> Project:
        async with self._session_factory() as session:
            row = Project(**project)
            row.milestones = [Milestone(**fields) for fields in milestones]
            await ProjectRepository(session).create(row)
            await session.commit()
            return row

    async def get_project(self, project_id: uuid.UUID) -> Project | None:
        async with self._session_factory() as session:
            return await ProjectRepository(session).get_by_id(project_id)

    async def list_projects(self, status: ProjectStatus | None = None) -> list[Project]:
        async with self._session_factory() as session:
            return await ProjectRepository(session).list_all(status)

    async def update_project(self, project_id: uuid.UUID, **fields: Any) -> Project:
        async with self._session_factory() as session:
            repo = ProjectRepository(session)
            project = await repo.get_by_id(project_id)
            if project is None:
                raise ProjectNotFoundError(str(project_id))
            await repo.update_fields(project, **fields)
            await session.commit()
            return project

    async def advance_project(
        self,
        project_id: uuid.UUID,
        from_statuses: Sequence[ProjectStatus],
        to_status: ProjectStatus,
    ) -> bool:
        async with self._session_factory() as session:
            changed = await ProjectRepository(session).transition_status(
                project_id, from_statuses, to_status
            )
            await session.commit()
            return changed

    async def overwrite_project_status(
        self, project_id: uuid.UUID, status: ProjectStatus
    ) -> None:
        async with self._session_factory() as session:
            await ProjectRepository(session).overwrite_status(project_id, ProjectStatus(status))
            await session.commit()

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    async def get_milestones(self, project_id: uuid.UUID) -> list[Milestone]:
        async with self._session_factory() as session:
            return await MilestoneRepository(session).get_by_project(project_id)

    async def get_milestone(self, project_id: uuid.UUID, order_index: int) -> Milestone | None:
        async with self._session_factory() as session:
            return await MilestoneRepository(session).get_by_index(project_id, order_index)

    async def advance_milestone(
        self,
        milestone_id: uuid.UUID,
        to_status: MilestoneStatus,
        **fields: Any,
    ) -> bool:
        async with self._session_factory() as session:
            changed = await MilestoneRepository(session).advance_status(
                milestone_id, MilestoneStatus(to_status), **fields
            )
            await session.commit()
            return changed

    async def overwrite_milestone_status(
        self, milestone_id: uuid.UUID, status: MilestoneStatus
    ) -> None:
        async with self._session_factory() as session:
            await MilestoneRepository(session).overwrite_status(milestone_id, status)
            await session.commit()

    # ------------------------------------------------------------------
    # Verification records
    # ------------------------------------------------------------------

    async def append_verification_record(
        self,
        milestone_id: uuid.UUID,
        verification_method: VerificationMethod,
        oracle_response: dict,
        outcome: VerificationOutcome,
        evidence_hash: str | None = None,
        error_message: str | None = None,
    ) -> VerificationRecord:
        async with self._session_factory() as session:
            record = await VerificationRecordRepository(session).append(
                VerificationRecord(
                    milestone_id=milestone_id,
                    verification_method=str(verification_method),
                    oracle_response=oracle_response,
                    outcome=str(outcome),
                    evidence_hash=evidence_hash,
                    error_message=error_message,
                )
            )
            await session.commit()
            return record

    async def list_verification_records(self, project_id: uuid.UUID) -> list[VerificationRecord]:
        async with self._session_factory() as session:
            return await VerificationRecordRepository(session).get_by_project(project_id)

    # ------------------------------------------------------------------
    # Transaction records
    # ------------------------------------------------------------------

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
    ) -> TransactionRecord:
        async with self._session_factory() as session:
            repo = TransactionRecordRepository(session)
            existing = await repo.get_by_hash(transaction_hash)
            if existing is not None:
                return existing
            record = TransactionRecord(
                transaction_hash=transaction_hash,
                project_id=project_id,
                milestone_id=milestone_id,
                transaction_type=str(transaction_type),
                amount=amount,
                from_address=from_address,
                to_address=to_address,
                status=str(status or TransactionStatus.PENDING),
                block_number=block_number,
            )
            try:
                await repo.create(record)
                await session.commit()
            except IntegrityError:
                # Another writer recorded the same hash first.
                await session.rollback()
                existing = await repo.get_by_hash(transaction_hash)
                if existing is None:
                    raise
                return existing
            return record

    async def update_transaction(
        self,
        transaction_hash: str,
        status: TransactionStatus,
        block_number: int | None = None,
        error_message: str | None = None,
    ) -> TransactionRecord | None:
        async with self._session_factory() as session:
            repo = TransactionRecordRepository(session)
            await repo.resolve(transaction_hash, status, block_number, error_message)
            await session.commit()
            return await repo.get_by_hash(transaction_hash)

    async def list_transactions(
        self,
        project_id: uuid.UUID,
        transaction_type: TransactionType | None = None,
        status: TransactionStatus | None = None,
    ) -> list[TransactionRecord]:
        async with self._session_factory() as session:
            return await TransactionRecordRepository(session).get_by_project(
                project_id, transaction_type, status
            )
