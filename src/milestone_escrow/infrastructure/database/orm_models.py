"""SQLAlchemy 2.0 ORM models for the milestone escrow platform.

Four tables:
    1. projects               — client/freelancer pairing, funding asset, ledger address.
    2. milestones             — ordered work items joined to ledger slots by order_index.
    3. verification_records   — append-only log of oracle verdicts.
    4. transaction_records    — one row per ledger-affecting operation, keyed by tx hash.

Design decisions:
    - UUIDs as primary keys.
    - Decimal amounts in the store; the ledger works in integer base units.
    - JSON columns (JSONB on PostgreSQL) for verification config and oracle payloads.
    - CHECK constraints on every status column.
    - (project_id, order_index) is unique: the order index is the ledger slot.
    - verification_records has no UPDATE path at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. projects
# ---------------------------------------------------------------------------
class Project(Base):
    """A client/freelancer engagement funded through one escrow ledger."""

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Participants ---
    client_address: Mapped[str] = mapped_column(
        String(42),
        nullable=False,
        comment="Wallet that funds the escrow and signs ledger operations",
    )
    freelancer_address: Mapped[str] = mapped_column(
        String(42),
        nullable=False,
        comment="Wallet that receives milestone payments",
    )

    # --- Financials ---
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(36, 18),
        nullable=False,
        comment="Sum of milestone amounts, fixed at creation",
    )
    asset_address: Mapped[str] = mapped_column(
        String(42),
        nullable=False,
        comment="Funding asset contract, zero address for the native asset",
    )
    asset_symbol: Mapped[str] = mapped_column(String(16), nullable=False, default="QIE")
    ledger_address: Mapped[str | None] = mapped_column(
        String(42),
        nullable=True,
        default=None,
        comment="Escrow ledger instance, set once deployed",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        comment="Off-chain lifecycle (ProjectStateMachine events, overwritten only by reconciliation)",
    )

    # --- Repository activity snapshot ---
    repository_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    commit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    latest_commit_sha: Mapped[str | None] = mapped_column(String(64), nullable=True)
    latest_commit_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    milestones: Mapped[list[Milestone]] = relationship(
        "Milestone",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Milestone.order_index",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'active', 'completed', 'cancelled')",
            name="ck_project_valid_status",
        ),
        CheckConstraint("total_amount > 0", name="ck_project_positive_total"),
        Index("idx_project_status", "status"),
        Index("idx_project_client", "client_address"),
        Index("idx_project_freelancer", "freelancer_address"),
    )

    def __repr__(self) -> str:
        return f"<Project id={self.id} status={self.status} total={self.total_amount}>"


# ---------------------------------------------------------------------------
# 2. milestones
# ---------------------------------------------------------------------------
class Milestone(Base):
    """One unit of work; ``order_index`` is its slot in the project's ledger."""

    __tablename__ = "milestones"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)

    verification_method: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")
    verification_config: Mapped[dict] = mapped_column(JsonColumn, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="Projection of the ledger slot; only moves forward",
    )
    evidence_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    project: Mapped[Project] = relationship("Project", back_populates="milestones")

    __table_args__ = (
        UniqueConstraint("project_id", "order_index", name="uq_milestone_slot"),
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'submitted', 'verified', 'paid')",
            name="ck_milestone_valid_status",
        ),
        CheckConstraint(
            "verification_method IN ('manual', 'repository_activity', 'design_version')",
            name="ck_milestone_valid_method",
        ),
        CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),
        CheckConstraint("order_index >= 0", name="ck_milestone_order_index"),
        Index("idx_milestone_project", "project_id"),
        Index("idx_milestone_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Milestone id={self.id} project={self.project_id} "
            f"index={self.order_index} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 3. verification_records (Append-Only)
# ---------------------------------------------------------------------------
class VerificationRecord(Base):
    """Immutable record of one verdict-producing verification attempt."""

    __tablename__ = "verification_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    milestone_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("milestones.id", ondelete="CASCADE"),
        nullable=False,
    )
    verification_method: Mapped[str] = mapped_column(String(32), nullable=False)
    oracle_response: Mapped[dict] = mapped_column(
        JsonColumn,
        nullable=False,
        comment="Raw verdict payload as returned by the oracle",
    )
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    evidence_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "outcome IN ('pending', 'success', 'failed')",
            name="ck_verification_valid_outcome",
        ),
        Index("idx_verification_milestone", "milestone_id"),
        Index("idx_verification_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<VerificationRecord id={self.id} milestone={self.milestone_id} "
            f"outcome={self.outcome}>"
        )


# ---------------------------------------------------------------------------
# 4. transaction_records
# ---------------------------------------------------------------------------
class TransactionRecord(Base):
    """One deposit, milestone payment or refund submitted to a ledger."""

    __tablename__ = "transaction_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    milestone_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("milestones.id", ondelete="SET NULL"),
        nullable=True,
    )
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    from_address: Mapped[str] = mapped_column(String(42), nullable=False)
    to_address: Mapped[str] = mapped_column(String(42), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('escrow_deposit', 'milestone_payment', 'refund')",
            name="ck_transaction_valid_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'failed')",
            name="ck_transaction_valid_status",
        ),
        Index("idx_transaction_project", "project_id"),
        Index("idx_transaction_milestone", "milestone_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<TransactionRecord hash={self.transaction_hash} "
            f"type={self.transaction_type} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# Register the auto-update listeners for updated_at
# ---------------------------------------------------------------------------
event.listen(Project, "before_update", _set_updated_at)
event.listen(TransactionRecord, "before_update", _set_updated_at)
