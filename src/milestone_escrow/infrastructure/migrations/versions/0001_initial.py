"""Initial schema — projects, milestones, verification records, transaction records

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-18 00:00:00.000000

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers
revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # ── Projects ─────────────────────────────────────────────────────────
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("client_address", sa.String(42), nullable=False),
        sa.Column("freelancer_address", sa.String(42), nullable=False),
        sa.Column("total_amount", sa.Numeric(36, 18), nullable=False),
        sa.Column("asset_address", sa.String(42), nullable=False),
        sa.Column("asset_symbol", sa.String(16), nullable=False),
        sa.Column("ledger_address", sa.String(42), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("repository_url", sa.Text, nullable=True),
        sa.Column("commit_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("latest_commit_sha", sa.String(64), nullable=True),
        sa.Column("latest_commit_url", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'completed', 'cancelled')",
            name="ck_project_valid_status",
        ),
        sa.CheckConstraint("total_amount > 0", name="ck_project_positive_total"),
    )
    op.create_index("idx_project_status", "projects", ["status"])
    op.create_index("idx_project_client", "projects", ["client_address"])
    op.create_index("idx_project_freelancer", "projects", ["freelancer_address"])

    # ── Milestones ───────────────────────────────────────────────────────
    op.create_table(
        "milestones",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid,
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("order_index", sa.Integer, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("amount", sa.Numeric(36, 18), nullable=False),
        sa.Column("verification_method", sa.String(32), nullable=False),
        sa.Column("verification_config", _JSON, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("evidence_hash", sa.String(66), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("project_id", "order_index", name="uq_milestone_slot"),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'submitted', 'verified', 'paid')",
            name="ck_milestone_valid_status",
        ),
        sa.CheckConstraint(
            "verification_method IN ('manual', 'repository_activity', 'design_version')",
            name="ck_milestone_valid_method",
        ),
        sa.CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),
        sa.CheckConstraint("order_index >= 0", name="ck_milestone_order_index"),
    )
    op.create_index("idx_milestone_project", "milestones", ["project_id"])
    op.create_index("idx_milestone_status", "milestones", ["status"])

    # ── Verification records (append-only) ──────────────────────────────
    op.create_table(
        "verification_records",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "milestone_id",
            sa.Uuid,
            sa.ForeignKey("milestones.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("verification_method", sa.String(32), nullable=False),
        sa.Column("oracle_response", _JSON, nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("evidence_hash", sa.String(66), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "outcome IN ('pending', 'success', 'failed')",
            name="ck_verification_valid_outcome",
        ),
    )
    op.create_index("idx_verification_milestone", "verification_records", ["milestone_id"])
    op.create_index("idx_verification_created_at", "verification_records", ["created_at"])

    # ── Transaction records ──────────────────────────────────────────────
    op.create_table(
        "transaction_records",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid,
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "milestone_id",
            sa.Uuid,
            sa.ForeignKey("milestones.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("transaction_hash", sa.String(66), nullable=False, unique=True),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("amount", sa.Numeric(36, 18), nullable=False),
        sa.Column("from_address", sa.String(42), nullable=False),
        sa.Column("to_address", sa.String(42), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("block_number", sa.BigInteger, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "transaction_type IN ('escrow_deposit', 'milestone_payment', 'refund')",
            name="ck_transaction_valid_type",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'failed')",
            name="ck_transaction_valid_status",
        ),
    )
    op.create_index("idx_transaction_project", "transaction_records", ["project_id"])
    op.create_index("idx_transaction_milestone", "transaction_records", ["milestone_id"])


def downgrade() -> None:
    op.drop_table("transaction_records")
    op.drop_table("verification_records")
    op.drop_table("milestones")
    op.drop_table("projects")
