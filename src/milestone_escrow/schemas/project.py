"""Pydantic schemas for the project API.

These schemas define the request/response shapes for the REST API and
MCP tools. They are separate from the ORM models to maintain clean
boundaries between the API and database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from milestone_escrow.domain.enums import VerificationMethod
from milestone_escrow.domain.ledger import NATIVE_ASSET

_ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"

# Credentials accepted in a verification config but never echoed back.
_SECRET_CONFIG_KEYS = frozenset({"access_token"})

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class MilestoneInput(BaseModel):
    """One milestone in a project creation request. Order in the list is the ledger slot."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    amount: Decimal = Field(..., gt=0, description="Milestone amount in the funding asset")
    verification_method: VerificationMethod = Field(
        default=VerificationMethod.MANUAL,
        description="manual | repository_activity | design_version",
    )
    verification_config: dict = Field(
        default_factory=dict,
        description=(
            "Method-specific configuration. "
            'repository_activity: {"owner", "repo", "branch"?, "min_commits"?, "access_token"?}; '
            'design_version: {"file_key", "min_versions"?, "access_token"?}'
        ),
        examples=[{"owner": "octocat", "repo": "hello-world", "branch": "main", "min_commits": 3}],
    )


class CreateProjectRequest(BaseModel):
    """Request body for creating a project with its milestones."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    client_address: str = Field(
        ...,
        pattern=_ADDRESS_PATTERN,
        description="Wallet that funds the escrow (0x-prefixed, 42 chars)",
        examples=["0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"],
    )
    freelancer_address: str = Field(
        ...,
        pattern=_ADDRESS_PATTERN,
        description="Wallet that receives milestone payments",
    )
    total_amount: Decimal = Field(..., gt=0, description="Must equal the sum of milestone amounts")
    asset_address: str = Field(default=NATIVE_ASSET, pattern=_ADDRESS_PATTERN)
    asset_symbol: str = Field(default="QIE", min_length=1, max_length=16)
    repository_url: str | None = Field(default=None, max_length=500)
    milestones: list[MilestoneInput] = Field(..., min_length=1)
    deploy: bool = Field(default=True, description="Deploy the escrow ledger immediately")
    idempotency_key: str | None = Field(
        default=None,
        description="Optional idempotency key to prevent duplicate project creation",
    )

    @model_validator(mode="after")
    def _total_matches_milestones(self) -> CreateProjectRequest:
        milestone_sum = sum((m.amount for m in self.milestones), Decimal(0))
        if milestone_sum != self.total_amount:
            raise ValueError(
                f"total_amount {self.total_amount} must equal the sum of "
                f"milestone amounts {milestone_sum}"
            )
        return self


class VerifyMilestoneRequest(BaseModel):
    """Request body for a verification attempt."""

    reviewer: str | None = Field(
        default=None,
        description="Reviewer address approving a manual milestone",
    )
    since: datetime | None = Field(
        default=None,
        description="Only count activity at or after this instant",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_index: int
    title: str
    description: str | None
    amount: Decimal
    verification_method: str
    verification_config: dict
    status: str
    evidence_hash: str | None
    submitted_at: datetime | None
    verified_at: datetime | None
    paid_at: datetime | None

    @field_serializer("verification_config")
    def _redact_credentials(self, config: dict) -> dict:
        return {k: v for k, v in config.items() if k not in _SECRET_CONFIG_KEYS}


class ProjectSummaryResponse(BaseModel):
    """Project without its milestones, for listings."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str | None
    client_address: str
    freelancer_address: str
    total_amount: Decimal
    asset_address: str
    asset_symbol: str
    ledger_address: str | None
    status: str
    repository_url: str | None
    commit_count: int
    latest_commit_sha: str | None
    latest_commit_url: str | None
    created_at: datetime
    updated_at: datetime


class ProjectResponse(ProjectSummaryResponse):
    """Project with its milestones in slot order."""

    milestones: list[MilestoneResponse] = Field(default_factory=list)


class VerificationRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    milestone_id: uuid.UUID
    verification_method: str
    oracle_response: dict
    outcome: str
    evidence_hash: str | None
    error_message: str | None
    created_at: datetime


class TransactionRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    milestone_id: uuid.UUID | None
    transaction_hash: str
    transaction_type: str
    amount: Decimal
    from_address: str
    to_address: str
    status: str
    block_number: int | None
    error_message: str | None
    created_at: datetime


class LedgerSlotResponse(BaseModel):
    index: int
    amount: Decimal
    verified: bool
    paid: bool
    evidence_hash: str | None


class LedgerViewResponse(BaseModel):
    """Ledger truth for a project, read directly from the gateway."""

    address: str | None
    state: str | None
    balance: Decimal
    slots: list[LedgerSlotResponse]


class HealthResponse(BaseModel):
    """Health check response. ``status`` is ok, degraded (Redis down) or unavailable."""

    status: str
    version: str
    database: str
    redis: str
    ledger: str
    ledger_backend: str
