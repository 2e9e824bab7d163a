"""Pydantic API schemas."""

from milestone_escrow.schemas.project import (
    CreateProjectRequest,
    HealthResponse,
    LedgerSlotResponse,
    LedgerViewResponse,
    MilestoneResponse,
    MilestoneInput,
    ProjectResponse,
    ProjectSummaryResponse,
    TransactionRecordResponse,
    VerificationRecordResponse,
    VerifyMilestoneRequest,
)

__all__ = [
    "CreateProjectRequest",
    "HealthResponse",
    "LedgerSlotResponse",
    "LedgerViewResponse",
    "MilestoneResponse",
    "MilestoneInput",
    "ProjectResponse",
    "ProjectSummaryResponse",
    "TransactionRecordResponse",
    "VerificationRecordResponse",
    "VerifyMilestoneRequest",
]
