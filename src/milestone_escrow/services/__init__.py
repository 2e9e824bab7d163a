"""Application services — use case orchestration."""

from milestone_escrow.services.poller import VerificationPoller
from milestone_escrow.services.project_service import ProjectService
from milestone_escrow.services.verification_coordinator import (
    LedgerActionResult,
    ReconcileReport,
    VerificationAttempt,
    VerificationCoordinator,
)

__all__ = [
    "LedgerActionResult",
    "ProjectService",
    "ReconcileReport",
    "VerificationAttempt",
    "VerificationCoordinator",
    "VerificationPoller",
]
