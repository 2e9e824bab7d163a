"""Domain layer — pure business logic with zero framework dependencies."""

from milestone_escrow.domain.enums import (
    LedgerState,
    MilestoneStatus,
    ProjectStatus,
    TransactionStatus,
    TransactionType,
    VerificationMethod,
    VerificationOutcome,
)
from milestone_escrow.domain.exceptions import (
    EscrowPlatformError,
    InvalidStateTransitionError,
    LedgerError,
    ProjectNotFoundError,
)
from milestone_escrow.domain.ledger import EscrowLedger, MilestoneSlot
from milestone_escrow.domain.oracle_protocol import (
    OracleRequest,
    OracleVerdict,
    VerificationOracle,
)
from milestone_escrow.domain.state_machine import (
    MilestoneStateMachine,
    ProjectStateMachine,
    event_sources,
    validate_transition,
)
from milestone_escrow.domain.store_protocol import RecordStore

__all__ = [
    "LedgerState",
    "MilestoneStatus",
    "ProjectStatus",
    "TransactionStatus",
    "TransactionType",
    "VerificationMethod",
    "VerificationOutcome",
    "EscrowPlatformError",
    "InvalidStateTransitionError",
    "LedgerError",
    "ProjectNotFoundError",
    "EscrowLedger",
    "MilestoneSlot",
    "OracleRequest",
    "OracleVerdict",
    "VerificationOracle",
    "MilestoneStateMachine",
    "ProjectStateMachine",
    "event_sources",
    "validate_transition",
    "RecordStore",
]
