"""Domain enumerations for the milestone escrow platform.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class MilestoneStatus(enum.StrEnum):
    """Lifecycle of a milestone as seen by the off-chain store.

    The order of declaration is the lifecycle order. Status only moves
    forward; see ``rank`` and domain/state_machine.py.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    PAID = "paid"

    @property
    def rank(self) -> int:
        return _MILESTONE_ORDER.index(self)

    def is_at_least(self, other: "MilestoneStatus") -> bool:
        return self.rank >= MilestoneStatus(other).rank


_MILESTONE_ORDER = list(MilestoneStatus)


class ProjectStatus(enum.StrEnum):
    """Off-chain project lifecycle. ``cancelled`` and ``completed`` are terminal."""

    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class VerificationMethod(enum.StrEnum):
    """Which oracle evaluates a milestone.

    Stored in milestones.verification_method.
    """

    MANUAL = "manual"
    REPOSITORY_ACTIVITY = "repository_activity"
    DESIGN_VERSION = "design_version"


class VerificationOutcome(enum.StrEnum):
    """Outcome stored on an append-only verification record."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TransactionType(enum.StrEnum):
    ESCROW_DEPOSIT = "escrow_deposit"
    MILESTONE_PAYMENT = "milestone_payment"
    REFUND = "refund"


class TransactionStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class LedgerState(enum.StrEnum):
    """Observable state of one escrow ledger instance.

    ``completed`` is derived (every slot paid); the stored lifecycle only
    knows unfunded, active and cancelled.
    """

    UNFUNDED = "unfunded"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class LedgerOperationType(enum.StrEnum):
    """The four write operations an escrow ledger accepts."""

    FUND = "fund"
    VERIFY = "verify"
    RELEASE = "release"
    CANCEL = "cancel"
