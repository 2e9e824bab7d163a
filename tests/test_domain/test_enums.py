"""Tests for domain enumerations."""

from __future__ import annotations

from milestone_escrow.domain.enums import (
    LedgerState,
    MilestoneStatus,
    ProjectStatus,
    TransactionType,
    VerificationMethod,
)


class TestMilestoneStatus:
    def test_values(self) -> None:
        assert [s.value for s in MilestoneStatus] == [
            "pending",
            "in_progress",
            "submitted",
            "verified",
            "paid",
        ]

    def test_rank_follows_lifecycle(self) -> None:
        assert MilestoneStatus.PENDING.rank == 0
        assert MilestoneStatus.PAID.rank == 4
        assert MilestoneStatus.SUBMITTED.rank < MilestoneStatus.VERIFIED.rank

    def test_is_at_least(self) -> None:
        assert MilestoneStatus.PAID.is_at_least(MilestoneStatus.VERIFIED)
        assert MilestoneStatus.VERIFIED.is_at_least("verified")
        assert not MilestoneStatus.SUBMITTED.is_at_least(MilestoneStatus.VERIFIED)

    def test_string_comparison(self) -> None:
        assert MilestoneStatus.VERIFIED == "verified"


class TestOtherEnums:
    def test_project_status(self) -> None:
        assert {s.value for s in ProjectStatus} == {"draft", "active", "completed", "cancelled"}

    def test_verification_methods(self) -> None:
        assert {m.value for m in VerificationMethod} == {
            "manual",
            "repository_activity",
            "design_version",
        }

    def test_ledger_state_includes_derived_completed(self) -> None:
        assert LedgerState("completed") is LedgerState.COMPLETED

    def test_transaction_types(self) -> None:
        assert TransactionType.MILESTONE_PAYMENT == "milestone_payment"
