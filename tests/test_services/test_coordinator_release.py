"""Tests for VerificationCoordinator.release_milestone, including concurrent callers."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from milestone_escrow.domain.enums import LedgerState, MilestoneStatus
from milestone_escrow.domain.exceptions import ConfirmationPendingError, NotVerifiedError
from milestone_escrow.domain.ledger import to_base_units

REVIEWER = "0x" + "e3" * 20


async def assert_store_lags_ledger(store, gateway, project) -> None:
    """No milestone is further along in the store than on the ledger."""
    for milestone in await store.get_milestones(project.id):
        slot = await gateway.get_slot(project.ledger_address, milestone.order_index)
        status = MilestoneStatus(milestone.status)
        if slot.paid:
            continue
        if slot.verified:
            assert status.rank <= MilestoneStatus.VERIFIED.rank
        else:
            assert status.rank <= MilestoneStatus.SUBMITTED.rank


class TestRelease:
    @pytest.mark.asyncio
    async def test_pays_exactly_the_slot_amount(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["30", "70"])
        await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)
        before = await gateway.get_balance(project.ledger_address)

        result = await coordinator.release_milestone(project.id, 0)

        after = await gateway.get_balance(project.ledger_address)
        assert before - after == to_base_units(Decimal("30"))
        assert result.milestone_status == "paid"
        assert result.project_status == "active"
        assert result.already_applied is False

        payment = store.transactions[result.tx_hash]
        assert payment.transaction_type == "milestone_payment"
        assert payment.status == "confirmed"
        assert payment.amount == Decimal("30")
        assert payment.block_number == result.block_number
        milestone = await store.get_milestone(project.id, 0)
        assert milestone.status == "paid"
        assert milestone.paid_at is not None
        await assert_store_lags_ledger(store, gateway, project)

    @pytest.mark.asyncio
    async def test_release_before_verification_is_rejected(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"])

        with pytest.raises(NotVerifiedError):
            await coordinator.release_milestone(project.id, 0)

        [failed] = [t for t in store.transactions.values() if t.transaction_type == "milestone_payment"]
        assert failed.status == "failed"
        assert failed.error_message == "NotVerified"
        assert (await store.get_milestone(project.id, 0)).status == "in_progress"
        assert await gateway.get_balance(project.ledger_address) == to_base_units(Decimal("100"))

    @pytest.mark.asyncio
    async def test_last_release_completes_project(
        self, coordinator, gateway, make_project
    ) -> None:
        project = await make_project(["40", "60"])
        for index in (0, 1):
            await coordinator.verify_milestone(project.id, index, reviewer=REVIEWER)

        first = await coordinator.release_milestone(project.id, 0)
        second = await coordinator.release_milestone(project.id, 1)

        assert first.project_status == "active"
        assert second.project_status == "completed"
        assert await gateway.get_state(project.ledger_address) is LedgerState.COMPLETED
        assert await gateway.get_balance(project.ledger_address) == 0

    @pytest.mark.asyncio
    async def test_release_of_paid_milestone_is_a_no_op(
        self, coordinator, store, make_project
    ) -> None:
        project = await make_project(["100"])
        await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)
        await coordinator.release_milestone(project.id, 0)
        recorded = len(store.transactions)

        again = await coordinator.release_milestone(project.id, 0)

        assert again.already_applied is True
        assert len(store.transactions) == recorded

    @pytest.mark.asyncio
    async def test_lost_confirmation_resolved_by_payment_event(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"])
        await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)
        gateway.lose_confirmations = True

        result = await coordinator.release_milestone(project.id, 0)

        assert result.milestone_status == "paid"
        assert result.already_applied is False
        assert store.transactions[result.tx_hash].status == "confirmed"

    @pytest.mark.asyncio
    async def test_confirmation_without_effect_leaves_pending_record(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"])
        gateway.lose_confirmations = True

        with pytest.raises(ConfirmationPendingError) as exc_info:
            await coordinator.release_milestone(project.id, 0)

        assert store.transactions[exc_info.value.tx_hash].status == "pending"
        assert (await store.get_milestone(project.id, 0)).status == "in_progress"


class TestConcurrentCoordinators:
    @pytest.mark.asyncio
    async def test_interleaved_verify_and_release_pay_once(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"])
        address = project.ledger_address

        verifications = await asyncio.gather(
            coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER),
            coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER),
        )
        assert all(v.verified for v in verifications)
        await assert_store_lags_ledger(store, gateway, project)

        releases = await asyncio.gather(
            coordinator.release_milestone(project.id, 0),
            coordinator.release_milestone(project.id, 0),
        )

        payments = [e for e in await gateway.get_events(address) if e.name == "MilestonePaid"]
        assert len(payments) == 1
        assert payments[0].amount == to_base_units(Decimal("100"))
        assert await gateway.get_balance(address) == 0
        assert {r.tx_hash for r in releases} == {payments[0].tx_hash}
        assert (await store.get_milestone(project.id, 0)).status == "paid"
        assert store.projects[project.id].status == "completed"

        confirmed = [
            t
            for t in store.transactions.values()
            if t.transaction_type == "milestone_payment" and t.status == "confirmed"
        ]
        assert [t.transaction_hash for t in confirmed] == [payments[0].tx_hash]
