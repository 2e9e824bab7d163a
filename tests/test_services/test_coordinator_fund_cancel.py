"""Tests for funding and cancelling escrows through the coordinator."""

from __future__ import annotations

from decimal import Decimal

import pytest

from milestone_escrow.domain.enums import LedgerState
from milestone_escrow.domain.exceptions import (
    AlreadyFundedError,
    ConfirmationPendingError,
    NotActiveError,
)
from milestone_escrow.domain.ledger import to_base_units
from milestone_escrow.ledger import LedgerOperation

CLIENT = "0x" + "c1" * 20
REVIEWER = "0x" + "e3" * 20


def _records(store, kind: str) -> list:
    return [t for t in store.transactions.values() if t.transaction_type == kind]


class TestFund:
    @pytest.mark.asyncio
    async def test_fund_activates_project(self, coordinator, store, gateway, make_project) -> None:
        project = await make_project(["30", "70"], fund=False)
        assert project.status == "draft"

        result = await coordinator.fund_project(project.id)

        assert result.project_status == "active"
        assert Decimal(result.amount) == Decimal("100")
        assert await gateway.get_state(project.ledger_address) is LedgerState.ACTIVE
        assert await gateway.get_balance(project.ledger_address) == to_base_units(Decimal("100"))
        [deposit] = _records(store, "escrow_deposit")
        assert deposit.status == "confirmed"
        assert deposit.transaction_hash == result.tx_hash
        assert deposit.from_address == CLIENT
        assert deposit.to_address == project.ledger_address

    @pytest.mark.asyncio
    async def test_second_fund_is_rejected(self, coordinator, store, gateway, make_project) -> None:
        project = await make_project(["100"])

        with pytest.raises(AlreadyFundedError):
            await coordinator.fund_project(project.id)

        deposits = _records(store, "escrow_deposit")
        assert sorted(d.status for d in deposits) == ["confirmed", "failed"]
        assert store.projects[project.id].status == "active"
        assert await gateway.get_balance(project.ledger_address) == to_base_units(Decimal("100"))

    @pytest.mark.asyncio
    async def test_lost_fund_confirmation_resolved_by_effect(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"], fund=False)
        gateway.lose_confirmations = True

        result = await coordinator.fund_project(project.id)

        assert result.project_status == "active"
        assert store.transactions[result.tx_hash].status == "confirmed"
        assert store.transactions[result.tx_hash].block_number is not None

    @pytest.mark.asyncio
    async def test_deposit_the_store_never_saw_is_adopted(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"], fund=False)
        earlier = await gateway.submit(
            project.ledger_address,
            LedgerOperation.fund(to_base_units(Decimal("100"))),
            sender=CLIENT,
        )

        result = await coordinator.fund_project(project.id)

        assert result.already_applied is True
        assert result.tx_hash == earlier
        assert result.project_status == "active"
        assert store.transactions[earlier].status == "confirmed"

    @pytest.mark.asyncio
    async def test_unconfirmed_fund_without_effect_stays_pending(
        self, coordinator, store, ledger_client, make_project
    ) -> None:
        project = await make_project(["100"], fund=False)

        async def submit_in_flight(address, operation, sender):
            return "0x" + "0d" * 32

        async def never_confirms(tx_hash, operation_name):
            raise ConfirmationPendingError(tx_hash, operation_name)

        ledger_client.submit = submit_in_flight
        ledger_client.wait_for_confirmation = never_confirms

        with pytest.raises(ConfirmationPendingError):
            await coordinator.fund_project(project.id)

        assert store.transactions["0x" + "0d" * 32].status == "pending"
        assert store.projects[project.id].status == "draft"

    @pytest.mark.asyncio
    async def test_cancelled_draft_cannot_be_funded(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"], fund=False)
        await coordinator.cancel_project(project.id)

        with pytest.raises(NotActiveError, match="cancelled"):
            await coordinator.fund_project(project.id)

        assert await gateway.get_state(project.ledger_address) is LedgerState.UNFUNDED
        assert await gateway.get_balance(project.ledger_address) == 0
        assert _records(store, "escrow_deposit") == []
        assert store.projects[project.id].status == "cancelled"

        report = await coordinator.reconcile_project(project.id)
        assert report.project_status == "cancelled"
        assert report.project_overwritten is False

    @pytest.mark.asyncio
    async def test_completed_project_cannot_be_funded(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"])
        await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)
        await coordinator.release_milestone(project.id, 0)

        with pytest.raises(NotActiveError, match="completed"):
            await coordinator.fund_project(project.id)

        assert len(_records(store, "escrow_deposit")) == 1
        assert store.projects[project.id].status == "completed"


class TestCancel:
    @pytest.mark.asyncio
    async def test_refunds_unpaid_milestones(self, coordinator, store, gateway, make_project) -> None:
        project = await make_project(["30", "70"])
        await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)
        await coordinator.release_milestone(project.id, 0)

        result = await coordinator.cancel_project(project.id)

        assert result.project_status == "cancelled"
        assert Decimal(result.amount) == Decimal("70")
        assert await gateway.get_state(project.ledger_address) is LedgerState.CANCELLED
        assert await gateway.get_balance(project.ledger_address) == 0
        [refund] = _records(store, "refund")
        assert refund.status == "confirmed"
        assert refund.amount == Decimal("70")
        assert refund.to_address == CLIENT
        assert store.projects[project.id].status == "cancelled"

    @pytest.mark.asyncio
    async def test_draft_without_ledger_cancels_off_chain(
        self, coordinator, store, make_project
    ) -> None:
        project = await make_project(["100"], deploy=False)

        result = await coordinator.cancel_project(project.id)

        assert result.project_status == "cancelled"
        assert result.tx_hash is None
        assert store.transactions == {}

    @pytest.mark.asyncio
    async def test_unfunded_ledger_cancels_off_chain(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"], fund=False)

        result = await coordinator.cancel_project(project.id)

        assert result.project_status == "cancelled"
        assert store.transactions == {}
        assert await gateway.get_state(project.ledger_address) is LedgerState.UNFUNDED

    @pytest.mark.asyncio
    async def test_second_cancel_is_rejected(self, coordinator, store, make_project) -> None:
        project = await make_project(["100"])
        await coordinator.cancel_project(project.id)

        with pytest.raises(NotActiveError):
            await coordinator.cancel_project(project.id)

        assert sorted(r.status for r in _records(store, "refund")) == ["confirmed", "failed"]

    @pytest.mark.asyncio
    async def test_completed_escrow_cannot_be_cancelled(
        self, coordinator, store, make_project
    ) -> None:
        project = await make_project(["100"])
        await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)
        await coordinator.release_milestone(project.id, 0)

        with pytest.raises(NotActiveError):
            await coordinator.cancel_project(project.id)
        assert store.projects[project.id].status == "completed"
