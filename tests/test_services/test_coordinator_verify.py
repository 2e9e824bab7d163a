"""Tests for VerificationCoordinator.verify_milestone."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from milestone_escrow.domain.evidence import evidence_hash
from milestone_escrow.domain.exceptions import (
    ConfirmationPendingError,
    LedgerNotDeployedError,
    LedgerNotFoundError,
    MilestoneNotFoundError,
    NotActiveError,
    OracleUnavailableError,
    ProjectNotFoundError,
    VerificationConfigError,
)
from milestone_escrow.domain.oracle_protocol import OracleVerdict
from milestone_escrow.ledger import LedgerOperation
from milestone_escrow.services.verification_coordinator import VerificationCoordinator

CLIENT = "0x" + "c1" * 20
REVIEWER = "0x" + "e3" * 20


class TestRepositoryActivity:
    @pytest.mark.asyncio
    async def test_below_threshold_is_not_verified(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.commits = 2
        project = await make_project(["100"], "repository_activity", repository_config)

        attempt = await coordinator.verify_milestone(project.id, 0)

        assert attempt.verified is False
        assert attempt.count == 2
        assert attempt.threshold == 3
        assert "2 of 3" in attempt.message
        assert attempt.outcome == "success"
        assert (await store.get_milestone(project.id, 0)).status == "in_progress"
        [record] = store.verifications
        assert record.outcome == "success"
        assert record.evidence_hash is None
        assert record.oracle_response["verified"] is False

    @pytest.mark.asyncio
    async def test_threshold_met_commits_evidence(
        self, coordinator, store, gateway, github, make_project, repository_config
    ) -> None:
        github.commits = 5
        project = await make_project(["100"], "repository_activity", repository_config)

        attempt = await coordinator.verify_milestone(project.id, 0)

        record = store.verifications[-1]
        expected = evidence_hash(record.oracle_response["evidence"])
        assert attempt.verified is True
        assert attempt.milestone_status == "verified"
        assert attempt.evidence_hash == expected
        assert record.evidence_hash == expected
        slot = await gateway.get_slot(project.ledger_address, 0)
        assert slot.verified is True
        assert slot.evidence_hash == expected
        milestone = await store.get_milestone(project.id, 0)
        assert milestone.evidence_hash == expected
        assert milestone.verified_at is not None

    @pytest.mark.asyncio
    async def test_activity_snapshot_is_refreshed(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.commits = 2
        project = await make_project(["100"], "repository_activity", repository_config)

        await coordinator.verify_milestone(project.id, 0)

        row = store.projects[project.id]
        assert row.commit_count == 2
        assert row.latest_commit_sha == f"{2:040x}"
        assert row.repository_url == "https://github.com/acme/site"

    @pytest.mark.asyncio
    async def test_upstream_outage_retries_then_raises(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.status_code = 503
        project = await make_project(["100"], "repository_activity", repository_config)

        with pytest.raises(OracleUnavailableError) as exc_info:
            await coordinator.verify_milestone(project.id, 0)

        assert exc_info.value.status_code == 503
        assert len(github.requests) == 2
        assert store.verifications == []
        assert (await store.get_milestone(project.id, 0)).status == "in_progress"

    @pytest.mark.asyncio
    async def test_timeout_is_retried(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.timeout = True
        project = await make_project(["100"], "repository_activity", repository_config)

        with pytest.raises(OracleUnavailableError):
            await coordinator.verify_milestone(project.id, 0)
        assert len(github.requests) == 2

    @pytest.mark.asyncio
    async def test_invalid_config_fails_before_oracle_call(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        project = await make_project(["100"], "repository_activity", repository_config)
        milestone = await store.get_milestone(project.id, 0)
        store.milestones[milestone.id].verification_config = {"owner": "acme"}

        with pytest.raises(VerificationConfigError):
            await coordinator.verify_milestone(project.id, 0)

        assert github.requests == []
        assert store.verifications == []


class TestMalformedVerdict:
    @pytest.mark.asyncio
    async def test_malformed_response_is_recorded_as_failed(
        self, store, ledger_client, make_project
    ) -> None:
        oracle = MagicMock()
        oracle.evaluate = AsyncMock(return_value=OracleVerdict.malformed("unexpected payload"))
        coordinator = VerificationCoordinator(
            store,
            ledger_client,
            oracle_resolver=lambda method: oracle,
            oracle_attempts=2,
            oracle_backoff_min=0,
            oracle_backoff_max=0,
        )
        project = await make_project(["100"])

        attempt = await coordinator.verify_milestone(project.id, 0)

        assert attempt.verified is False
        assert attempt.outcome == "failed"
        assert "could not be used" in attempt.message
        assert oracle.evaluate.await_count == 1
        [record] = store.verifications
        assert record.outcome == "failed"
        assert record.error_message == "unexpected payload"


class TestManualReview:
    @pytest.mark.asyncio
    async def test_without_reviewer_is_pending(self, coordinator, store, make_project) -> None:
        project = await make_project(["100"])

        attempt = await coordinator.verify_milestone(project.id, 0)

        assert attempt.verified is False
        assert attempt.outcome == "pending"
        assert attempt.message == "Awaiting reviewer approval"
        assert store.verifications[0].outcome == "pending"

    @pytest.mark.asyncio
    async def test_reviewer_approval_verifies(self, coordinator, store, make_project) -> None:
        project = await make_project(["100"])

        attempt = await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)

        milestone = await store.get_milestone(project.id, 0)
        assert attempt.verified is True
        assert attempt.evidence_hash == evidence_hash(
            {"source": "manual", "milestone_id": str(milestone.id), "reviewer": REVIEWER}
        )
        assert milestone.status == "verified"

    @pytest.mark.asyncio
    async def test_already_verified_short_circuits(self, coordinator, store, make_project) -> None:
        project = await make_project(["100"])
        first = await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)

        second = await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)

        assert second.already_verified is True
        assert second.evidence_hash == first.evidence_hash
        assert len(store.verifications) == 1


class TestLedgerOutcomes:
    @pytest.mark.asyncio
    async def test_ledger_already_verified_adopts_ledger_hash(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"])
        ledger_hash = "0x" + "77" * 32
        await gateway.submit(
            project.ledger_address, LedgerOperation.verify(0, ledger_hash), sender=CLIENT
        )

        attempt = await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)

        assert attempt.already_verified is True
        assert attempt.evidence_hash == ledger_hash
        milestone = await store.get_milestone(project.id, 0)
        assert milestone.status == "verified"
        assert milestone.evidence_hash == ledger_hash

    @pytest.mark.asyncio
    async def test_lost_confirmation_resolved_by_effect(
        self, coordinator, store, gateway, make_project
    ) -> None:
        project = await make_project(["100"])
        gateway.lose_confirmations = True

        attempt = await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)

        assert attempt.verified is True
        assert (await store.get_milestone(project.id, 0)).status == "verified"

    @pytest.mark.asyncio
    async def test_pending_without_effect_propagates(
        self, coordinator, store, ledger_client, make_project
    ) -> None:
        project = await make_project(["100"])
        ledger_client.execute = AsyncMock(side_effect=ConfirmationPendingError("0xabc", "verify"))

        with pytest.raises(ConfirmationPendingError):
            await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)

        assert (await store.get_milestone(project.id, 0)).status == "in_progress"
        assert len(store.verifications) == 1


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_unknown_project(self, coordinator) -> None:
        with pytest.raises(ProjectNotFoundError):
            await coordinator.verify_milestone(uuid.uuid4(), 0)

    @pytest.mark.asyncio
    async def test_unknown_milestone(self, coordinator, make_project) -> None:
        project = await make_project(["100"])
        with pytest.raises(MilestoneNotFoundError):
            await coordinator.verify_milestone(project.id, 3)

    @pytest.mark.asyncio
    async def test_no_ledger_deployed(self, coordinator, make_project) -> None:
        project = await make_project(["100"], deploy=False)
        with pytest.raises(LedgerNotDeployedError):
            await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)

    @pytest.mark.asyncio
    async def test_cancelled_project(self, coordinator, store, make_project) -> None:
        project = await make_project(["100"])
        await coordinator.cancel_project(project.id)

        with pytest.raises(NotActiveError):
            await coordinator.verify_milestone(project.id, 0, reviewer=REVIEWER)
        assert store.verifications == []

    @pytest.mark.asyncio
    async def test_stale_ledger_address(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.commits = 5
        project = await make_project(["100"], "repository_activity", repository_config)
        store.projects[project.id].ledger_address = "0x" + "ab" * 20

        with pytest.raises(LedgerNotFoundError):
            await coordinator.verify_milestone(project.id, 0)
        assert store.verifications == []
        assert github.requests == []
