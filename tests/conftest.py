"""Shared test fixtures for the milestone escrow test suite.

Provides:
    - InMemoryRecordStore: a RecordStore with the same monotonic write rules
      as SqlRecordStore, yielding control on every call so concurrent
      coordinators interleave the way they do against a real database
    - A simulated ledger gateway and a fast-polling LedgerClient
    - A fake GitHub commits API served through httpx.MockTransport
    - Coordinator / ProjectService wired on top of these
    - make_project: factory creating (and by default deploying and funding) a project
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from milestone_escrow.domain.enums import MilestoneStatus, ProjectStatus, TransactionStatus
from milestone_escrow.domain.exceptions import ProjectNotFoundError
from milestone_escrow.ledger import LedgerClient, SimulatedLedgerGateway
from milestone_escrow.oracles import OracleFactory
from milestone_escrow.services.project_service import ProjectService
from milestone_escrow.services.verification_coordinator import VerificationCoordinator

CLIENT = "0x" + "c1" * 20
FREELANCER = "0x" + "f2" * 20

_STAMPS = {
    MilestoneStatus.SUBMITTED: "submitted_at",
    MilestoneStatus.VERIFIED: "verified_at",
    MilestoneStatus.PAID: "paid_at",
}


# ---------------------------------------------------------------------------
# In-memory record store
# ---------------------------------------------------------------------------


class InMemoryRecordStore:
    """Dict-backed RecordStore. Reads return copies, like detached ORM rows."""

    def __init__(self) -> None:
        self.projects: dict[uuid.UUID, SimpleNamespace] = {}
        self.milestones: dict[uuid.UUID, SimpleNamespace] = {}
        self.verifications: list[SimpleNamespace] = []
        self.transactions: dict[str, SimpleNamespace] = {}
        self.overwrites: list[tuple[uuid.UUID, str]] = []
        self.project_overwrites: list[tuple[uuid.UUID, str]] = []

    def _project_view(self, row: SimpleNamespace) -> SimpleNamespace:
        view = copy.copy(row)
        view.milestones = [
            copy.copy(m)
            for m in sorted(self.milestones.values(), key=lambda m: m.order_index)
            if m.project_id == row.id
        ]
        return view

    # --- Projects ---

    async def create_project(self, project: dict, milestones: list[dict]) -> SimpleNamespace:
        await asyncio.sleep(0)
        now = datetime.now(UTC)
        row = SimpleNamespace(
            **{
                "id": uuid.uuid4(),
                "description": None,
                "ledger_address": None,
                "repository_url": None,
                "commit_count": 0,
                "latest_commit_sha": None,
                "latest_commit_url": None,
                "created_at": now,
                "updated_at": now,
                **project,
            }
        )
        self.projects[row.id] = row
        for fields in milestones:
            milestone = SimpleNamespace(
                **{
                    "id": uuid.uuid4(),
                    "project_id": row.id,
                    "description": None,
                    "verification_config": {},
                    "evidence_hash": None,
                    "submitted_at": None,
                    "verified_at": None,
                    "paid_at": None,
                    "created_at": now,
                    **fields,
                }
            )
            self.milestones[milestone.id] = milestone
        return self._project_view(row)

    async def get_project(self, project_id: uuid.UUID) -> SimpleNamespace | None:
        await asyncio.sleep(0)
        row = self.projects.get(project_id)
        return self._project_view(row) if row is not None else None

    async def list_projects(self, status=None) -> list[SimpleNamespace]:
        await asyncio.sleep(0)
        return [
            self._project_view(p)
            for p in self.projects.values()
            if status is None or p.status == status.value
        ]

    async def update_project(self, project_id: uuid.UUID, **fields) -> SimpleNamespace:
        await asyncio.sleep(0)
        row = self.projects.get(project_id)
        if row is None:
            raise ProjectNotFoundError(str(project_id))
        for name, value in fields.items():
            setattr(row, name, value)
        row.updated_at = datetime.now(UTC)
        return self._project_view(row)

    async def advance_project(self, project_id, from_statuses, to_status) -> bool:
        await asyncio.sleep(0)
        row = self.projects[project_id]
        if row.status not in {s.value for s in from_statuses}:
            return False
        row.status = to_status.value
        return True

    async def overwrite_project_status(self, project_id, status) -> None:
        await asyncio.sleep(0)
        self.projects[project_id].status = ProjectStatus(status).value
        self.project_overwrites.append((project_id, ProjectStatus(status).value))

    # --- Milestones ---

    async def get_milestones(self, project_id: uuid.UUID) -> list[SimpleNamespace]:
        await asyncio.sleep(0)
        return [
            copy.copy(m)
            for m in sorted(self.milestones.values(), key=lambda m: m.order_index)
            if m.project_id == project_id
        ]

    async def get_milestone(self, project_id, order_index) -> SimpleNamespace | None:
        await asyncio.sleep(0)
        for m in self.milestones.values():
            if m.project_id == project_id and m.order_index == order_index:
                return copy.copy(m)
        return None

    async def advance_milestone(self, milestone_id, to_status, **fields) -> bool:
        await asyncio.sleep(0)
        row = self.milestones[milestone_id]
        target = MilestoneStatus(to_status)
        if MilestoneStatus(row.status).rank >= target.rank:
            return False
        row.status = target.value
        for name, value in fields.items():
            setattr(row, name, value)
        stamp = _STAMPS.get(target)
        if stamp is not None and getattr(row, stamp) is None:
            setattr(row, stamp, datetime.now(UTC))
        return True

    async def overwrite_milestone_status(self, milestone_id, status) -> None:
        await asyncio.sleep(0)
        self.milestones[milestone_id].status = MilestoneStatus(status).value
        self.overwrites.append((milestone_id, MilestoneStatus(status).value))

    # --- Verification records ---

    async def append_verification_record(
        self,
        milestone_id,
        verification_method,
        oracle_response,
        outcome,
        evidence_hash=None,
        error_message=None,
    ) -> SimpleNamespace:
        await asyncio.sleep(0)
        record = SimpleNamespace(
            id=uuid.uuid4(),
            milestone_id=milestone_id,
            verification_method=str(verification_method),
            oracle_response=oracle_response,
            outcome=str(outcome),
            evidence_hash=evidence_hash,
            error_message=error_message,
            created_at=datetime.now(UTC) + timedelta(microseconds=len(self.verifications)),
        )
        self.verifications.append(record)
        return copy.copy(record)

    async def list_verification_records(self, project_id) -> list[SimpleNamespace]:
        await asyncio.sleep(0)
        ids = {m.id for m in self.milestones.values() if m.project_id == project_id}
        return [copy.copy(r) for r in self.verifications if r.milestone_id in ids]

    # --- Transaction records ---

    async def record_transaction(
        self,
        transaction_hash,
        project_id,
        transaction_type,
        amount,
        from_address,
        to_address,
        milestone_id=None,
        status=None,
        block_number=None,
    ) -> SimpleNamespace:
        await asyncio.sleep(0)
        existing = self.transactions.get(transaction_hash)
        if existing is not None:
            return copy.copy(existing)
        now = datetime.now(UTC)
        record = SimpleNamespace(
            id=uuid.uuid4(),
            project_id=project_id,
            milestone_id=milestone_id,
            transaction_hash=transaction_hash,
            transaction_type=str(transaction_type),
            amount=Decimal(amount),
            from_address=from_address,
            to_address=to_address,
            status=str(status or TransactionStatus.PENDING),
            block_number=block_number,
            error_message=None,
            created_at=now + timedelta(microseconds=len(self.transactions)),
            updated_at=now,
        )
        self.transactions[transaction_hash] = record
        return copy.copy(record)

    async def update_transaction(
        self, transaction_hash, status, block_number=None, error_message=None
    ) -> SimpleNamespace | None:
        await asyncio.sleep(0)
        record = self.transactions.get(transaction_hash)
        if record is None:
            return None
        if record.status == TransactionStatus.PENDING.value:
            record.status = status.value
            record.block_number = block_number
            record.error_message = error_message
            record.updated_at = datetime.now(UTC)
        return copy.copy(record)

    async def list_transactions(
        self, project_id, transaction_type=None, status=None
    ) -> list[SimpleNamespace]:
        await asyncio.sleep(0)
        return [
            copy.copy(t)
            for t in sorted(self.transactions.values(), key=lambda t: t.created_at)
            if t.project_id == project_id
            and (transaction_type is None or t.transaction_type == transaction_type.value)
            and (status is None or t.status == status.value)
        ]


# ---------------------------------------------------------------------------
# Fake upstream APIs
# ---------------------------------------------------------------------------


def github_commits(count: int) -> list[dict]:
    """A commits API page with ``count`` entries, newest first."""
    return [
        {
            "sha": f"{count - n:040x}",
            "html_url": f"https://github.com/acme/site/commit/{count - n:040x}",
            "commit": {
                "message": f"Commit {count - n}\n\nlonger body",
                "author": {
                    "name": "Dev",
                    "email": "dev@example.com",
                    "date": f"2026-03-{(count - n) % 28 + 1:02d}T10:00:00Z",
                },
            },
        }
        for n in range(count)
    ]


class FakeGitHub:
    """Serves the commits endpoint; switch ``commits``/``status_code``/``timeout`` per test."""

    def __init__(self, commits: int = 0) -> None:
        self.commits = commits
        self.status_code = 200
        self.timeout = False
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"message": "API rate limit exceeded"})
        return httpx.Response(200, json=github_commits(self.commits))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def gateway() -> SimulatedLedgerGateway:
    return SimulatedLedgerGateway()


@pytest.fixture
def ledger_client(gateway: SimulatedLedgerGateway) -> LedgerClient:
    return LedgerClient(gateway, confirmation_attempts=3, backoff_seconds=0, backoff_max_seconds=0)


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def oracle_resolver(github: FakeGitHub):
    def resolve(method: str):
        return OracleFactory.create(method, transport=github.transport)

    return resolve


@pytest.fixture
def coordinator(store, ledger_client, oracle_resolver) -> VerificationCoordinator:
    return VerificationCoordinator(
        store,
        ledger_client,
        oracle_resolver=oracle_resolver,
        oracle_attempts=2,
        oracle_backoff_min=0,
        oracle_backoff_max=0,
    )


@pytest.fixture
def project_service(store, gateway) -> ProjectService:
    return ProjectService(store, gateway)


@pytest.fixture
def repository_config() -> dict:
    return {
        "owner": "acme",
        "repo": "site",
        "branch": "main",
        "min_commits": 3,
        "access_token": "test-token",
    }


@pytest.fixture
def make_project(project_service: ProjectService, coordinator: VerificationCoordinator):
    """Return an async factory: create a project, deploy its ledger and fund it.

    Usage:
        project = await make_project(["100"], method="manual", fund=True)
    """

    async def factory(
        amounts: list[str],
        method: str = "manual",
        config: dict | None = None,
        deploy: bool = True,
        fund: bool = True,
    ):
        milestones = [
            {
                "title": f"Milestone {index}",
                "amount": amount,
                "verification_method": method,
                "verification_config": dict(config or {}),
            }
            for index, amount in enumerate(amounts)
        ]
        project = await project_service.create_project(
            title="Test project",
            client_address=CLIENT,
            freelancer_address=FREELANCER,
            total_amount=sum((Decimal(a) for a in amounts), Decimal(0)),
            milestones=milestones,
            deploy=deploy,
        )
        if deploy and fund:
            await coordinator.fund_project(project.id)
        return await project_service.get_project(project.id)

    return factory
