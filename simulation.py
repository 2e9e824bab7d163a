#!/usr/bin/env python3
"""Milestone Escrow: End-to-End Simulation.

Drives a client and a freelancer through four scenarios against the real
coordinator, a SQLite record store, the simulated ledger and a fake GitHub API:

    Scenario A: Double Funding
        - One milestone of 100, fund(100) succeeds
        - A second fund(100) is rejected with AlreadyFunded

    Scenario B: Not Enough Activity
        - repository_activity milestone with min_commits=3
        - Repository has 2 commits -> verified: false, milestone unchanged

    Scenario C: Verified and Paid
        - Same repository now has 5 commits -> milestone verified
        - Client releases -> milestone paid, ledger balance drops by its amount

    Scenario D: Concurrent Attempts
        - Two verifications race, both see a positive verdict
        - The loser gets AlreadyVerified and still succeeds
        - Two releases race, the freelancer is paid exactly once

Usage:
    uv run python simulation.py
    uv run python simulation.py --scenario C
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import httpx

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from milestone_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

CLIENT = "0x" + "c1" * 20
FREELANCER = "0x" + "f2" * 20
REVIEWER = "0x" + "a3" * 20


# ---------------------------------------------------------------------------
# Fake GitHub
# ---------------------------------------------------------------------------
@dataclass
class FakeGitHub:
    """Serves /repos/{owner}/{repo}/commits with a configurable commit count."""

    commits: int = 0
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        payload = [
            {
                "sha": uuid.uuid4().hex + uuid.uuid4().hex[:8],
                "html_url": f"https://github.com/acme/escrow-demo/commit/{n}",
                "commit": {
                    "message": f"Commit {self.commits - n}\n\nDetails",
                    "author": {
                        "name": "Freelancer",
                        "email": "dev@example.com",
                        "date": datetime(2026, 1, 1, 12, n, tzinfo=UTC).isoformat(),
                    },
                },
            }
            for n in range(self.commits)
        ]
        return httpx.Response(200, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------
@dataclass
class Platform:
    engine: Any
    projects: Any
    coordinator: Any
    gateway: Any
    store: Any


async def build_platform(github: FakeGitHub) -> Platform:
    """Create an in-memory database and wire the services on top of it."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from milestone_escrow.infrastructure.database.orm_models import Base
    from milestone_escrow.infrastructure.database.store import SqlRecordStore
    from milestone_escrow.ledger import LedgerClient, SimulatedLedgerGateway
    from milestone_escrow.oracles import OracleFactory
    from milestone_escrow.services import ProjectService, VerificationCoordinator

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    store = SqlRecordStore(session_factory)
    gateway = SimulatedLedgerGateway()
    ledger = LedgerClient(gateway, confirmation_attempts=3, backoff_seconds=0)
    coordinator = VerificationCoordinator(
        store,
        ledger,
        oracle_resolver=lambda method: OracleFactory.create(method, transport=github.transport),
        oracle_backoff_min=0,
        oracle_backoff_max=0,
    )
    logger.info("simulation.platform_ready")
    return Platform(
        engine=engine,
        projects=ProjectService(store, gateway),
        coordinator=coordinator,
        gateway=gateway,
        store=store,
    )


async def create_repository_project(platform: Platform, amounts: list[str]) -> uuid.UUID:
    milestones = [
        {
            "title": f"Milestone {index + 1}",
            "amount": amount,
            "verification_method": "repository_activity",
            "verification_config": {
                "owner": "acme",
                "repo": "escrow-demo",
                "min_commits": 3,
                "access_token": "simulation-token",
            },
        }
        for index, amount in enumerate(amounts)
    ]
    project = await platform.projects.create_project(
        title="Escrow demo",
        client_address=CLIENT,
        freelancer_address=FREELANCER,
        total_amount=sum((Decimal(a) for a in amounts), Decimal(0)),
        milestones=milestones,
        repository_url="https://github.com/acme/escrow-demo",
        deploy=True,
    )
    await platform.coordinator.fund_project(project.id)
    return project.id


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    print("\n" + "=" * 70)
    print(f"  {text}")
    print("=" * 70)


def section(text: str) -> None:
    print(f"\n--- {text} ---")


async def print_ledger(platform: Platform, project_id: uuid.UUID) -> None:
    view = await platform.projects.get_ledger_view(project_id)
    print(f"  Ledger {view['address']} state={view['state']} balance={view['balance']}")
    for slot in view["slots"]:
        print(
            f"    slot {slot['index']}: amount={slot['amount']} "
            f"verified={slot['verified']} paid={slot['paid']}"
        )


async def print_records(platform: Platform, project_id: uuid.UUID) -> None:
    section("Verification records")
    for record in await platform.projects.list_verifications(project_id):
        response = record.oracle_response
        print(
            f"  [{record.outcome}] verified={response.get('verified')} "
            f"count={response.get('count')}/{response.get('threshold')}"
        )
    section("Transaction records")
    for tx in await platform.projects.list_transactions(project_id):
        print(f"  [{tx.status}] {tx.transaction_type} {tx.amount} {tx.transaction_hash[:12]}...")


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_a_double_funding(platform: Platform, github: FakeGitHub) -> None:
    from milestone_escrow.domain.exceptions import AlreadyFundedError
    from milestone_escrow.ledger import LedgerOperation

    banner("SCENARIO A: Double Funding")
    project = await platform.projects.create_project(
        title="Single milestone",
        client_address=CLIENT,
        freelancer_address=FREELANCER,
        total_amount=Decimal("100"),
        milestones=[{"title": "Logo", "amount": "100"}],
        deploy=True,
    )
    result = await platform.coordinator.fund_project(project.id)
    print(f"  First fund: status={result.project_status} tx={result.tx_hash[:12]}...")

    # A raw second deposit against the ledger.
    tx_hash = await platform.gateway.submit(
        project.ledger_address, LedgerOperation.fund(100 * 10**18), sender=CLIENT
    )
    receipt = await platform.gateway.get_receipt(tx_hash)
    print(f"  Second fund receipt: success={receipt.success} reason={receipt.revert_reason}")

    try:
        await platform.coordinator.fund_project(project.id)
    except AlreadyFundedError as exc:
        print(f"  Second fund via coordinator rejected: {exc.code}")
    await print_ledger(platform, project.id)


async def scenario_b_not_enough_activity(platform: Platform, github: FakeGitHub) -> None:
    banner("SCENARIO B: Not Enough Activity")
    project_id = await create_repository_project(platform, ["50"])
    github.commits = 2

    attempt = await platform.coordinator.verify_milestone(
        project_id, 0, since=datetime(2026, 1, 1, tzinfo=UTC)
    )
    print(f"  verified={attempt.verified} outcome={attempt.outcome}")
    print(f"  {attempt.message}")
    print(f"  milestone status={attempt.milestone_status}")
    await print_records(platform, project_id)


async def scenario_c_verified_and_paid(platform: Platform, github: FakeGitHub) -> None:
    banner("SCENARIO C: Verified and Paid")
    project_id = await create_repository_project(platform, ["40", "60"])

    github.commits = 2
    first = await platform.coordinator.verify_milestone(project_id, 0)
    print(f"  With 2 commits: verified={first.verified}")

    github.commits = 5
    second = await platform.coordinator.verify_milestone(project_id, 0)
    print(f"  With 5 commits: verified={second.verified} hash={second.evidence_hash[:18]}...")

    balance_before = await platform.gateway.get_balance(
        (await platform.projects.get_project(project_id)).ledger_address
    )
    release = await platform.coordinator.release_milestone(project_id, 0)
    balance_after = await platform.gateway.get_balance(
        (await platform.projects.get_project(project_id)).ledger_address
    )
    print(f"  Released {release.amount} -> milestone {release.milestone_status}")
    print(f"  Balance moved by {balance_before - balance_after} base units")

    await print_ledger(platform, project_id)
    await print_records(platform, project_id)


async def scenario_d_concurrent_attempts(platform: Platform, github: FakeGitHub) -> None:
    banner("SCENARIO D: Concurrent Attempts")
    project_id = await create_repository_project(platform, ["75"])
    github.commits = 4

    attempts = await asyncio.gather(
        platform.coordinator.verify_milestone(project_id, 0),
        platform.coordinator.verify_milestone(project_id, 0),
    )
    for n, attempt in enumerate(attempts, start=1):
        print(
            f"  Attempt {n}: verified={attempt.verified} "
            f"already_verified={attempt.already_verified}"
        )

    releases = await asyncio.gather(
        platform.coordinator.release_milestone(project_id, 0),
        platform.coordinator.release_milestone(project_id, 0),
    )
    for n, release in enumerate(releases, start=1):
        print(f"  Release {n}: already_applied={release.already_applied}")

    project = await platform.projects.get_project(project_id)
    print(f"  Project status: {project.status}")
    await print_ledger(platform, project_id)
    await print_records(platform, project_id)


SCENARIOS = {
    "A": scenario_a_double_funding,
    "B": scenario_b_not_enough_activity,
    "C": scenario_c_verified_and_paid,
    "D": scenario_d_concurrent_attempts,
}


# ===========================================================================
# Main
# ===========================================================================
async def run(names: list[str]) -> None:
    github = FakeGitHub()
    platform = await build_platform(github)
    try:
        print("\n  MILESTONE ESCROW — SIMULATION")
        print("  Database: SQLite (in-memory)  Ledger: simulated  GitHub: fake")
        for name in names:
            await SCENARIOS[name](platform, github)
        banner("ALL SCENARIOS COMPLETED")
    finally:
        await platform.engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Milestone Escrow Simulation")
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS),
        default=None,
        help="Run a single scenario. Default: run all.",
    )
    args = parser.parse_args()
    asyncio.run(run([args.scenario] if args.scenario else sorted(SCENARIOS)))
