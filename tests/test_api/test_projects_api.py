"""HTTP tests for the project routes, middleware error mapping and health check.

The app is assembled from the routers and middleware without the lifespan,
with the store, gateway, oracle resolver and Redis swapped for in-process
fakes through ``dependency_overrides``.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import create_async_engine

from milestone_escrow.api.deps import (
    get_gateway,
    get_oracle_resolver,
    get_record_store,
    get_redis_client,
)
from milestone_escrow.api.middleware import setup_middleware
from milestone_escrow.api.routes.health import router as health_router
from milestone_escrow.api.routes.projects import router as projects_router
from milestone_escrow.oracles import OracleFactory

CLIENT = "0x" + "c1" * 20
FREELANCER = "0x" + "f2" * 20
REVIEWER = "0x" + "e3" * 20


def _payload(**overrides) -> dict:
    body = {
        "title": "Landing page",
        "client_address": CLIENT,
        "freelancer_address": FREELANCER,
        "total_amount": "100",
        "milestones": [
            {"title": "Design", "amount": "40"},
            {"title": "Build", "amount": "60"},
        ],
    }
    body.update(overrides)
    return body


@pytest.fixture
def app(store, gateway) -> FastAPI:
    application = FastAPI()
    setup_middleware(application)
    application.include_router(health_router)
    application.include_router(projects_router)

    redis = FakeRedis(decode_responses=True)
    application.dependency_overrides[get_record_store] = lambda: store
    application.dependency_overrides[get_gateway] = lambda: gateway
    application.dependency_overrides[get_oracle_resolver] = lambda: OracleFactory.create
    application.dependency_overrides[get_redis_client] = lambda: redis
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


class TestCreateProject:
    @pytest.mark.asyncio
    async def test_create_deploys_ledger(self, client) -> None:
        response = await client.post("/api/v1/projects", json=_payload())

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "draft"
        assert body["ledger_address"] is not None
        assert [m["status"] for m in body["milestones"]] == ["in_progress", "pending"]
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_duplicate_idempotency_key(self, client) -> None:
        headers = {"Idempotency-Key": "create-42"}

        first = await client.post("/api/v1/projects", json=_payload(), headers=headers)
        second = await client.post("/api/v1/projects", json=_payload(), headers=headers)

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["error"] == "DUPLICATE_OPERATION"

    @pytest.mark.asyncio
    async def test_failed_create_releases_key(self, client) -> None:
        bad = _payload(
            milestones=[
                {
                    "title": "Ship",
                    "amount": "100",
                    "verification_method": "repository_activity",
                    "verification_config": {"owner": "acme"},
                }
            ]
        )
        body = {**bad, "idempotency_key": "retry-me"}

        rejected = await client.post("/api/v1/projects", json=body)
        accepted = await client.post(
            "/api/v1/projects", json={**_payload(), "idempotency_key": "retry-me"}
        )

        assert rejected.status_code == 422
        assert rejected.json()["error"] == "VERIFICATION_CONFIG_ERROR"
        assert accepted.status_code == 201

    @pytest.mark.asyncio
    async def test_total_mismatch_is_rejected(self, client) -> None:
        response = await client.post("/api/v1/projects", json=_payload(total_amount="99"))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_bad_address_is_rejected(self, client) -> None:
        response = await client.post("/api/v1/projects", json=_payload(client_address="alice"))
        assert response.status_code == 422


class TestEscrowFlow:
    @pytest.mark.asyncio
    async def test_fund_verify_release(self, client) -> None:
        project = (await client.post("/api/v1/projects", json=_payload())).json()
        base = f"/api/v1/projects/{project['id']}"

        funded = await client.post(f"{base}/fund")
        pending = await client.post(f"{base}/milestones/0/verify", json={})
        verified = await client.post(f"{base}/milestones/0/verify", json={"reviewer": REVIEWER})
        released = await client.post(f"{base}/milestones/0/release")

        assert funded.status_code == 200
        assert funded.json()["project_status"] == "active"
        assert pending.json()["verified"] is False
        assert pending.json()["outcome"] == "pending"
        assert verified.json()["verified"] is True
        assert verified.json()["evidence_hash"].startswith("0x")
        assert released.json()["milestone_status"] == "paid"

        ledger = (await client.get(f"{base}/ledger")).json()
        assert ledger["state"] == "active"
        assert Decimal(ledger["balance"]) == Decimal("60")
        assert [s["paid"] for s in ledger["slots"]] == [True, False]

        transactions = (await client.get(f"{base}/transactions")).json()
        assert [t["transaction_type"] for t in transactions] == [
            "escrow_deposit",
            "milestone_payment",
        ]
        verifications = (await client.get(f"{base}/verifications")).json()
        assert [v["outcome"] for v in verifications] == ["pending", "success"]

    @pytest.mark.asyncio
    async def test_release_unverified_maps_ledger_error(self, client) -> None:
        project = (await client.post("/api/v1/projects", json=_payload())).json()
        base = f"/api/v1/projects/{project['id']}"
        await client.post(f"{base}/fund")

        response = await client.post(f"{base}/milestones/0/release")

        assert response.status_code == 409
        assert response.json()["reason"] == "NotVerified"

    @pytest.mark.asyncio
    async def test_milestone_work_steps(self, client) -> None:
        project = (await client.post("/api/v1/projects", json=_payload())).json()
        base = f"/api/v1/projects/{project['id']}"

        early = await client.post(f"{base}/milestones/1/submit")
        started = await client.post(f"{base}/milestones/1/start")
        submitted = await client.post(f"{base}/milestones/1/submit")

        assert early.status_code == 409
        assert early.json()["error"] == "INVALID_STATE_TRANSITION"
        assert started.json()["status"] == "in_progress"
        assert submitted.json()["status"] == "submitted"

    @pytest.mark.asyncio
    async def test_cancel_and_reconcile(self, client) -> None:
        project = (await client.post("/api/v1/projects", json=_payload())).json()
        base = f"/api/v1/projects/{project['id']}"
        await client.post(f"{base}/fund")

        cancelled = await client.post(f"{base}/cancel")
        report = await client.post(f"{base}/reconcile")

        assert cancelled.json()["project_status"] == "cancelled"
        assert Decimal(cancelled.json()["amount"]) == Decimal("100")
        assert report.json()["ledger_state"] == "cancelled"

    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, client) -> None:
        funded = (await client.post("/api/v1/projects", json=_payload())).json()
        await client.post("/api/v1/projects", json=_payload())
        await client.post(f"/api/v1/projects/{funded['id']}/fund")

        listed = (await client.get("/api/v1/projects", params={"status": "active"})).json()

        assert [p["id"] for p in listed] == [funded["id"]]


class TestErrors:
    @pytest.mark.asyncio
    async def test_unknown_project(self, client) -> None:
        response = await client.get(f"/api/v1/projects/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"] == "PROJECT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_milestone(self, client) -> None:
        project = (await client.post("/api/v1/projects", json=_payload())).json()

        response = await client.post(f"/api/v1/projects/{project['id']}/milestones/9/verify")

        assert response.status_code == 404
        assert response.json()["error"] == "MILESTONE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_fund_without_ledger(self, client) -> None:
        project = (await client.post("/api/v1/projects", json=_payload(deploy=False))).json()

        response = await client.post(f"/api/v1/projects/{project['id']}/fund")

        assert response.status_code == 400
        assert response.json()["error"] == "LEDGER_NOT_DEPLOYED"

    @pytest.mark.asyncio
    async def test_deploy_twice(self, client) -> None:
        project = (await client.post("/api/v1/projects", json=_payload())).json()

        response = await client.post(f"/api/v1/projects/{project['id']}/deploy")

        assert response.status_code == 409
        assert response.json()["error"] == "LEDGER_ALREADY_DEPLOYED"

    @pytest.mark.asyncio
    async def test_fund_cancelled_draft_is_rejected(self, client) -> None:
        project = (await client.post("/api/v1/projects", json=_payload())).json()
        base = f"/api/v1/projects/{project['id']}"
        await client.post(f"{base}/cancel")

        response = await client.post(f"{base}/fund")
        ledger = (await client.get(f"{base}/ledger")).json()

        assert response.status_code == 409
        assert response.json()["reason"] == "NotActive"
        assert ledger["state"] == "unfunded"
        assert Decimal(ledger["balance"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_stale_ledger_address(self, client, store) -> None:
        project = (await client.post("/api/v1/projects", json=_payload())).json()
        store.projects[uuid.UUID(project["id"])].ledger_address = "0x" + "ab" * 20

        response = await client.get(f"/api/v1/projects/{project['id']}/ledger")

        assert response.status_code == 404
        assert response.json()["error"] == "LEDGER_NOT_FOUND"


class TestCredentialRedaction:
    @pytest.mark.asyncio
    async def test_access_token_is_never_returned(self, client) -> None:
        config = {"owner": "acme", "repo": "site", "access_token": "ghp_secret"}
        payload = _payload(
            milestones=[
                {"title": "Design", "amount": "40"},
                {
                    "title": "Build",
                    "amount": "60",
                    "verification_method": "repository_activity",
                    "verification_config": config,
                },
            ]
        )

        created = await client.post("/api/v1/projects", json=payload)
        base = f"/api/v1/projects/{created.json()['id']}"
        fetched = await client.get(base)
        started = await client.post(f"{base}/milestones/1/start")
        listed = await client.get("/api/v1/projects")

        assert created.status_code == 201
        assert created.json()["milestones"][1]["verification_config"] == {
            "owner": "acme",
            "repo": "site",
        }
        assert fetched.json()["milestones"][1]["verification_config"] == {
            "owner": "acme",
            "repo": "site",
        }
        assert started.status_code == 200
        assert "access_token" not in started.json()["verification_config"]
        for response in (created, fetched, started, listed):
            assert "ghp_secret" not in response.text

    @pytest.mark.asyncio
    async def test_stored_config_keeps_the_token(self, client, store) -> None:
        config = {"owner": "acme", "repo": "site", "access_token": "ghp_secret"}
        payload = _payload(
            total_amount="60",
            milestones=[
                {
                    "title": "Build",
                    "amount": "60",
                    "verification_method": "repository_activity",
                    "verification_config": config,
                }
            ],
        )

        created = (await client.post("/api/v1/projects", json=payload)).json()

        milestone = await store.get_milestone(uuid.UUID(created["id"]), 0)
        assert milestone.verification_config["access_token"] == "ghp_secret"


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client) -> None:
        engine = create_async_engine("sqlite+aiosqlite://")
        redis = AsyncMock()
        with (
            patch("milestone_escrow.api.routes.health.get_engine", return_value=engine),
            patch("milestone_escrow.api.routes.health.get_redis", return_value=redis),
        ):
            response = await client.get("/health")
        await engine.dispose()

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert (body["database"], body["redis"], body["ledger"]) == ("healthy",) * 3
        assert body["ledger_backend"] == "simulated"

    @pytest.mark.asyncio
    async def test_degraded_without_redis(self, client) -> None:
        engine = create_async_engine("sqlite+aiosqlite://")
        with (
            patch("milestone_escrow.api.routes.health.get_engine", return_value=engine),
            patch(
                "milestone_escrow.api.routes.health.get_redis",
                side_effect=RuntimeError("Redis not initialized"),
            ),
        ):
            response = await client.get("/health")
        await engine.dispose()

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["redis"].startswith("unhealthy")

    @pytest.mark.asyncio
    async def test_unavailable_without_database(self, client) -> None:
        engine = MagicMock()
        engine.connect.side_effect = OSError("connection refused")
        with (
            patch("milestone_escrow.api.routes.health.get_engine", return_value=engine),
            patch("milestone_escrow.api.routes.health.get_redis", return_value=AsyncMock()),
        ):
            response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unavailable"
        assert response.json()["database"] == "unhealthy: connection refused"

    @pytest.mark.asyncio
    async def test_unavailable_when_ledger_reads_fail(self, client, gateway) -> None:
        engine = create_async_engine("sqlite+aiosqlite://")
        gateway.get_receipt = AsyncMock(side_effect=ConnectionError("node unreachable"))
        with (
            patch("milestone_escrow.api.routes.health.get_engine", return_value=engine),
            patch("milestone_escrow.api.routes.health.get_redis", return_value=AsyncMock()),
        ):
            response = await client.get("/health")
        await engine.dispose()

        assert response.status_code == 503
        assert response.json()["ledger"] == "unhealthy: node unreachable"
