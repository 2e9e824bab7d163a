"""Project REST API routes.

These endpoints provide the HTTP interface for defining projects, moving
funds through the escrow ledger and verifying milestones. The MCP tools in
mcp_server/tools.py call the same service layer, ensuring consistency.

Routes:
    POST   /api/v1/projects                                 — Create a project (+ deploy ledger)
    GET    /api/v1/projects                                 — List projects
    GET    /api/v1/projects/{id}                            — Project with milestones
    GET    /api/v1/projects/{id}/ledger                     — Ledger state, balance and slots
    POST   /api/v1/projects/{id}/deploy                     — Deploy the escrow ledger
    POST   /api/v1/projects/{id}/fund                       — Fund the escrow
    POST   /api/v1/projects/{id}/cancel                     — Cancel and refund unpaid milestones
    POST   /api/v1/projects/{id}/reconcile                  — Reconcile the store from the ledger
    POST   /api/v1/projects/{id}/milestones/{index}/start   — pending -> in_progress
    POST   /api/v1/projects/{id}/milestones/{index}/submit  — in_progress -> submitted
    POST   /api/v1/projects/{id}/milestones/{index}/verify  — Run a verification attempt
    POST   /api/v1/projects/{id}/milestones/{index}/release — Release a verified milestone
    GET    /api/v1/projects/{id}/verifications              — Verification records
    GET    /api/v1/projects/{id}/transactions               — Transaction records
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime

import redis.asyncio as aioredis  # noqa: TC002
from fastapi import APIRouter, Depends, Header

from milestone_escrow.api.deps import (
    get_coordinator,
    get_project_service,
    get_redis_client,
)
from milestone_escrow.domain.enums import ProjectStatus  # noqa: TC001
from milestone_escrow.domain.exceptions import DuplicateOperationError
from milestone_escrow.infrastructure.redis_client import release_idempotency, set_idempotency
from milestone_escrow.logging_config import get_logger
from milestone_escrow.schemas.project import (
    CreateProjectRequest,
    LedgerViewResponse,
    MilestoneResponse,
    ProjectResponse,
    ProjectSummaryResponse,
    TransactionRecordResponse,
    VerificationRecordResponse,
    VerifyMilestoneRequest,
)
from milestone_escrow.services.project_service import ProjectService  # noqa: TC001
from milestone_escrow.services.verification_coordinator import (  # noqa: TC001
    VerificationCoordinator,
)

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create / Deploy
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=201,
    summary="Create a project with its milestones",
)
async def create_project(
    request: CreateProjectRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    service: ProjectService = Depends(get_project_service),
    redis: aioredis.Redis | None = Depends(get_redis_client),
) -> ProjectResponse:
    """Create a project in ``draft`` and, by default, deploy its escrow ledger.

    Repeating a request with the same idempotency key (header or body) is
    rejected with 409 while the key is remembered.
    """
    key = idempotency_key or request.idempotency_key
    guarded = bool(key) and redis is not None
    if guarded and not await set_idempotency(key, redis=redis):
        raise DuplicateOperationError(key)

    try:
        project = await service.create_project(
            title=request.title,
            description=request.description,
            client_address=request.client_address,
            freelancer_address=request.freelancer_address,
            total_amount=request.total_amount,
            asset_address=request.asset_address,
            asset_symbol=request.asset_symbol,
            repository_url=request.repository_url,
            milestones=[m.model_dump(mode="json") for m in request.milestones],
            deploy=request.deploy,
        )
    except Exception:
        if guarded:
            await release_idempotency(key, redis=redis)
        raise

    project = await service.get_project(project.id)
    return ProjectResponse.model_validate(project)


@router.post(
    "/{project_id}/deploy",
    response_model=ProjectResponse,
    summary="Deploy the escrow ledger",
)
async def deploy_ledger(
    project_id: uuid.UUID,
    service: ProjectService = Depends(get_project_service),
) -> ProjectResponse:
    await service.deploy_ledger(project_id)
    return ProjectResponse.model_validate(await service.get_project(project_id))


# ---------------------------------------------------------------------------
# Ledger operations
# ---------------------------------------------------------------------------


@router.post("/{project_id}/fund", summary="Fund the escrow with the project total")
async def fund_project(
    project_id: uuid.UUID,
    coordinator: VerificationCoordinator = Depends(get_coordinator),
) -> dict:
    result = await coordinator.fund_project(project_id)
    return result.to_dict()


@router.post("/{project_id}/cancel", summary="Cancel and refund unpaid milestones")
async def cancel_project(
    project_id: uuid.UUID,
    coordinator: VerificationCoordinator = Depends(get_coordinator),
) -> dict:
    result = await coordinator.cancel_project(project_id)
    return result.to_dict()


@router.post("/{project_id}/reconcile", summary="Reconcile the store from the ledger")
async def reconcile_project(
    project_id: uuid.UUID,
    coordinator: VerificationCoordinator = Depends(get_coordinator),
) -> dict:
    report = await coordinator.reconcile_project(project_id)
    return report.to_dict()


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


@router.post(
    "/{project_id}/milestones/{order_index}/start",
    response_model=MilestoneResponse,
    summary="Start work on a milestone",
)
async def start_milestone(
    project_id: uuid.UUID,
    order_index: int,
    service: ProjectService = Depends(get_project_service),
) -> MilestoneResponse:
    milestone = await service.start_milestone(project_id, order_index)
    return MilestoneResponse.model_validate(milestone)


@router.post(
    "/{project_id}/milestones/{order_index}/submit",
    response_model=MilestoneResponse,
    summary="Submit a milestone for verification",
)
async def submit_milestone(
    project_id: uuid.UUID,
    order_index: int,
    service: ProjectService = Depends(get_project_service),
) -> MilestoneResponse:
    milestone = await service.submit_milestone(project_id, order_index)
    return MilestoneResponse.model_validate(milestone)


@router.post(
    "/{project_id}/milestones/{order_index}/verify",
    summary="Run a verification attempt",
)
async def verify_milestone(
    project_id: uuid.UUID,
    order_index: int,
    request: VerifyMilestoneRequest | None = None,
    coordinator: VerificationCoordinator = Depends(get_coordinator),
) -> dict:
    """Ask the milestone's oracle for a verdict and, if positive, verify the ledger slot.

    A negative verdict is a normal 200 response with ``verified: false``.
    """
    request = request or VerifyMilestoneRequest()
    attempt = await coordinator.verify_milestone(
        project_id,
        order_index,
        reviewer=request.reviewer,
        since=request.since,
    )
    return attempt.to_dict()


@router.post(
    "/{project_id}/milestones/{order_index}/release",
    summary="Release a verified milestone to the freelancer",
)
async def release_milestone(
    project_id: uuid.UUID,
    order_index: int,
    coordinator: VerificationCoordinator = Depends(get_coordinator),
) -> dict:
    result = await coordinator.release_milestone(project_id, order_index)
    return result.to_dict()


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=list[ProjectSummaryResponse],
    summary="List projects",
)
async def list_projects(
    status: ProjectStatus | None = None,
    service: ProjectService = Depends(get_project_service),
) -> list[ProjectSummaryResponse]:
    projects = await service.list_projects(status)
    return [ProjectSummaryResponse.model_validate(p) for p in projects]


@router.get(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Get a project with its milestones",
)
async def get_project(
    project_id: uuid.UUID,
    service: ProjectService = Depends(get_project_service),
) -> ProjectResponse:
    return ProjectResponse.model_validate(await service.get_project(project_id))


@router.get(
    "/{project_id}/ledger",
    response_model=LedgerViewResponse,
    summary="Read the project's escrow ledger",
)
async def get_ledger(
    project_id: uuid.UUID,
    service: ProjectService = Depends(get_project_service),
) -> LedgerViewResponse:
    return LedgerViewResponse(**await service.get_ledger_view(project_id))


@router.get(
    "/{project_id}/verifications",
    response_model=list[VerificationRecordResponse],
    summary="List verification records",
)
async def list_verifications(
    project_id: uuid.UUID,
    service: ProjectService = Depends(get_project_service),
) -> list[VerificationRecordResponse]:
    records = await service.list_verifications(project_id)
    return [VerificationRecordResponse.model_validate(r) for r in records]


@router.get(
    "/{project_id}/transactions",
    response_model=list[TransactionRecordResponse],
    summary="List transaction records",
)
async def list_transactions(
    project_id: uuid.UUID,
    service: ProjectService = Depends(get_project_service),
) -> list[TransactionRecordResponse]:
    records = await service.list_transactions(project_id)
    return [TransactionRecordResponse.model_validate(r) for r in records]
