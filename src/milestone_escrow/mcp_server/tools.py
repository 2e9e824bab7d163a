"""MCP Tool definitions for the milestone escrow platform.

These tools expose the platform via the Model Context Protocol so agents and
operators can drive projects programmatically.

Tools:
    - create_project: Define a project with milestones and deploy its ledger
    - fund_project: Deposit the project total into escrow
    - submit_milestone: Mark a milestone's work as submitted
    - verify_milestone: Run a verification attempt for a milestone
    - release_milestone: Pay a verified milestone to the freelancer
    - cancel_project: Cancel the escrow and refund unpaid milestones
    - reconcile_project: Bring the record store in line with the ledger
    - check_status: Project, milestone and ledger status in one call

The MCP server is mounted into FastAPI at /mcp via app.mount().
Each tool builds its own store and ledger client (no FastAPI Depends available).
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from mcp.server.fastmcp import FastMCP
from pydantic import TypeAdapter, ValidationError

from milestone_escrow.domain.exceptions import EscrowPlatformError
from milestone_escrow.domain.state_machine import MilestoneStateMachine
from milestone_escrow.logging_config import get_logger
from milestone_escrow.schemas.project import CreateProjectRequest, MilestoneInput

logger = get_logger(__name__)

# Milestone events and the operation that fires each one.
_MILESTONE_ACTIONS = {
    "start_work": "start_milestone",
    "submit_work": "submit_milestone",
    "confirm_verified": "verify_milestone",
    "confirm_paid": "release_milestone",
}

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "Milestone Escrow",
    json_response=True,
)


def _store():
    """Create a record store for MCP tool context (not in a FastAPI request)."""
    from milestone_escrow.infrastructure.database.engine import get_session_factory
    from milestone_escrow.infrastructure.database.store import SqlRecordStore

    return SqlRecordStore(get_session_factory())


def _project_service():
    from milestone_escrow.ledger import get_ledger_gateway
    from milestone_escrow.services.project_service import ProjectService

    return ProjectService(_store(), get_ledger_gateway())


def _coordinator():
    from milestone_escrow.ledger import get_ledger_client
    from milestone_escrow.services.verification_coordinator import VerificationCoordinator

    return VerificationCoordinator(_store(), get_ledger_client())


def _error(tool: str, exc: Exception) -> dict:
    if isinstance(exc, EscrowPlatformError):
        logger.warning(f"mcp.{tool}.rejected", code=exc.code, error=exc.message)
        return {"error": exc.message, "code": exc.code}
    logger.exception(f"mcp.{tool}.error")
    return {"error": str(exc)}


@mcp.tool()
async def create_project(
    title: str,
    client_address: str,
    freelancer_address: str,
    milestones: list[dict],
    description: str = "",
    asset_symbol: str = "QIE",
    repository_url: str = "",
) -> dict:
    """Create a milestone escrow project and deploy its ledger.

    Args:
        title: Project title.
        client_address: Wallet that funds the escrow (0x-prefixed, 42 chars).
        freelancer_address: Wallet that receives milestone payments.
        milestones: Ordered list of {"title", "amount", "verification_method"?,
            "verification_config"?, "description"?}. The list order is final.
        description: Optional project description.
        asset_symbol: Symbol of the funding asset.
        repository_url: Optional repository URL shown with activity snapshots.

    Returns:
        Project details including the project_id you'll need for future calls.
    """
    try:
        inputs = TypeAdapter(list[MilestoneInput]).validate_python(milestones)
        request = CreateProjectRequest(
            title=title,
            description=description or None,
            client_address=client_address,
            freelancer_address=freelancer_address,
            total_amount=sum((m.amount for m in inputs), Decimal(0)),
            asset_symbol=asset_symbol,
            repository_url=repository_url or None,
            milestones=inputs,
        )
    except ValidationError as exc:
        logger.warning("mcp.create_project.invalid", errors=exc.error_count())
        return {
            "error": "Invalid project definition",
            "code": "VALIDATION_ERROR",
            "details": [
                {"loc": [str(part) for part in error["loc"]], "msg": error["msg"]}
                for error in exc.errors()
            ],
        }

    try:
        svc = _project_service()
        project = await svc.create_project(
            title=request.title,
            description=request.description,
            client_address=request.client_address,
            freelancer_address=request.freelancer_address,
            total_amount=request.total_amount,
            milestones=[m.model_dump(mode="json") for m in request.milestones],
            asset_symbol=request.asset_symbol,
            repository_url=request.repository_url,
            deploy=True,
        )
        return {
            "project_id": str(project.id),
            "status": project.status,
            "ledger_address": project.ledger_address,
            "total_amount": str(project.total_amount),
            "milestones": len(request.milestones),
            "message": "Project created and ledger deployed. Next step: fund the project.",
        }
    except Exception as exc:
        return _error("create_project", exc)


@mcp.tool()
async def fund_project(project_id: str) -> dict:
    """Deposit the project total into its escrow ledger.

    Args:
        project_id: UUID of the project.

    Returns:
        Funding transaction details and the new project status.
    """
    try:
        result = await _coordinator().fund_project(uuid.UUID(project_id))
        return {**result.to_dict(), "message": "Escrow funded. Work can begin."}
    except Exception as exc:
        return _error("fund_project", exc)


@mcp.tool()
async def submit_milestone(project_id: str, order_index: int) -> dict:
    """Mark a milestone's work as submitted for review.

    Args:
        project_id: UUID of the project.
        order_index: Position of the milestone (0-based).
    """
    try:
        milestone = await _project_service().submit_milestone(uuid.UUID(project_id), order_index)
        return {
            "project_id": project_id,
            "order_index": order_index,
            "status": milestone.status,
            "message": "Milestone submitted. Next step: verify it.",
        }
    except Exception as exc:
        return _error("submit_milestone", exc)


@mcp.tool()
async def verify_milestone(project_id: str, order_index: int, reviewer: str = "") -> dict:
    """Run a verification attempt against the milestone's oracle.

    Args:
        project_id: UUID of the project.
        order_index: Position of the milestone (0-based).
        reviewer: Reviewer address, required to approve manual milestones.

    Returns:
        The verdict, evidence hash and milestone status.
    """
    try:
        attempt = await _coordinator().verify_milestone(
            uuid.UUID(project_id), order_index, reviewer=reviewer or None
        )
        return attempt.to_dict()
    except Exception as exc:
        return _error("verify_milestone", exc)


@mcp.tool()
async def release_milestone(project_id: str, order_index: int) -> dict:
    """Pay a verified milestone to the freelancer.

    Args:
        project_id: UUID of the project.
        order_index: Position of the milestone (0-based).
    """
    try:
        result = await _coordinator().release_milestone(uuid.UUID(project_id), order_index)
        return result.to_dict()
    except Exception as exc:
        return _error("release_milestone", exc)


@mcp.tool()
async def cancel_project(project_id: str) -> dict:
    """Cancel the escrow and refund every unpaid milestone to the client.

    Args:
        project_id: UUID of the project.
    """
    try:
        result = await _coordinator().cancel_project(uuid.UUID(project_id))
        return result.to_dict()
    except Exception as exc:
        return _error("cancel_project", exc)


@mcp.tool()
async def reconcile_project(project_id: str) -> dict:
    """Bring the off-chain records in line with the ledger.

    Args:
        project_id: UUID of the project.
    """
    try:
        report = await _coordinator().reconcile_project(uuid.UUID(project_id))
        return report.to_dict()
    except Exception as exc:
        return _error("reconcile_project", exc)


@mcp.tool()
async def check_status(project_id: str) -> dict:
    """Check a project's status, its milestones and the ledger.

    Args:
        project_id: UUID of the project.

    Returns:
        Project status, per-milestone status with allowed next actions, and the ledger view.
    """
    try:
        svc = _project_service()
        pid = uuid.UUID(project_id)
        project = await svc.get_project(pid)
        return {
            "project_id": project_id,
            "status": project.status,
            "milestones": [
                {
                    "order_index": m.order_index,
                    "title": m.title,
                    "amount": str(m.amount),
                    "status": m.status,
                    "allowed_actions": [
                        _MILESTONE_ACTIONS[event]
                        for event in MilestoneStateMachine(m.status).get_allowed_events()
                    ],
                }
                for m in project.milestones
            ],
            "ledger": await svc.get_ledger_view(pid),
        }
    except Exception as exc:
        return _error("check_status", exc)
