"""Project Service: project creation, ledger deployment and off-chain milestone steps.

Ledger-affecting operations (fund, verify, release, cancel) live in the
VerificationCoordinator. This service owns what never touches funds:
defining a project, deploying its ledger, and the worker-side milestone
transitions (start, submit) guarded by the milestone state machine.

Both REST routes and MCP tools call into this service.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed

from milestone_escrow.config import get_settings
from milestone_escrow.domain.enums import MilestoneStatus, ProjectStatus, VerificationMethod
from milestone_escrow.domain.exceptions import (
    InvalidProjectError,
    InvalidStateTransitionError,
    LedgerAlreadyDeployedError,
    MilestoneNotFoundError,
    NotActiveError,
    ProjectNotFoundError,
)
from milestone_escrow.domain.ledger import NATIVE_ASSET, from_base_units, to_base_units
from milestone_escrow.domain.state_machine import validate_transition
from milestone_escrow.logging_config import get_logger
from milestone_escrow.oracles.config_schemas import validate_verification_config

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from milestone_escrow.domain.store_protocol import RecordStore
    from milestone_escrow.ledger.gateway import LedgerGateway

logger = get_logger(__name__)


class ProjectService:
    """Manages project definitions and the off-chain milestone lifecycle."""

    def __init__(self, store: RecordStore, gateway: LedgerGateway) -> None:
        self._store = store
        self._gateway = gateway
        self._decimals = get_settings().ledger_asset_decimals

    # ------------------------------------------------------------------
    # Project Creation
    # ------------------------------------------------------------------

    async def create_project(
        self,
        title: str,
        client_address: str,
        freelancer_address: str,
        total_amount: Decimal,
        milestones: Sequence[dict],
        description: str | None = None,
        asset_address: str = NATIVE_ASSET,
        asset_symbol: str = "QIE",
        repository_url: str | None = None,
        deploy: bool = False,
    ) -> Any:
        """Create a project in ``draft`` with its milestones in order.

        Each milestone dict carries ``title``, ``amount`` and optionally
        ``description``, ``verification_method`` and ``verification_config``.
        Order index is the position in ``milestones`` and never changes.

        Raises:
            InvalidProjectError: no milestones, non-positive amounts, or a total
                that differs from the sum of milestone amounts.
            VerificationConfigError: a milestone's configuration fails its schema.
        """
        if not milestones:
            raise InvalidProjectError("A project needs at least one milestone")
        if client_address.lower() == freelancer_address.lower():
            raise InvalidProjectError("Client and freelancer must be different addresses")

        rows: list[dict] = []
        for index, entry in enumerate(milestones):
            amount = Decimal(str(entry["amount"]))
            if amount <= 0:
                raise InvalidProjectError(f"Milestone {index} amount must be positive")
            try:
                to_base_units(amount, self._decimals)
            except ValueError as exc:
                raise InvalidProjectError(f"Milestone {index}: {exc}") from exc

            method = str(entry.get("verification_method") or VerificationMethod.MANUAL)
            if method not in {m.value for m in VerificationMethod}:
                raise InvalidProjectError(f"Milestone {index}: unknown verification method {method}")
            config = validate_verification_config(method, entry.get("verification_config") or {})

            rows.append(
                {
                    "order_index": index,
                    "title": entry["title"],
                    "description": entry.get("description"),
                    "amount": amount,
                    "verification_method": method,
                    "verification_config": config,
                    "status": (
                        MilestoneStatus.IN_PROGRESS.value
                        if index == 0
                        else MilestoneStatus.PENDING.value
                    ),
                }
            )

        total = Decimal(str(total_amount))
        milestone_sum = sum((row["amount"] for row in rows), Decimal(0))
        if total != milestone_sum:
            raise InvalidProjectError(
                f"Total amount {total} does not equal the sum of milestone amounts {milestone_sum}"
            )

        project = await self._store.create_project(
            {
                "title": title,
                "description": description,
                "client_address": client_address,
                "freelancer_address": freelancer_address,
                "total_amount": total,
                "asset_address": asset_address,
                "asset_symbol": asset_symbol,
                "repository_url": repository_url,
                "status": ProjectStatus.DRAFT.value,
            },
            rows,
        )
        logger.info(
            "project.created",
            project_id=str(project.id),
            milestones=len(rows),
            total=str(total),
        )

        if deploy:
            project = await self.deploy_ledger(project.id)
        return project

    # ------------------------------------------------------------------
    # Ledger Deployment
    # ------------------------------------------------------------------

    async def deploy_ledger(self, project_id: uuid.UUID) -> Any:
        """Deploy the project's escrow ledger with its frozen slot amounts."""
        project = await self._get_project_or_raise(project_id)
        if project.ledger_address:
            raise LedgerAlreadyDeployedError(str(project_id), project.ledger_address)
        if project.status != ProjectStatus.DRAFT.value:
            raise InvalidStateTransitionError(project.status, "deployed")

        milestones = await self._store.get_milestones(project_id)
        slot_amounts = [
            to_base_units(Decimal(m.amount), self._decimals)
            for m in sorted(milestones, key=lambda m: m.order_index)
        ]
        deployment = await self._gateway.deploy(
            client=project.client_address,
            freelancer=project.freelancer_address,
            asset=project.asset_address,
            slot_amounts=slot_amounts,
        )
        project = await self._store.update_project(project_id, ledger_address=deployment.address)

        logger.info(
            "project.ledger_deployed",
            project_id=str(project_id),
            address=deployment.address,
            tx_hash=deployment.tx_hash,
        )
        return project

    # ------------------------------------------------------------------
    # Milestone Work Steps
    # ------------------------------------------------------------------

    async def start_milestone(self, project_id: uuid.UUID, order_index: int) -> Any:
        """pending -> in_progress."""
        return await self._fire(project_id, order_index, "start_work", MilestoneStatus.IN_PROGRESS)

    async def submit_milestone(self, project_id: uuid.UUID, order_index: int) -> Any:
        """in_progress -> submitted (stamps ``submitted_at``)."""
        return await self._fire(project_id, order_index, "submit_work", MilestoneStatus.SUBMITTED)

    async def _fire(
        self,
        project_id: uuid.UUID,
        order_index: int,
        event: str,
        target: MilestoneStatus,
    ) -> Any:
        project = await self._get_project_or_raise(project_id)
        if project.status == ProjectStatus.CANCELLED.value:
            raise NotActiveError(f"Project {project_id} is cancelled")

        milestone = await self._store.get_milestone(project_id, order_index)
        if milestone is None:
            raise MilestoneNotFoundError(str(project_id), order_index)

        try:
            validate_transition("milestone", milestone.status, event)
        except TransitionNotAllowed as exc:
            raise InvalidStateTransitionError(milestone.status, target.value) from exc

        if not await self._store.advance_milestone(milestone.id, target):
            # Another writer moved the milestone first.
            current = await self._store.get_milestone(project_id, order_index)
            raise InvalidStateTransitionError(current.status, target.value)

        logger.info(
            "project.milestone_transition",
            project_id=str(project_id),
            order_index=order_index,
            from_status=milestone.status,
            to_status=target.value,
        )
        return await self._store.get_milestone(project_id, order_index)

    # ------------------------------------------------------------------
    # Read Views
    # ------------------------------------------------------------------

    async def get_project(self, project_id: uuid.UUID) -> Any:
        return await self._get_project_or_raise(project_id)

    async def list_projects(self, status: ProjectStatus | None = None) -> list[Any]:
        return await self._store.list_projects(status)

    async def list_verifications(self, project_id: uuid.UUID) -> list[Any]:
        await self._get_project_or_raise(project_id)
        return await self._store.list_verification_records(project_id)

    async def list_transactions(self, project_id: uuid.UUID) -> list[Any]:
        await self._get_project_or_raise(project_id)
        return await self._store.list_transactions(project_id)

    async def get_ledger_view(self, project_id: uuid.UUID) -> dict:
        """Current ledger truth for a project: state, balance and slots."""
        project = await self._get_project_or_raise(project_id)
        if not project.ledger_address:
            return {"address": None, "state": None, "balance": "0", "slots": []}

        address = project.ledger_address
        slots = []
        for index in range(await self._gateway.get_slot_count(address)):
            slot = await self._gateway.get_slot(address, index)
            slots.append(
                {
                    "index": slot.index,
                    "amount": str(from_base_units(slot.amount, self._decimals)),
                    "verified": slot.verified,
                    "paid": slot.paid,
                    "evidence_hash": slot.evidence_hash,
                }
            )
        return {
            "address": address,
            "state": (await self._gateway.get_state(address)).value,
            "balance": str(from_base_units(await self._gateway.get_balance(address), self._decimals)),
            "slots": slots,
        }

    async def _get_project_or_raise(self, project_id: uuid.UUID) -> Any:
        project = await self._store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(str(project_id))
        return project
