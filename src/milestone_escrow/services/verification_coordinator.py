"""Verification Coordinator: keeps the escrow ledger and the record store consistent.

Every operation follows the same rule: the ledger moves first, the store
follows once the ledger outcome is confirmed. The store is a conservative lag
of the ledger and is only ever moved forward (monotonic compare-and-set
writes), so interleaved coordinators cannot pay twice or roll a milestone back.

Verification attempt against the milestone at slot ``i``:
    1. Validate configuration, call the oracle (timeout + backoff on transport failure)
    2. Append a verification record with the raw verdict
    3. Negative verdict -> "not verified", nothing else changes
    4. Positive verdict -> evidence hash from the canonical evidence payload
    5. Ledger verify(i, hash); AlreadyVerified counts as success
    6. Milestone -> verified

Release (client-triggered, separate call):
    7. Ledger release(i); AlreadyPaid counts as success
    8. Transaction record confirmed, milestone -> paid, project -> completed on the last slot

A confirmation that does not arrive in time is resolved by querying the
ledger for the operation's effect; if the effect is not visible yet the
caller gets ConfirmationPendingError.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from milestone_escrow.config import get_settings
from milestone_escrow.domain.enums import (
    LedgerState,
    MilestoneStatus,
    ProjectStatus,
    TransactionStatus,
    TransactionType,
    VerificationMethod,
    VerificationOutcome,
)
from milestone_escrow.domain.evidence import evidence_hash
from milestone_escrow.domain.exceptions import (
    AlreadyFundedError,
    AlreadyPaidError,
    AlreadyVerifiedError,
    ConfirmationPendingError,
    ConsistencyError,
    LedgerError,
    LedgerNotDeployedError,
    MilestoneNotFoundError,
    NotActiveError,
    OracleUnavailableError,
    ProjectNotFoundError,
)
from milestone_escrow.domain.ledger import from_base_units, to_base_units
from milestone_escrow.domain.oracle_protocol import OracleRequest, OracleVerdict
from milestone_escrow.domain.state_machine import (
    advance_target,
    event_sources,
    validate_transition,
)
from milestone_escrow.ledger.gateway import LedgerOperation
from milestone_escrow.logging_config import get_logger
from milestone_escrow.oracles import OracleFactory
from milestone_escrow.oracles.config_schemas import (
    require_credentials,
    validate_verification_config,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable
    from datetime import datetime

    from milestone_escrow.domain.oracle_protocol import VerificationOracle
    from milestone_escrow.domain.store_protocol import RecordStore
    from milestone_escrow.ledger.client import LedgerClient
    from milestone_escrow.ledger.gateway import LedgerEvent

logger = get_logger(__name__)

_EXTERNAL_METHODS = frozenset(
    {VerificationMethod.REPOSITORY_ACTIVITY.value, VerificationMethod.DESIGN_VERSION.value}
)

# Project events that bring the store up to each ledger state, and the statuses
# the store may settle at (the first is the overwrite target when the events
# cannot get there). An unfunded ledger also backs an off-chain cancelled draft.
_LEDGER_CATCH_UP: dict[LedgerState, tuple[tuple[str, ...], tuple[ProjectStatus, ...]]] = {
    LedgerState.UNFUNDED: ((), (ProjectStatus.DRAFT, ProjectStatus.CANCELLED)),
    LedgerState.ACTIVE: (("confirm_funded",), (ProjectStatus.ACTIVE,)),
    LedgerState.COMPLETED: (
        ("confirm_funded", "confirm_completed"),
        (ProjectStatus.COMPLETED,),
    ),
    LedgerState.CANCELLED: (("confirm_cancelled",), (ProjectStatus.CANCELLED,)),
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerificationAttempt:
    """What one verify call observed and did."""

    project_id: str
    order_index: int
    verified: bool
    milestone_status: str
    message: str
    summary: str = ""
    count: int = 0
    threshold: int = 0
    items: list = field(default_factory=list)
    evidence_hash: str | None = None
    outcome: str | None = None
    already_verified: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LedgerActionResult:
    """Outcome of a fund, release or cancel call."""

    project_id: str
    action: str
    project_status: str
    tx_hash: str | None = None
    block_number: int | None = None
    amount: str | None = None
    order_index: int | None = None
    milestone_status: str | None = None
    already_applied: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReconcileReport:
    project_id: str
    ledger_state: str
    project_status: str = ""
    milestones_advanced: list[int] = field(default_factory=list)
    milestones_overwritten: list[int] = field(default_factory=list)
    project_overwritten: bool = False
    transactions_backfilled: int = 0
    transactions_resolved: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class VerificationCoordinator:
    """Drives oracle verdicts into ledger transitions and the store projection.

    Args:
        store: The off-chain record store.
        ledger: Confirmation-aware ledger client.
        oracle_resolver: Callable returning the oracle for a verification method.
        oracle_attempts / oracle_backoff_min / oracle_backoff_max: Retry policy
            for transport failures. Defaults come from settings.
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerClient,
        oracle_resolver: Callable[[str], VerificationOracle] | None = None,
        oracle_attempts: int | None = None,
        oracle_backoff_min: float | None = None,
        oracle_backoff_max: float | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._ledger = ledger
        self._resolve_oracle = oracle_resolver or OracleFactory.create
        self._oracle_attempts = oracle_attempts or settings.oracle_max_attempts
        self._backoff_min = (
            oracle_backoff_min
            if oracle_backoff_min is not None
            else settings.oracle_backoff_min_seconds
        )
        self._backoff_max = (
            oracle_backoff_max
            if oracle_backoff_max is not None
            else settings.oracle_backoff_max_seconds
        )
        self._decimals = settings.ledger_asset_decimals

    # ------------------------------------------------------------------
    # Verification (steps 1-6)
    # ------------------------------------------------------------------

    async def verify_milestone(
        self,
        project_id: uuid.UUID,
        order_index: int,
        reviewer: str | None = None,
        since: datetime | None = None,
    ) -> VerificationAttempt:
        """Run one verification attempt for a milestone.

        Raises:
            VerificationConfigError: configuration unusable (before any oracle call).
            LedgerNotFoundError: the recorded ledger address holds no ledger (no record written).
            OracleUnavailableError: oracle still failing after retries (no record written).
            LedgerError: the ledger rejected verify for a reason other than AlreadyVerified.
            ConfirmationPendingError: verify submitted but its effect is not visible yet.
        """
        project = await self._require_project(project_id)
        milestone = await self._require_milestone(project_id, order_index)
        if project.status == ProjectStatus.CANCELLED.value:
            raise NotActiveError(f"Project {project_id} is cancelled")
        address = self._require_ledger(project)

        if MilestoneStatus(milestone.status).is_at_least(MilestoneStatus.VERIFIED):
            return VerificationAttempt(
                project_id=str(project_id),
                order_index=order_index,
                verified=True,
                milestone_status=milestone.status,
                message="Milestone already verified",
                evidence_hash=milestone.evidence_hash,
                already_verified=True,
            )

        method = milestone.verification_method
        config = validate_verification_config(method, milestone.verification_config)
        require_credentials(method, config)
        # A stale address must fail before the verdict is recorded.
        await self._ledger.gateway.get_state(address)

        # Step 1: oracle
        oracle = self._resolve_oracle(method)
        request = OracleRequest(
            milestone_id=str(milestone.id),
            config=config,
            since=since,
            reviewer=reviewer,
        )
        verdict = await self._evaluate(oracle, request, project_id, order_index)

        # Step 2: record the raw verdict
        committed_hash = evidence_hash(verdict.evidence) if verdict.verified else None
        outcome = self._outcome_for(verdict)
        await self._store.append_verification_record(
            milestone_id=milestone.id,
            verification_method=VerificationMethod(method),
            oracle_response=verdict.to_dict(),
            outcome=outcome,
            evidence_hash=committed_hash,
            error_message=verdict.error,
        )
        if method == VerificationMethod.REPOSITORY_ACTIVITY.value and verdict.determined:
            await self._refresh_activity(project, config, verdict)

        logger.info(
            "coordinator.verify.verdict",
            project_id=str(project_id),
            order_index=order_index,
            method=method,
            verified=verdict.verified,
            outcome=outcome.value,
            count=verdict.count,
            threshold=verdict.threshold,
        )

        # Step 3: negative verdict
        if not verdict.verified:
            return VerificationAttempt(
                project_id=str(project_id),
                order_index=order_index,
                verified=False,
                milestone_status=milestone.status,
                message=self._negative_message(verdict),
                summary=verdict.summary,
                count=verdict.count,
                threshold=verdict.threshold,
                items=verdict.items,
                outcome=outcome.value,
            )

        # Steps 4-5: commit the evidence hash to the ledger
        already_verified = False
        try:
            await self._ledger.execute(
                address,
                LedgerOperation.verify(order_index, committed_hash),
                sender=project.client_address,
            )
            logger.info(
                "coordinator.verify.ledger_confirmed",
                project_id=str(project_id),
                order_index=order_index,
                evidence_hash=committed_hash,
            )
        except AlreadyVerifiedError:
            already_verified = True
            committed_hash = (await self._ledger.gateway.get_slot(address, order_index)).evidence_hash
            logger.info(
                "coordinator.verify.already_verified",
                project_id=str(project_id),
                order_index=order_index,
            )
        except ConfirmationPendingError:
            slot = await self._ledger.gateway.get_slot(address, order_index)
            if not slot.verified:
                raise
            committed_hash = slot.evidence_hash
            logger.info(
                "coordinator.verify.confirmed_by_effect",
                project_id=str(project_id),
                order_index=order_index,
            )

        # Step 6: project the ledger state
        await self._store.advance_milestone(
            milestone.id, MilestoneStatus.VERIFIED, evidence_hash=committed_hash
        )
        current = await self._store.get_milestone(project_id, order_index)

        return VerificationAttempt(
            project_id=str(project_id),
            order_index=order_index,
            verified=True,
            milestone_status=current.status,
            message="Milestone verified",
            summary=verdict.summary,
            count=verdict.count,
            threshold=verdict.threshold,
            items=verdict.items,
            evidence_hash=committed_hash,
            outcome=outcome.value,
            already_verified=already_verified,
        )

    # ------------------------------------------------------------------
    # Release (steps 7-8)
    # ------------------------------------------------------------------

    async def release_milestone(
        self, project_id: uuid.UUID, order_index: int
    ) -> LedgerActionResult:
        """Pay a verified milestone to the freelancer.

        Raises:
            LedgerError: NotVerified, NotActive, InvalidSlot ... (milestone not marked paid).
            ConfirmationPendingError: release submitted, payment not visible yet.
        """
        project = await self._require_project(project_id)
        milestone = await self._require_milestone(project_id, order_index)
        address = self._require_ledger(project)

        if milestone.status == MilestoneStatus.PAID.value:
            return LedgerActionResult(
                project_id=str(project_id),
                action="release",
                project_status=project.status,
                amount=str(milestone.amount),
                order_index=order_index,
                milestone_status=milestone.status,
                already_applied=True,
            )

        tx_hash = await self._ledger.submit(
            address, LedgerOperation.release(order_index), sender=project.client_address
        )
        await self._store.record_transaction(
            transaction_hash=tx_hash,
            project_id=project.id,
            transaction_type=TransactionType.MILESTONE_PAYMENT,
            amount=Decimal(milestone.amount),
            from_address=address,
            to_address=project.freelancer_address,
            milestone_id=milestone.id,
        )

        already_paid = False
        paid_tx = tx_hash
        block_number: int | None = None
        try:
            receipt = await self._ledger.wait_for_confirmation(tx_hash, "release")
            block_number = receipt.block_number
            await self._store.update_transaction(
                tx_hash, TransactionStatus.CONFIRMED, block_number=block_number
            )
        except AlreadyPaidError as exc:
            already_paid = True
            await self._store.update_transaction(
                tx_hash, TransactionStatus.FAILED, error_message=exc.reason
            )
            event = await self._find_event(address, "MilestonePaid", order_index)
            if event is not None:
                await self._backfill(project, event, milestone.id)
                paid_tx, block_number = event.tx_hash, event.block_number
            logger.info(
                "coordinator.release.already_paid",
                project_id=str(project_id),
                order_index=order_index,
            )
        except LedgerError as exc:
            await self._store.update_transaction(
                tx_hash, TransactionStatus.FAILED, error_message=exc.reason
            )
            logger.warning(
                "coordinator.release.rejected",
                project_id=str(project_id),
                order_index=order_index,
                reason=exc.reason,
            )
            raise
        except ConfirmationPendingError:
            event = await self._find_event(address, "MilestonePaid", order_index)
            if event is None:
                raise
            await self._backfill(project, event, milestone.id)
            paid_tx, block_number = event.tx_hash, event.block_number
            already_paid = event.tx_hash != tx_hash
            logger.info(
                "coordinator.release.confirmed_by_effect",
                project_id=str(project_id),
                order_index=order_index,
                tx_hash=event.tx_hash,
            )

        await self._store.advance_milestone(milestone.id, MilestoneStatus.PAID)
        project_status = await self._complete_if_settled(project.id)

        logger.info(
            "coordinator.release.paid",
            project_id=str(project_id),
            order_index=order_index,
            tx_hash=paid_tx,
            amount=str(milestone.amount),
        )
        return LedgerActionResult(
            project_id=str(project_id),
            action="release",
            project_status=project_status,
            tx_hash=paid_tx,
            block_number=block_number,
            amount=str(milestone.amount),
            order_index=order_index,
            milestone_status=MilestoneStatus.PAID.value,
            already_applied=already_paid,
        )

    # ------------------------------------------------------------------
    # Funding and cancellation
    # ------------------------------------------------------------------

    async def fund_project(self, project_id: uuid.UUID) -> LedgerActionResult:
        """Deposit the project total into its ledger and activate the project.

        Raises:
            NotActiveError: the project is already cancelled or completed
                (nothing is submitted to the ledger).
        """
        project = await self._require_project(project_id)
        if project.status in (ProjectStatus.CANCELLED.value, ProjectStatus.COMPLETED.value):
            raise NotActiveError(f"Project {project_id} is {project.status}")
        address = self._require_ledger(project)
        amount = Decimal(project.total_amount)

        tx_hash = await self._ledger.submit(
            address,
            LedgerOperation.fund(to_base_units(amount, self._decimals)),
            sender=project.client_address,
        )
        await self._store.record_transaction(
            transaction_hash=tx_hash,
            project_id=project.id,
            transaction_type=TransactionType.ESCROW_DEPOSIT,
            amount=amount,
            from_address=project.client_address,
            to_address=address,
        )

        funded_tx, block_number, already_funded = tx_hash, None, False
        try:
            receipt = await self._ledger.wait_for_confirmation(tx_hash, "fund")
            block_number = receipt.block_number
            await self._store.update_transaction(
                tx_hash, TransactionStatus.CONFIRMED, block_number=block_number
            )
        except AlreadyFundedError as exc:
            await self._store.update_transaction(
                tx_hash, TransactionStatus.FAILED, error_message=exc.reason
            )
            # Only a store that never saw its own deposit confirm may treat
            # this as success; a second fund request is still an error.
            event = await self._find_event(address, "Funded")
            state = await self._ledger.gateway.get_state(address)
            if (
                project.status != ProjectStatus.DRAFT.value
                or event is None
                or state not in (LedgerState.ACTIVE, LedgerState.COMPLETED)
            ):
                raise
            await self._backfill(project, event)
            funded_tx, block_number, already_funded = event.tx_hash, event.block_number, True
        except LedgerError as exc:
            await self._store.update_transaction(
                tx_hash, TransactionStatus.FAILED, error_message=exc.reason
            )
            raise
        except ConfirmationPendingError:
            event = await self._find_event(address, "Funded")
            if event is None or event.tx_hash != tx_hash:
                raise
            await self._backfill(project, event)
            block_number = event.block_number

        await self._advance_project(project.id, "confirm_funded")
        current = await self._require_project(project_id)
        logger.info(
            "coordinator.fund.confirmed",
            project_id=str(project_id),
            tx_hash=funded_tx,
            amount=str(amount),
        )
        return LedgerActionResult(
            project_id=str(project_id),
            action="fund",
            project_status=current.status,
            tx_hash=funded_tx,
            block_number=block_number,
            amount=str(amount),
            already_applied=already_funded,
        )

    async def cancel_project(self, project_id: uuid.UUID) -> LedgerActionResult:
        """Cancel the escrow and refund every unpaid milestone to the client.

        A draft project whose ledger holds no funds (or was never deployed)
        is cancelled off-chain only.
        """
        project = await self._require_project(project_id)
        if project.status == ProjectStatus.DRAFT.value and (
            not project.ledger_address
            or await self._ledger.gateway.get_state(project.ledger_address)
            is LedgerState.UNFUNDED
        ):
            # Only from draft: a concurrent deposit may have activated it since.
            await self._advance_project(
                project.id, "confirm_cancelled", from_status=ProjectStatus.DRAFT
            )
            logger.info("coordinator.cancel.draft", project_id=str(project_id))
            return LedgerActionResult(
                project_id=str(project_id),
                action="cancel",
                project_status=ProjectStatus.CANCELLED.value,
            )
        address = self._require_ledger(project)

        refund = await self._expected_refund(address)
        tx_hash = await self._ledger.submit(
            address, LedgerOperation.cancel(), sender=project.client_address
        )
        await self._store.record_transaction(
            transaction_hash=tx_hash,
            project_id=project.id,
            transaction_type=TransactionType.REFUND,
            amount=from_base_units(refund, self._decimals),
            from_address=address,
            to_address=project.client_address,
        )

        cancel_tx, block_number, already_cancelled = tx_hash, None, False
        try:
            receipt = await self._ledger.wait_for_confirmation(tx_hash, "cancel")
            block_number = receipt.block_number
            await self._store.update_transaction(
                tx_hash, TransactionStatus.CONFIRMED, block_number=block_number
            )
        except NotActiveError as exc:
            await self._store.update_transaction(
                tx_hash, TransactionStatus.FAILED, error_message=exc.reason
            )
            event = await self._find_event(address, "Cancelled")
            if event is None or project.status == ProjectStatus.CANCELLED.value:
                raise
            await self._backfill(project, event)
            cancel_tx, block_number, already_cancelled = event.tx_hash, event.block_number, True
        except LedgerError as exc:
            await self._store.update_transaction(
                tx_hash, TransactionStatus.FAILED, error_message=exc.reason
            )
            raise
        except ConfirmationPendingError:
            event = await self._find_event(address, "Cancelled")
            if event is None or event.tx_hash != tx_hash:
                raise
            await self._backfill(project, event)
            block_number = event.block_number

        await self._advance_project(project.id, "confirm_cancelled")
        logger.info(
            "coordinator.cancel.confirmed",
            project_id=str(project_id),
            tx_hash=cancel_tx,
            refund=str(from_base_units(refund, self._decimals)),
        )
        return LedgerActionResult(
            project_id=str(project_id),
            action="cancel",
            project_status=ProjectStatus.CANCELLED.value,
            tx_hash=cancel_tx,
            block_number=block_number,
            amount=str(from_base_units(refund, self._decimals)),
            already_applied=already_cancelled,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile_project(self, project_id: uuid.UUID) -> ReconcileReport:
        """Bring the store in line with the ledger. The ledger always wins.

        Raises:
            ConsistencyError: the slot layout differs from the milestones
                (count or amount), which cannot be repaired from either side.
        """
        project = await self._require_project(project_id)
        address = self._require_ledger(project)
        gateway = self._ledger.gateway

        state = await gateway.get_state(address)
        milestones = await self._store.get_milestones(project.id)
        slot_count = await gateway.get_slot_count(address)
        if slot_count != len(milestones):
            raise ConsistencyError(
                f"Ledger {address} has {slot_count} slots, "
                f"project {project_id} has {len(milestones)} milestones"
            )

        report = ReconcileReport(project_id=str(project_id), ledger_state=state.value)

        for milestone in milestones:
            slot = await gateway.get_slot(address, milestone.order_index)
            if slot.amount != to_base_units(Decimal(milestone.amount), self._decimals):
                raise ConsistencyError(
                    f"Slot {milestone.order_index} amount {slot.amount} does not match "
                    f"milestone amount {milestone.amount}"
                )

            current = MilestoneStatus(milestone.status)
            if slot.paid:
                ledger_status = MilestoneStatus.PAID
            elif slot.verified:
                ledger_status = MilestoneStatus.VERIFIED
            else:
                ledger_status = None

            if ledger_status is not None and advance_target(current, ledger_status):
                await self._store.advance_milestone(
                    milestone.id, ledger_status, evidence_hash=slot.evidence_hash
                )
                report.milestones_advanced.append(milestone.order_index)
                continue

            ceiling = ledger_status or MilestoneStatus.SUBMITTED
            if current.rank > ceiling.rank:
                corrected = ledger_status or MilestoneStatus.IN_PROGRESS
                logger.warning(
                    "coordinator.reconcile.store_ahead",
                    project_id=str(project_id),
                    order_index=milestone.order_index,
                    store_status=current.value,
                    ledger_status=corrected.value,
                )
                await self._store.overwrite_milestone_status(milestone.id, corrected)
                report.milestones_overwritten.append(milestone.order_index)

        report.project_overwritten = await self._reconcile_project_status(project, state)
        report.transactions_backfilled = await self._backfill_events(project, address, milestones)
        report.transactions_resolved = await self._resolve_pending(project)

        report.project_status = (await self._require_project(project_id)).status
        logger.info("coordinator.reconcile.done", **report.to_dict())
        return report

    async def _reconcile_project_status(self, project: Any, state: LedgerState) -> bool:
        """Replay project events up to the ledger state; overwrite what they cannot reach.

        Returns True when the status had to be overwritten.
        """
        events, settled = _LEDGER_CATCH_UP[state]
        status = ProjectStatus(project.status)
        for event in events:
            if status.value in event_sources("project", event):
                await self._advance_project(project.id, event, from_status=status)
                status = ProjectStatus((await self._require_project(project.id)).status)
        if status in settled:
            return False

        target = settled[0]
        logger.warning(
            "coordinator.reconcile.project_ahead",
            project_id=str(project.id),
            store_status=status.value,
            ledger_state=state.value,
            corrected=target.value,
        )
        await self._store.overwrite_project_status(project.id, target)
        return True

    async def _backfill_events(self, project: Any, address: str, milestones: list) -> int:
        """Create confirmed records for ledger transfers the store never saw."""
        known = {tx.transaction_hash for tx in await self._store.list_transactions(project.id)}
        by_index = {m.order_index: m.id for m in milestones}
        backfilled = 0
        for event in await self._ledger.gateway.get_events(address):
            if event.name == "MilestoneVerified" or event.tx_hash in known:
                continue
            await self._backfill(project, event, by_index.get(event.slot_index))
            backfilled += 1
        return backfilled

    async def _resolve_pending(self, project: Any) -> int:
        pending = await self._store.list_transactions(
            project.id, status=TransactionStatus.PENDING
        )
        resolved = 0
        for record in pending:
            receipt = await self._ledger.gateway.get_receipt(record.transaction_hash)
            if receipt is None:
                continue
            if receipt.success:
                await self._store.update_transaction(
                    record.transaction_hash,
                    TransactionStatus.CONFIRMED,
                    block_number=receipt.block_number,
                )
            else:
                await self._store.update_transaction(
                    record.transaction_hash,
                    TransactionStatus.FAILED,
                    block_number=receipt.block_number,
                    error_message=receipt.revert_reason,
                )
            resolved += 1
        return resolved

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_project(self, project_id: uuid.UUID) -> Any:
        project = await self._store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(str(project_id))
        return project

    async def _require_milestone(self, project_id: uuid.UUID, order_index: int) -> Any:
        milestone = await self._store.get_milestone(project_id, order_index)
        if milestone is None:
            raise MilestoneNotFoundError(str(project_id), order_index)
        return milestone

    @staticmethod
    def _require_ledger(project: Any) -> str:
        if not project.ledger_address:
            raise LedgerNotDeployedError(str(project.id))
        return project.ledger_address

    async def _advance_project(
        self,
        project_id: uuid.UUID,
        event: str,
        from_status: ProjectStatus | None = None,
    ) -> bool:
        """Compare-and-set the project status along a ProjectStateMachine event.

        The write applies only while the stored status is one the event may
        fire from (narrowed to ``from_status`` when given).
        """
        sources = event_sources("project", event)
        if from_status is not None:
            target = validate_transition("project", from_status.value, event)
            sources = (from_status.value,)
        else:
            target = validate_transition("project", sources[0], event)
        return await self._store.advance_project(
            project_id, [ProjectStatus(s) for s in sources], ProjectStatus(target)
        )

    async def _evaluate(
        self,
        oracle: VerificationOracle,
        request: OracleRequest,
        project_id: uuid.UUID,
        order_index: int,
    ) -> OracleVerdict:
        """Call the oracle, retrying transient failures with exponential backoff."""
        verdict: OracleVerdict | None = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._oracle_attempts),
                wait=wait_exponential(
                    multiplier=self._backoff_min, min=self._backoff_min, max=self._backoff_max
                ),
                retry=retry_if_exception_type(OracleUnavailableError),
                reraise=True,
            ):
                with attempt:
                    verdict = await oracle.evaluate(request)
                    if verdict.transient:
                        logger.info(
                            "coordinator.verify.oracle_retry",
                            project_id=str(project_id),
                            order_index=order_index,
                            attempt=attempt.retry_state.attempt_number,
                            error=verdict.error,
                        )
                        raise OracleUnavailableError(
                            verdict.error or "oracle unavailable",
                            status_code=verdict.status_code,
                        )
        except OracleUnavailableError as exc:
            logger.warning(
                "coordinator.verify.oracle_unavailable",
                project_id=str(project_id),
                order_index=order_index,
                status_code=exc.status_code,
                error=exc.message,
            )
            raise
        assert verdict is not None
        return verdict

    @staticmethod
    def _outcome_for(verdict: OracleVerdict) -> VerificationOutcome:
        if verdict.pending:
            return VerificationOutcome.PENDING
        if verdict.determined:
            return VerificationOutcome.SUCCESS
        return VerificationOutcome.FAILED

    @staticmethod
    def _negative_message(verdict: OracleVerdict) -> str:
        if verdict.pending:
            return verdict.summary or "Awaiting reviewer approval"
        if verdict.error:
            return f"Oracle response could not be used as evidence: {verdict.error}"
        return (
            f"Milestone not yet verified: {verdict.count} of {verdict.threshold} "
            f"required items found"
        )

    async def _refresh_activity(self, project: Any, config: dict, verdict: OracleVerdict) -> None:
        evidence = verdict.evidence or {}
        fields: dict[str, Any] = {"commit_count": verdict.count}
        if evidence.get("commit_sha"):
            fields["latest_commit_sha"] = evidence["commit_sha"]
            fields["latest_commit_url"] = evidence.get("commit_url")
        if not project.repository_url:
            fields["repository_url"] = f"https://github.com/{config['owner']}/{config['repo']}"
        await self._store.update_project(project.id, **fields)

    async def _find_event(
        self, address: str, name: str, slot_index: int | None = None
    ) -> LedgerEvent | None:
        for event in await self._ledger.gateway.get_events(address):
            if event.name == name and (slot_index is None or event.slot_index == slot_index):
                return event
        return None

    async def _expected_refund(self, address: str) -> int:
        gateway = self._ledger.gateway
        unpaid = 0
        for index in range(await gateway.get_slot_count(address)):
            slot = await gateway.get_slot(address, index)
            if not slot.paid:
                unpaid += slot.amount
        return unpaid

    async def _backfill(
        self, project: Any, event: LedgerEvent, milestone_id: uuid.UUID | None = None
    ) -> None:
        """Ensure a confirmed transaction record exists for a ledger transfer event."""
        address = project.ledger_address
        if event.name == "Funded":
            kind, sender, receiver = (
                TransactionType.ESCROW_DEPOSIT, project.client_address, address
            )
        elif event.name == "MilestonePaid":
            kind, sender, receiver = (
                TransactionType.MILESTONE_PAYMENT, address, project.freelancer_address
            )
        elif event.name == "Cancelled":
            kind, sender, receiver = TransactionType.REFUND, address, project.client_address
        else:
            return

        await self._store.record_transaction(
            transaction_hash=event.tx_hash,
            project_id=project.id,
            transaction_type=kind,
            amount=from_base_units(event.amount, self._decimals),
            from_address=sender,
            to_address=receiver,
            milestone_id=milestone_id,
            status=TransactionStatus.CONFIRMED,
            block_number=event.block_number,
        )
        # The record may already exist as pending from the submitting call.
        await self._store.update_transaction(
            event.tx_hash, TransactionStatus.CONFIRMED, block_number=event.block_number
        )

    async def _complete_if_settled(self, project_id: uuid.UUID) -> str:
        milestones = await self._store.get_milestones(project_id)
        if milestones and all(m.status == MilestoneStatus.PAID.value for m in milestones):
            if await self._advance_project(project_id, "confirm_completed"):
                logger.info("coordinator.project_completed", project_id=str(project_id))
        return (await self._require_project(project_id)).status

    @staticmethod
    def is_externally_verified(method: str) -> bool:
        """True for methods the activity poller may evaluate on its own."""
        return method in _EXTERNAL_METHODS
