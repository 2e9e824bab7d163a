"""Activity poller: re-runs verification for milestones with an external signal.

Every cycle walks the active projects and runs the coordinator's verify
algorithm for each ``in_progress`` or ``submitted`` milestone whose method
is repository activity or design versions. Release stays client-triggered:
the poller never moves funds.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from milestone_escrow.domain.enums import MilestoneStatus, ProjectStatus
from milestone_escrow.domain.exceptions import EscrowPlatformError
from milestone_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from milestone_escrow.domain.store_protocol import RecordStore
    from milestone_escrow.services.verification_coordinator import (
        VerificationAttempt,
        VerificationCoordinator,
    )

logger = get_logger(__name__)

_POLLED_STATUSES = frozenset({MilestoneStatus.IN_PROGRESS.value, MilestoneStatus.SUBMITTED.value})


class VerificationPoller:
    def __init__(self, coordinator: VerificationCoordinator, store: RecordStore) -> None:
        self._coordinator = coordinator
        self._store = store

    async def poll_once(self) -> list[VerificationAttempt]:
        """Run one verification pass. Per-milestone failures are logged and skipped."""
        attempts: list[VerificationAttempt] = []
        for project in await self._store.list_projects(ProjectStatus.ACTIVE):
            for milestone in await self._store.get_milestones(project.id):
                if milestone.status not in _POLLED_STATUSES:
                    continue
                if not self._coordinator.is_externally_verified(milestone.verification_method):
                    continue
                try:
                    attempt = await self._coordinator.verify_milestone(
                        project.id, milestone.order_index
                    )
                except EscrowPlatformError as exc:
                    logger.warning(
                        "poller.verify_failed",
                        project_id=str(project.id),
                        order_index=milestone.order_index,
                        error_code=exc.code,
                        error=exc.message,
                    )
                    continue
                except Exception:
                    logger.exception(
                        "poller.verify_crashed",
                        project_id=str(project.id),
                        order_index=milestone.order_index,
                    )
                    continue
                attempts.append(attempt)

        logger.info(
            "poller.cycle_done",
            attempted=len(attempts),
            verified=sum(1 for a in attempts if a.verified),
        )
        return attempts

    async def run(self, interval_seconds: float, stop_event: asyncio.Event) -> None:
        """Poll every ``interval_seconds`` until ``stop_event`` is set."""
        logger.info("poller.started", interval_seconds=interval_seconds)
        while not stop_event.is_set():
            try:
                await self.poll_once()
            except Exception:
                logger.exception("poller.cycle_failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except TimeoutError:
                pass
        logger.info("poller.stopped")
