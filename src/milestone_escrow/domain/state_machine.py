"""Status guards for milestones, projects and escrow ledgers.

Uses python-statemachine to enforce legal transitions at the domain level.
No matter what the API or an operator does, an illegal transition
(e.g., pending -> paid) raises TransitionNotAllowed.

Milestone transition table (off-chain projection):
    pending      -> in_progress   (start_work)
    in_progress  -> submitted     (submit_work)
    in_progress  -> verified      (confirm_verified, after the ledger slot is verified)
    submitted    -> verified      (confirm_verified)
    verified     -> paid          (confirm_paid, after the ledger slot is paid)

Project transition table:
    draft   -> active      (confirm_funded)
    active  -> completed   (confirm_completed)
    draft   -> cancelled   (confirm_cancelled, no ledger deployed yet)
    active  -> cancelled   (confirm_cancelled)

Ledger lifecycle:
    unfunded -> active     (fund)
    active   -> cancelled  (cancel)

Store writes are compare-and-set updates, so the coordinator needs the set of
statuses an event may fire from rather than a live machine instance;
``event_sources`` derives it from the tables above.

Reconciliation may move a milestone several steps at once to catch up with
the ledger; ``advance_target`` decides whether such a jump is a forward move.
"""

from __future__ import annotations

from functools import lru_cache

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from milestone_escrow.domain.enums import MilestoneStatus


class _GuardMixin:
    """Shared start-value validation and helpers."""

    def _validated_start(self, current_status: str) -> str:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        return current_status

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class MilestoneStateMachine(_GuardMixin, StateMachine):
    """Guards the off-chain milestone lifecycle.

    Usage:
        sm = MilestoneStateMachine(current_status="submitted")
        sm.confirm_verified()
        sm.status  # "verified"
    """

    # --- States ---
    pending = State("pending", initial=True)
    in_progress = State("in_progress")
    submitted = State("submitted")
    verified = State("verified")
    paid = State("paid", final=True)

    # --- Events / Transitions ---
    start_work = pending.to(in_progress)
    submit_work = in_progress.to(submitted)
    confirm_verified = in_progress.to(verified) | submitted.to(verified)
    confirm_paid = verified.to(paid)

    def __init__(self, current_status: str = "pending") -> None:
        super().__init__(start_value=self._validated_start(current_status))


class ProjectStateMachine(_GuardMixin, StateMachine):
    """Guards the off-chain project lifecycle."""

    draft = State("draft", initial=True)
    active = State("active")
    completed = State("completed", final=True)
    cancelled = State("cancelled", final=True)

    confirm_funded = draft.to(active)
    confirm_completed = active.to(completed)
    confirm_cancelled = draft.to(cancelled) | active.to(cancelled)

    def __init__(self, current_status: str = "draft") -> None:
        super().__init__(start_value=self._validated_start(current_status))


class LedgerLifecycle(_GuardMixin, StateMachine):
    """Stored lifecycle of one escrow ledger. ``completed`` is derived elsewhere."""

    unfunded = State("unfunded", initial=True)
    active = State("active")
    cancelled = State("cancelled", final=True)

    fund = unfunded.to(active)
    cancel = active.to(cancelled)

    def __init__(self, current_status: str = "unfunded") -> None:
        super().__init__(start_value=self._validated_start(current_status))


_MACHINES: dict[str, type[StateMachine]] = {
    "milestone": MilestoneStateMachine,
    "project": ProjectStateMachine,
}


def validate_transition(kind: str, current_status: str, event_name: str) -> str:
    """Validate a transition and return the new status.

    Creates a temporary state machine of the given kind, fires the named
    event, and returns the resulting status string.

    Args:
        kind: "milestone" or "project".
        current_status: Current status value.
        event_name: The event to fire (e.g., "submit_work").

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the kind, status or event name is invalid.
    """
    machine_class = _MACHINES.get(kind)
    if machine_class is None:
        raise ValueError(f"Unknown state machine kind '{kind}'")

    sm = machine_class(current_status=current_status)
    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


@lru_cache(maxsize=None)
def event_sources(kind: str, event_name: str) -> tuple[str, ...]:
    """Return every status from which ``event_name`` is a legal transition.

    Raises:
        ValueError: If the kind or event name is invalid.
    """
    machine_class = _MACHINES.get(kind)
    if machine_class is None:
        raise ValueError(f"Unknown state machine kind '{kind}'")

    sources = []
    for state in machine_class.states:
        try:
            validate_transition(kind, state.value, event_name)
        except TransitionNotAllowed:
            continue
        sources.append(state.value)
    return tuple(sources)


def advance_target(current: str, target: str) -> MilestoneStatus | None:
    """Return ``target`` if it lies strictly ahead of ``current``, else None.

    Used for monotonic catch-up writes: an update to a status at or below the
    current one is a no-op rather than an error.
    """
    current_status = MilestoneStatus(current)
    target_status = MilestoneStatus(target)
    if target_status.rank > current_status.rank:
        return target_status
    return None
