"""Domain exceptions for the milestone escrow platform.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware
and to ``{"error": ...}`` payloads by the MCP tools.
"""

from __future__ import annotations


class EscrowPlatformError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_PLATFORM_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- State Machine Errors ---


class InvalidStateTransitionError(EscrowPlatformError):
    """Raised when an attempted status transition is not allowed.

    Example: pending -> submitted (work must be started first).
    """

    def __init__(self, current_state: str, attempted_state: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_state = attempted_state


# --- Lookup Errors ---


class ProjectNotFoundError(EscrowPlatformError):
    """Raised when a project ID does not exist."""

    def __init__(self, project_id: str) -> None:
        super().__init__(
            message=f"Project not found: {project_id}",
            code="PROJECT_NOT_FOUND",
        )
        self.project_id = project_id


class MilestoneNotFoundError(EscrowPlatformError):
    """Raised when a milestone cannot be resolved within a project."""

    def __init__(self, project_id: str, order_index: int) -> None:
        super().__init__(
            message=f"Milestone {order_index} not found in project {project_id}",
            code="MILESTONE_NOT_FOUND",
        )
        self.project_id = project_id
        self.order_index = order_index


# --- Project Errors ---


class InvalidProjectError(EscrowPlatformError):
    """Raised when a project definition breaks a creation invariant."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_PROJECT")


class LedgerNotDeployedError(EscrowPlatformError):
    """Raised when a ledger operation is requested before deployment."""

    def __init__(self, project_id: str) -> None:
        super().__init__(
            message=f"No escrow ledger deployed for project {project_id}",
            code="LEDGER_NOT_DEPLOYED",
        )


class LedgerAlreadyDeployedError(EscrowPlatformError):
    def __init__(self, project_id: str, address: str) -> None:
        super().__init__(
            message=f"Project {project_id} already has ledger {address}",
            code="LEDGER_ALREADY_DEPLOYED",
        )


class LedgerNotFoundError(EscrowPlatformError):
    """Raised when a project points at an address that holds no escrow ledger."""

    def __init__(self, address: str) -> None:
        super().__init__(
            message=f"No escrow ledger deployed at {address}",
            code="LEDGER_NOT_FOUND",
        )
        self.address = address


# --- Ledger Errors ---


class LedgerError(EscrowPlatformError):
    """A ledger rejected an operation.

    ``reason`` is the name the ledger reports in a reverted receipt. It is the
    key used to rebuild the exception on the coordinator side.
    """

    reason = "LedgerError"
    code_name = "LEDGER_ERROR"
    default_message = "Ledger rejected the operation"

    def __init__(self, message: str | None = None, tx_hash: str | None = None) -> None:
        super().__init__(message=message or self.default_message, code=self.code_name)
        self.tx_hash = tx_hash


class AlreadyFundedError(LedgerError):
    reason = "AlreadyFunded"
    code_name = "ALREADY_FUNDED"
    default_message = "Escrow is already funded"


class AmountMismatchError(LedgerError):
    reason = "AmountMismatch"
    code_name = "AMOUNT_MISMATCH"
    default_message = "Deposit must equal the total committed amount"


class InvalidSlotError(LedgerError):
    reason = "InvalidSlot"
    code_name = "INVALID_SLOT"
    default_message = "Milestone slot index out of range"


class AlreadyVerifiedError(LedgerError):
    reason = "AlreadyVerified"
    code_name = "ALREADY_VERIFIED"
    default_message = "Milestone is already verified"


class AlreadyPaidError(LedgerError):
    reason = "AlreadyPaid"
    code_name = "ALREADY_PAID"
    default_message = "Milestone is already paid"


class NotVerifiedError(LedgerError):
    reason = "NotVerified"
    code_name = "NOT_VERIFIED"
    default_message = "Milestone must be verified before release"


class NotActiveError(LedgerError):
    reason = "NotActive"
    code_name = "NOT_ACTIVE"
    default_message = "Escrow is not active"


class NotClientError(LedgerError):
    reason = "NotClient"
    code_name = "NOT_CLIENT"
    default_message = "Only the client may perform this operation"


LEDGER_ERRORS: dict[str, type[LedgerError]] = {
    cls.reason: cls
    for cls in (
        AlreadyFundedError,
        AmountMismatchError,
        InvalidSlotError,
        AlreadyVerifiedError,
        AlreadyPaidError,
        NotVerifiedError,
        NotActiveError,
        NotClientError,
    )
}


def ledger_error_from_reason(reason: str, tx_hash: str | None = None) -> LedgerError:
    """Rebuild the domain exception for a reverted ledger receipt."""
    error_class = LEDGER_ERRORS.get(reason)
    if error_class is None:
        return LedgerError(f"Ledger rejected the operation: {reason}", tx_hash=tx_hash)
    return error_class(tx_hash=tx_hash)


class ConfirmationPendingError(EscrowPlatformError):
    """A submitted ledger operation has not been confirmed within the wait window.

    Not a failure: the operation may still confirm out-of-band. Retry later.
    """

    def __init__(self, tx_hash: str, operation: str) -> None:
        super().__init__(
            message=f"Ledger {operation} {tx_hash} is pending confirmation, retry later",
            code="CONFIRMATION_PENDING",
        )
        self.tx_hash = tx_hash
        self.operation = operation


# --- Verification Errors ---


class VerificationConfigError(EscrowPlatformError):
    """Raised before any oracle call when a milestone's configuration is unusable."""

    def __init__(self, message: str, errors: list | None = None) -> None:
        super().__init__(message=message, code="VERIFICATION_CONFIG_ERROR")
        self.errors = errors or []


class OracleUnavailableError(EscrowPlatformError):
    """The oracle could not determine a verdict (transport, auth, rate limit)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(
            message=f"Verification could not be performed, retry: {message}",
            code="ORACLE_UNAVAILABLE",
        )
        self.status_code = status_code


# --- Consistency Errors ---


class ConsistencyError(EscrowPlatformError):
    """The off-chain store disagrees with the ledger in a way that cannot be repaired."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="CONSISTENCY_ERROR")


# --- Idempotency Errors ---


class DuplicateOperationError(EscrowPlatformError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
