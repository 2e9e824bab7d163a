"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser-based clients (if any)

Status codes:
    404  project / milestone not found, no ledger at the recorded address
    409  invalid transition, ledger rejection, duplicate operation, ledger already deployed
    422  verification configuration or project definition invalid
    202  ledger operation submitted but not yet confirmed (retry later)
    503  oracle unavailable after retries
    400  any other domain error
    500  unexpected errors
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from milestone_escrow.domain.exceptions import (
    ConfirmationPendingError,
    DuplicateOperationError,
    EscrowPlatformError,
    InvalidProjectError,
    InvalidStateTransitionError,
    LedgerAlreadyDeployedError,
    LedgerError,
    LedgerNotFoundError,
    MilestoneNotFoundError,
    OracleUnavailableError,
    ProjectNotFoundError,
    VerificationConfigError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: EscrowPlatformError, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, **extra},
    )


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except (ProjectNotFoundError, MilestoneNotFoundError) as exc:
            logger.warning("resource.not_found", error=exc.message)
            return _error(404, exc)
        except LedgerNotFoundError as exc:
            logger.error("ledger.not_found", address=exc.address)
            return _error(404, exc)
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted_state,
            )
            return _error(409, exc)
        except LedgerError as exc:
            logger.warning("ledger.rejected", reason=exc.reason, tx_hash=exc.tx_hash)
            return _error(409, exc, reason=exc.reason)
        except (DuplicateOperationError, LedgerAlreadyDeployedError) as exc:
            logger.warning("request.conflict", error=exc.message)
            return _error(409, exc)
        except VerificationConfigError as exc:
            logger.warning("verification.config_invalid", error=exc.message)
            return _error(422, exc, details=exc.errors)
        except InvalidProjectError as exc:
            logger.warning("project.invalid", error=exc.message)
            return _error(422, exc)
        except ConfirmationPendingError as exc:
            logger.info("ledger.confirmation_pending", tx_hash=exc.tx_hash)
            return _error(202, exc, tx_hash=exc.tx_hash)
        except OracleUnavailableError as exc:
            logger.warning("oracle.unavailable", error=exc.message)
            return _error(503, exc)
        except EscrowPlatformError as exc:
            logger.error("domain.error", error=exc.message, code=exc.code)
            return _error(400, exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
