"""Verification Oracle Protocol.

Defines the interface that every oracle adapter implements. This is a
Protocol (structural subtyping) so concrete oracles don't need to inherit
from a base class, they just need to match the shape.

The domain layer has ZERO imports from httpx or any external service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class OracleRequest:
    """Input to an oracle.

    Attributes:
        milestone_id: Identifier of the milestone being evaluated (for logs).
        config: The milestone's verification configuration.
        since: Only count activity at or after this instant, when given.
        reviewer: Address of the reviewer who triggered a manual verification.
    """

    milestone_id: str
    config: dict
    since: datetime | None = None
    reviewer: str | None = None


@dataclass(frozen=True)
class OracleVerdict:
    """Output from an oracle.

    Attributes:
        verified: Whether the evidence meets the configured threshold.
        count: Number of matching items observed.
        threshold: The configured minimum.
        items: Up to five most recent matching items, for display.
        evidence: The payload that is hashed and committed to the ledger.
        summary: One-line human description of the evidence.
        error: Set when the oracle could NOT determine a verdict.
        transient: True when ``error`` should be retried (transport, auth, rate limit).
        status_code: Upstream HTTP status for errors, when there was a response.
        pending: True when no decision was requested (manual review not yet given).
    """

    verified: bool
    count: int = 0
    threshold: int = 0
    items: list = field(default_factory=list)
    evidence: dict = field(default_factory=dict)
    summary: str = ""
    error: str | None = None
    transient: bool = False
    status_code: int | None = None
    pending: bool = False

    @property
    def determined(self) -> bool:
        """True when the oracle reached a verdict, positive or negative."""
        return self.error is None and not self.pending

    @classmethod
    def unavailable(cls, error: str, status_code: int | None = None) -> OracleVerdict:
        return cls(verified=False, error=error, transient=True, status_code=status_code)

    @classmethod
    def malformed(cls, error: str) -> OracleVerdict:
        return cls(verified=False, error=error, transient=False)

    def to_dict(self) -> dict:
        """Serialize for storage in the verification record's response column."""
        return {
            "verified": self.verified,
            "count": self.count,
            "threshold": self.threshold,
            "items": self.items,
            "evidence": self.evidence,
            "summary": self.summary,
            "error": self.error,
            "status_code": self.status_code,
            "pending": self.pending,
        }


@runtime_checkable
class VerificationOracle(Protocol):
    """Protocol that all oracle implementations must satisfy.

    Concrete implementations:
        - oracles/repository_activity.py  (commit history)
        - oracles/design_version.py       (design file version history)
        - oracles/__init__.py             (ManualOracle)
    """

    async def evaluate(self, request: OracleRequest) -> OracleVerdict:
        """Produce a verdict for one milestone configuration.

        Must not raise for upstream failures: those come back as a verdict
        with ``error`` set so callers cannot confuse them with "not verified".
        """
        ...
