"""Verification oracle implementations and factory.

Three oracles:
    - RepositoryActivityOracle:  commit count on a repository branch
    - DesignVersionOracle:       version count on a design file
    - ManualOracle:              an explicit reviewer approval

The OracleFactory creates the oracle for a milestone's verification_method.
"""

from __future__ import annotations

from typing import Any

from milestone_escrow.domain.enums import VerificationMethod
from milestone_escrow.domain.oracle_protocol import (
    OracleRequest,
    OracleVerdict,
    VerificationOracle,
)
from milestone_escrow.oracles.design_version import DesignVersionOracle
from milestone_escrow.oracles.http import HttpOracle
from milestone_escrow.oracles.repository_activity import RepositoryActivityOracle


class ManualOracle:
    """Oracle for milestones reviewed by a person.

    The reviewer's action is the signal: with a reviewer the verdict is
    positive, without one nothing has been decided yet.
    """

    async def evaluate(self, request: OracleRequest) -> OracleVerdict:
        if not request.reviewer:
            return OracleVerdict(
                verified=False,
                threshold=1,
                summary="Awaiting reviewer approval",
                pending=True,
            )
        reviewer = request.reviewer.lower()
        return OracleVerdict(
            verified=True,
            count=1,
            threshold=1,
            evidence={
                "source": "manual",
                "milestone_id": request.milestone_id,
                "reviewer": reviewer,
            },
            summary=f"Approved by {reviewer}",
        )


class OracleFactory:
    """Factory that creates the oracle for a verification method.

    Usage:
        oracle = OracleFactory.create("repository_activity")
        verdict = await oracle.evaluate(request)

        # Tests route HTTP oracles through a mock transport:
        oracle = OracleFactory.create("design_version", transport=httpx.MockTransport(handler))
    """

    _registry: dict[str, type] = {
        VerificationMethod.REPOSITORY_ACTIVITY.value: RepositoryActivityOracle,
        VerificationMethod.DESIGN_VERSION.value: DesignVersionOracle,
        VerificationMethod.MANUAL.value: ManualOracle,
    }

    @classmethod
    def create(cls, method: str | None, **http_options: Any) -> VerificationOracle:
        """Create an oracle for ``method``.

        Args:
            method: A VerificationMethod value.
            http_options: api_url / token / timeout / transport overrides,
                passed to HTTP-backed oracles only.

        Raises:
            ValueError: If the method is unknown or missing.
        """
        if not method:
            raise ValueError(
                "A verification method is required. "
                f"Valid methods: {list(cls._registry.keys())}"
            )

        oracle_class = cls._registry.get(str(method))
        if oracle_class is None:
            raise ValueError(
                f"Unknown verification method: '{method}'. "
                f"Valid methods: {list(cls._registry.keys())}"
            )

        if issubclass(oracle_class, HttpOracle):
            return oracle_class(**http_options)
        return oracle_class()

    @classmethod
    def get_supported_methods(cls) -> list[str]:
        """Return the list of supported verification method strings."""
        return list(cls._registry.keys())


__all__ = [
    "DesignVersionOracle",
    "ManualOracle",
    "OracleFactory",
    "OracleRequest",
    "OracleVerdict",
    "RepositoryActivityOracle",
    "VerificationOracle",
]
