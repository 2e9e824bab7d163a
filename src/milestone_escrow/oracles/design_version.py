"""DesignVersionOracle: verifies a milestone by design file version history.

Counts the named versions saved on a design file (optionally only those
created at or after ``since``) and compares the count to ``min_versions``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from milestone_escrow.domain.oracle_protocol import OracleRequest, OracleVerdict
from milestone_escrow.logging_config import get_logger
from milestone_escrow.oracles.http import HttpOracle, UpstreamFailure

if TYPE_CHECKING:
    from milestone_escrow.config import Settings

logger = get_logger(__name__)

MAX_ITEMS = 5


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class DesignVersionOracle(HttpOracle):
    """Oracle backed by the Figma file versions endpoint."""

    source = "design"
    service_name = "Figma"

    def _default_api_url(self, settings: Settings) -> str:
        return settings.figma_api_url

    def _default_token(self, settings: Settings) -> str:
        return settings.figma_token

    async def evaluate(self, request: OracleRequest) -> OracleVerdict:
        config = request.config
        file_key = config["file_key"]
        threshold = int(config.get("min_versions", 1))

        logger.info(
            "oracle.design.start",
            milestone_id=request.milestone_id,
            file_key=file_key,
        )

        try:
            body = await self._get_json(
                f"/v1/files/{file_key}/versions",
                headers={"X-Figma-Token": self._resolve_token(config)},
            )
        except UpstreamFailure as exc:
            return exc.verdict

        versions = body.get("versions") if isinstance(body, dict) else None
        if not isinstance(versions, list):
            return OracleVerdict.malformed("Figma API returned an unexpected payload")

        try:
            if request.since is not None:
                since = request.since
                if since.tzinfo is None:
                    since = since.replace(tzinfo=UTC)
                versions = [v for v in versions if _parse_timestamp(v["created_at"]) >= since]

            recent = [
                {
                    "id": v["id"],
                    "label": v.get("label") or "Untitled",
                    "description": v.get("description") or "",
                    "author": (v.get("user") or {}).get("handle") or "Unknown",
                    "date": v["created_at"],
                }
                for v in versions[:MAX_ITEMS]
            ]
        except (KeyError, TypeError, ValueError) as exc:
            return OracleVerdict.malformed(f"Figma version entry is invalid: {exc}")

        count = len(versions)
        verified = count >= threshold

        logger.info(
            "oracle.design.result",
            milestone_id=request.milestone_id,
            version_count=count,
            threshold=threshold,
            verified=verified,
        )

        return OracleVerdict(
            verified=verified,
            count=count,
            threshold=threshold,
            items=recent,
            evidence={
                "source": "design_version",
                "file_key": file_key,
                "version_count": count,
                "versions": [
                    {"id": v["id"], "author": v["author"], "label": v["label"]}
                    for v in recent
                ],
            },
            summary=recent[0]["label"] if recent else "No versions found",
        )
