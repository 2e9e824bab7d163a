"""RepositoryActivityOracle: verifies a milestone by commit activity.

Use case: "Ship the API layer": the milestone is verified once the
freelancer's branch carries at least ``min_commits`` commits since the given
instant.

Verification flow:
    1. GET /repos/{owner}/{repo}/commits?sha={branch}&since=...&per_page=100
    2. Count the commits on the returned page.
    3. verified = count >= min_commits, evidence = latest commit identity.

An error response (rate limit, bad credentials, outage) is an undetermined
verdict, never a negative one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from milestone_escrow.config import get_settings
from milestone_escrow.domain.oracle_protocol import OracleRequest, OracleVerdict
from milestone_escrow.logging_config import get_logger
from milestone_escrow.oracles.http import HttpOracle, UpstreamFailure

if TYPE_CHECKING:
    from milestone_escrow.config import Settings

logger = get_logger(__name__)

MAX_ITEMS = 5


def _first_line(message: str | None) -> str:
    return (message or "").split("\n", 1)[0]


class RepositoryActivityOracle(HttpOracle):
    """Oracle that counts commits on a repository branch."""

    source = "repository"
    service_name = "GitHub"

    def _default_api_url(self, settings: Settings) -> str:
        return settings.github_api_url

    def _default_token(self, settings: Settings) -> str:
        return settings.github_token

    async def evaluate(self, request: OracleRequest) -> OracleVerdict:
        config = request.config
        owner = config["owner"]
        repo = config["repo"]
        branch = config.get("branch", "main")
        threshold = int(config.get("min_commits", 1))

        params: dict[str, str | int] = {"sha": branch, "per_page": 100}
        if request.since is not None:
            params["since"] = request.since.isoformat()

        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": get_settings().github_user_agent,
            "Authorization": f"token {self._resolve_token(config)}",
        }

        logger.info(
            "oracle.repository.start",
            milestone_id=request.milestone_id,
            repository=f"{owner}/{repo}",
            branch=branch,
            since=params.get("since"),
        )

        try:
            commits = await self._get_json(
                f"/repos/{owner}/{repo}/commits", headers=headers, params=params
            )
        except UpstreamFailure as exc:
            return exc.verdict

        if not isinstance(commits, list):
            return OracleVerdict.malformed("GitHub API returned an unexpected payload")

        try:
            items = [
                {
                    "sha": commit["sha"][:7],
                    "message": _first_line(commit["commit"]["message"]),
                    "author": commit["commit"]["author"]["name"],
                    "date": commit["commit"]["author"]["date"],
                }
                for commit in commits[:MAX_ITEMS]
            ]
        except (KeyError, TypeError) as exc:
            return OracleVerdict.malformed(f"GitHub commit entry missing field: {exc}")

        count = len(commits)
        verified = count >= threshold
        evidence: dict = {
            "source": "repository_activity",
            "repository": f"{owner}/{repo}",
            "branch": branch,
            "commit_count": count,
        }
        summary = "No commits found"
        if commits:
            latest = commits[0]
            author = latest["commit"]["author"]
            evidence.update(
                commit_sha=latest["sha"],
                commit_url=latest.get("html_url"),
                author_name=author.get("name"),
                author_email=author.get("email"),
                committed_at=author.get("date"),
            )
            summary = _first_line(latest["commit"]["message"])

        logger.info(
            "oracle.repository.result",
            milestone_id=request.milestone_id,
            commit_count=count,
            threshold=threshold,
            verified=verified,
        )

        return OracleVerdict(
            verified=verified,
            count=count,
            threshold=threshold,
            items=items,
            evidence=evidence,
            summary=summary,
        )
