"""Shared HTTP plumbing for oracles that query an upstream API.

Every upstream failure (timeout, connection error, non-2xx status) becomes an
``UpstreamFailure`` carrying a transient verdict; a 2xx body that is not
JSON becomes a malformed verdict. Oracles catch these and return the verdict,
so an outage is never reported as "not verified".
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from milestone_escrow.config import get_settings
from milestone_escrow.domain.oracle_protocol import OracleVerdict
from milestone_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from milestone_escrow.config import Settings

logger = get_logger(__name__)


class UpstreamFailure(Exception):  # noqa: N818
    """Carries the verdict to return when the upstream could not be used."""

    def __init__(self, verdict: OracleVerdict) -> None:
        super().__init__(verdict.error)
        self.verdict = verdict


class HttpOracle:
    """Base for oracles backed by a JSON HTTP API."""

    source = "http"
    service_name = "Upstream"

    def __init__(
        self,
        api_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize with optional overrides (defaults come from config)."""
        self._api_url = api_url
        self._token = token
        self._timeout = timeout
        self._transport = transport

    def _default_api_url(self, settings: Settings) -> str:
        raise NotImplementedError

    def _default_token(self, settings: Settings) -> str:
        raise NotImplementedError

    def _resolve_token(self, config: dict) -> str:
        return config.get("access_token") or self._token or self._default_token(get_settings())

    def _client(self) -> httpx.AsyncClient:
        settings = get_settings()
        return httpx.AsyncClient(
            base_url=self._api_url or self._default_api_url(settings),
            timeout=self._timeout if self._timeout is not None else settings.oracle_timeout_seconds,
            transport=self._transport,
        )

    async def _get_json(
        self,
        path: str,
        *,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET ``path`` and return the decoded JSON body.

        Raises:
            UpstreamFailure: for timeouts, transport errors, non-2xx
                responses and undecodable bodies.
        """
        try:
            async with self._client() as client:
                response = await client.get(path, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning(f"oracle.{self.source}.timeout", path=path, error=str(exc))
            raise UpstreamFailure(
                OracleVerdict.unavailable(f"{self.service_name} API timeout")
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(f"oracle.{self.source}.transport_error", path=path, error=str(exc))
            raise UpstreamFailure(
                OracleVerdict.unavailable(f"{self.service_name} API unreachable: {exc}")
            ) from exc

        if not response.is_success:
            logger.warning(
                f"oracle.{self.source}.upstream_error",
                path=path,
                status_code=response.status_code,
            )
            raise UpstreamFailure(
                OracleVerdict.unavailable(
                    f"{self.service_name} API error: {response.status_code}",
                    status_code=response.status_code,
                )
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamFailure(
                OracleVerdict.malformed(f"{self.service_name} API returned invalid JSON")
            ) from exc
