"""Control-plane client — create, destroy, describe and list game servers over HTTP."""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from dashboard.models.server import ServerConfig, ServerPage, ServerSnapshot, StartServerRequest
from dashboard.services.config import get_settings

from .credentials import CredentialSource
from .errors import (
    ControlPlaneError,
    NotFound,
    Transient,
    Unauthenticated,
    Validation,
    classify_response,
)

logger = structlog.get_logger()


class ControlPlaneClient:
    """REST client for the server control plane (via httpx).

    Reads (``describe``, ``find_owned``) retry ``Transient`` failures a
    bounded number of times. Commands (``create_server``,
    ``destroy_server``) are sent exactly once.
    """

    def __init__(
        self,
        credentials: CredentialSource,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_wait: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.credentials = credentials
        self.base_url = (base_url if base_url is not None else settings.control_plane_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.control_plane_timeout_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.describe_max_attempts
        self.retry_wait = retry_wait if retry_wait is not None else settings.retry_wait_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def close(self) -> None:
        """Close the HTTP client to release resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    # ── Reads ─────────────────────────────────────────────────────

    async def describe(self, server_id: str) -> ServerSnapshot:
        """Fetch the current snapshot of one server.

        Raises NotFound when the control plane has no record of it and
        Unauthorized when the credential is missing or rejected.
        """
        if not server_id:
            raise Validation("server_id is required")
        resp = await self._request_with_retry("GET", f"/servers/{server_id}")
        return self._parse_snapshot(resp.json())

    async def find_owned(
        self,
        user_id: Optional[str] = None,
        limit: int = 1,
        after_key: Optional[str] = None,
    ) -> Optional[ServerSnapshot]:
        """Return the user's most recent server, or None if they have none."""
        if limit < 1:
            raise Validation(f"limit must be at least 1, got {limit}")
        if user_id is None:
            credential = await self.credentials.get_credential()
            if credential is None:
                raise Unauthenticated("User not authenticated")
            user_id = credential.user_id

        params: dict[str, Any] = {"limit": limit}
        if after_key:
            params["afterKey"] = after_key

        try:
            resp = await self._request_with_retry("GET", "/servers", params=params)
        except NotFound:
            return None

        try:
            page = ServerPage.model_validate(resp.json())
        except ValidationError as e:
            raise ControlPlaneError(f"Malformed server list: {e.error_count()} errors") from e

        await logger.adebug("Owned servers listed", user_id=user_id, count=len(page.items))
        return page.items[0] if page.items else None

    # ── Commands ──────────────────────────────────────────────────

    async def create_server(self, user_id: str, config: Optional[ServerConfig] = None) -> str:
        """Ask the control plane to create a server. Returns the new server id."""
        try:
            body = StartServerRequest(
                user_id=user_id,
                type=config.type if config and config.type else None,
                version=config.version if config and config.version else None,
            )
        except ValidationError as e:
            raise Validation(f"Invalid start request: {e.errors()[0]['msg']}") from e

        resp = await self._request(
            "POST", "/servers", json=body.model_dump(by_alias=True, exclude_none=True)
        )
        try:
            server_id = resp.json()["serverId"]
        except (ValueError, KeyError, TypeError) as e:
            raise ControlPlaneError("Start accepted but no serverId was returned") from e

        await logger.ainfo("Server create accepted", server_id=server_id, user_id=user_id)
        return server_id

    async def destroy_server(self, server_id: str) -> None:
        """Ask the control plane to tear a server down."""
        if not server_id:
            raise Validation("server_id is required")
        await self._request("DELETE", f"/servers/{server_id}")
        await logger.ainfo("Server destroy accepted", server_id=server_id)

    # ── Transport ─────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        credential = await self.credentials.get_credential()
        if credential is None:
            raise Unauthenticated("User not authenticated")

        try:
            resp = await self.client.request(
                method,
                path,
                params=params,
                json=json,
                headers={"Authorization": credential.authorization},
            )
        except httpx.TransportError as e:
            raise Transient(f"Network error: {e.__class__.__name__}") from e

        if resp.is_error:
            raise classify_response(resp)
        return resp

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            retry=retry_if_exception_type(Transient),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return await self._request(method, path, params=params)

    @staticmethod
    def _log_retry(retry_state) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Retrying control-plane read",
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    @staticmethod
    def _parse_snapshot(data: Any) -> ServerSnapshot:
        try:
            return ServerSnapshot.model_validate(data)
        except ValidationError as e:
            raise ControlPlaneError(f"Malformed server payload: {e.error_count()} errors") from e
