"""
Session Manager - sandbox lifecycle against the VPS control plane

Responsibilities:
- create sandbox sessions (with bounded retry on transient failures)
- destroy sessions (idempotent)
- query session status

No protocol knowledge; every call is a stateless HTTP request.
"""

import asyncio
from typing import Any

import aiohttp
import structlog
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..errors import GatewayUnavailable, SessionCreationFailed, SessionNotFound
from .models import SessionInfo, SessionStatus

logger = structlog.get_logger()


class SessionManager:
    """
    Client for the sandbox control plane.

    One instance holds one aiohttp connection pool and can be shared by any
    number of concurrent orchestrations.
    """

    def __init__(
        self,
        gateway_url: str | None = None,
        settings: Settings | None = None,
        http_session: aiohttp.ClientSession | None = None,
    ):
        self.settings = settings or get_settings()
        self.gateway_url = (gateway_url or self.settings.vps_gateway_url).rstrip("/")
        self._http = http_session
        self._owns_http = http_session is None

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self):
        """Release the connection pool if this manager created it."""
        if self._http is not None and self._owns_http and not self._http.closed:
            await self._http.close()
        self._http = None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.http_timeout_seconds),
            )
            self._owns_http = True
        return self._http

    def _url(self, path: str) -> str:
        return f"{self.gateway_url}{path}"

    async def create_session(
        self,
        user_id: str,
        timeout_minutes: int | None = None,
    ) -> SessionInfo:
        """
        Create a sandbox session.

        Transport errors (refused or reset connections, truncated bodies),
        client timeouts and 5xx responses are retried with
        exponential backoff up to ``create_max_attempts`` attempts. 4xx
        responses fail at once.

        Raises:
            GatewayUnavailable: retries exhausted
            SessionCreationFailed: request rejected or response unusable
        """
        if timeout_minutes is None:
            timeout_minutes = self.settings.session_timeout_minutes
        body = {"userId": str(user_id), "sessionTimeoutMinutes": timeout_minutes}
        max_attempts = self.settings.create_max_attempts

        logger.info("session.create", user_id=str(user_id), timeout_minutes=timeout_minutes)

        last_error: GatewayUnavailable | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                async with self._session().post(self._url("/api/sessions"), json=body) as resp:
                    if resp.status >= 500:
                        last_error = GatewayUnavailable(
                            f"Control plane returned {resp.status}",
                            status_code=resp.status,
                        )
                    elif resp.status >= 400:
                        detail = await resp.text()
                        logger.error(
                            "session.create.rejected",
                            user_id=str(user_id),
                            status=resp.status,
                            detail=detail[:200],
                        )
                        raise SessionCreationFailed(
                            f"Control plane rejected session creation ({resp.status}): {detail[:200]}",
                            status_code=resp.status,
                        )
                    else:
                        data = await self._read_json(resp, SessionCreationFailed)
                        info = self._parse_session_info(data, timeout_minutes)
                        logger.info(
                            "session.created",
                            session_id=info.session_id,
                            endpoint=info.endpoint_url,
                            attempt=attempt,
                        )
                        return info
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = GatewayUnavailable(f"Control plane unreachable: {e!r}")

            if attempt < max_attempts:
                delay = self.settings.create_backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "session.create.retry",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay=delay,
                    error=str(last_error),
                )
                await asyncio.sleep(delay)

        logger.error("session.create.failed", user_id=str(user_id), error=str(last_error))
        raise last_error

    async def destroy_session(self, session_id: str) -> None:
        """
        Destroy a sandbox session.

        A 404 means the session is already gone and counts as success, so
        calling this twice is harmless.

        Raises:
            GatewayUnavailable: transport error or non-404 error status
        """
        logger.info("session.destroy", session_id=session_id)
        try:
            async with self._session().delete(self._url(f"/api/sessions/{session_id}")) as resp:
                if resp.status == 404:
                    logger.info("session.destroy.already_gone", session_id=session_id)
                    return
                if resp.status >= 400:
                    raise GatewayUnavailable(
                        f"Control plane returned {resp.status} destroying {session_id}",
                        status_code=resp.status,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GatewayUnavailable(f"Control plane unreachable: {e!r}") from e

        logger.info("session.destroyed", session_id=session_id)

    async def get_status(self, session_id: str) -> SessionStatus:
        """
        Query session status.

        Raises:
            SessionNotFound: unknown session id
            GatewayUnavailable: transport error, error status or malformed body
        """
        try:
            async with self._session().get(self._url(f"/api/sessions/{session_id}/status")) as resp:
                if resp.status == 404:
                    raise SessionNotFound(session_id)
                if resp.status >= 400:
                    raise GatewayUnavailable(
                        f"Control plane returned {resp.status} for status of {session_id}",
                        status_code=resp.status,
                    )
                data = await self._read_json(resp, GatewayUnavailable)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GatewayUnavailable(f"Control plane unreachable: {e!r}") from e

        try:
            return SessionStatus.model_validate({"sessionId": session_id, **data})
        except (ValidationError, TypeError) as e:
            raise GatewayUnavailable(f"Malformed status for {session_id}: {e}") from e

    @staticmethod
    async def _read_json(resp: aiohttp.ClientResponse, error_cls: type[Exception]) -> dict[str, Any]:
        try:
            data = await resp.json(content_type=None)
        except ValueError as e:
            raise error_cls(f"Control plane sent invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise error_cls("Control plane sent a non-object JSON body")
        return data

    @staticmethod
    def _parse_session_info(data: dict[str, Any], timeout_minutes: int) -> SessionInfo:
        try:
            return SessionInfo.model_validate({**data, "timeoutMinutes": timeout_minutes})
        except ValidationError as e:
            raise SessionCreationFailed(f"Failed to parse session info: {e}") from e
