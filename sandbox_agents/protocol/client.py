"""
ACP Client - correlated command/response over one WebSocket per session

Responsibilities:
- open the channel to a sandbox session and authenticate
- multiplex commands: any number may be in flight at once, responses are
  matched by correlation id
- surface LOG notifications streamed by the sandbox
- tear the channel down and fail whatever is still pending
"""

import asyncio
import json
import uuid
from collections.abc import Callable

import aiohttp
import structlog
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..errors import (
    AuthenticationFailed,
    CommandFailed,
    CommandTimeout,
    ConnectionFailed,
    ConnectionLost,
    SandboxError,
)
from ..llm.schemas import AnalysisResult
from .messages import (
    LOG_COMMAND,
    AnalyzeRepository,
    CloneRepository,
    CloseSession,
    Command,
    CommandResponse,
    InitSession,
    LogEvent,
    RunCommand,
    encode_command,
)
from .registry import PendingRequests

logger = structlog.get_logger()

LogListener = Callable[[LogEvent], None]


class ProtocolClient:
    """
    ACP client for one sandbox session.

    Instances are single-use: connect once, close once. The pending request
    registry belongs to the instance, so two sessions never see each other's
    responses.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        on_log: LogListener | None = None,
        http_session: aiohttp.ClientSession | None = None,
    ):
        self.settings = settings or get_settings()
        self.on_log = on_log
        self._http = http_session
        self._owns_http = http_session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._session_id: str | None = None
        self._pending = PendingRequests()
        self._dispatch_task: asyncio.Task | None = None
        self._closed = False

    async def __aenter__(self) -> "ProtocolClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_connected(self) -> bool:
        return (
            self._ws is not None
            and not self._ws.closed
            and not self._closed
            and self._dispatch_task is not None
            and not self._dispatch_task.done()
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @staticmethod
    def websocket_url(endpoint_url: str) -> str:
        """http(s)://host/x -> ws(s)://host/x/ws"""
        url = endpoint_url.replace("http://", "ws://", 1).replace("https://", "wss://", 1)
        if not url.endswith("/ws"):
            url = f"{url.rstrip('/')}/ws"
        return url

    async def connect(self, session_id: str, endpoint_url: str, auth_token: str) -> None:
        """
        Open the channel and start the dispatch loop.

        Raises:
            AuthenticationFailed: handshake rejected with 401/403
            ConnectionFailed: anything else that prevents the channel opening
        """
        if self._ws is not None or self._closed:
            raise ConnectionFailed("ACP client instances are single-use")

        url = self.websocket_url(endpoint_url)
        headers = {
            "Authorization": f"Bearer {auth_token}",
            "X-Session-Id": session_id,
        }
        logger.info("acp.connect", session_id=session_id, endpoint=url)

        if self._http is None:
            self._http = aiohttp.ClientSession()
        try:
            self._ws = await asyncio.wait_for(
                self._http.ws_connect(url, headers=headers),
                timeout=self.settings.connect_timeout_seconds,
            )
        except aiohttp.WSServerHandshakeError as e:
            logger.error("acp.connect.rejected", session_id=session_id, status=e.status)
            if e.status in (401, 403):
                raise AuthenticationFailed(
                    f"Sandbox rejected credentials for session {session_id} ({e.status})"
                ) from e
            raise ConnectionFailed(f"Handshake with {url} failed ({e.status})") from e
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            logger.error("acp.connect.failed", session_id=session_id, error=repr(e))
            raise ConnectionFailed(f"Could not connect to {url}: {e!r}") from e

        self._session_id = session_id
        self._dispatch_task = asyncio.create_task(
            self._dispatch_loop(), name=f"acp-dispatch-{session_id}"
        )
        logger.info("acp.connected", session_id=session_id)

    async def send_command(self, command: Command, timeout: float | None = None) -> CommandResponse:
        """
        Send one command and wait for its correlated response.

        Raises:
            CommandTimeout: no response within ``timeout`` seconds
            CommandFailed: the sandbox answered ``success: false``
            ConnectionLost: the channel is not (or no longer) open
        """
        if not self.is_connected:
            raise ConnectionLost("ACP client is not connected")

        timeout = self.settings.command_timeout_seconds if timeout is None else timeout
        correlation_id = uuid.uuid4().hex
        future = self._pending.register(correlation_id)
        frame = encode_command(self._session_id, command, correlation_id)

        logger.debug(
            "acp.send",
            session_id=self._session_id,
            command=command.command,
            correlation_id=correlation_id,
        )
        try:
            await self._ws.send_str(frame)
            response = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "acp.command.timeout",
                session_id=self._session_id,
                command=command.command,
                correlation_id=correlation_id,
                timeout=timeout,
            )
            raise CommandTimeout(command.command, correlation_id, timeout) from None
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise ConnectionLost(f"Channel to session {self._session_id} failed: {e!r}") from e
        finally:
            self._pending.discard(correlation_id)
            if not future.done():
                future.cancel()

        if not response.success:
            reason = response.error or f"{command.command} failed"
            logger.warning(
                "acp.command.failed",
                session_id=self._session_id,
                command=command.command,
                reason=reason,
            )
            raise CommandFailed(reason, command=command.command)

        return response

    async def init_session(self) -> CommandResponse:
        return await self.send_command(InitSession(session_id=self._session_id or ""))

    async def clone_repository(self, clone_url: str, branch: str | None = None) -> CommandResponse:
        return await self.send_command(CloneRepository(clone_url=clone_url, branch=branch))

    async def run_command(self, command_line: str, working_directory: str | None = None) -> CommandResponse:
        return await self.send_command(
            RunCommand(command_line=command_line, working_directory=working_directory)
        )

    async def analyze_repository(self, repository_name: str) -> AnalysisResult:
        """Run ANALYZE_REPOSITORY and parse the work item tree it returns."""
        logger.info("acp.analyze", session_id=self._session_id, repository=repository_name)
        response = await self.send_command(
            AnalyzeRepository(repository_name=repository_name),
            timeout=self.settings.analysis_timeout_seconds,
        )
        result = parse_analysis_result(response.data)
        logger.info(
            "acp.analyze.complete",
            session_id=self._session_id,
            repository=repository_name,
            epic_count=result.epic_count,
        )
        return result

    async def close(self) -> None:
        """
        Best-effort CLOSE_SESSION, then tear the channel down.

        Every waiter still pending afterwards fails with ConnectionLost.
        Safe to call more than once, and on a client that never connected.
        """
        if self._closed:
            return

        if self.is_connected:
            try:
                await self.send_command(CloseSession(), timeout=self.settings.close_timeout_seconds)
            except SandboxError as e:
                logger.warning("acp.close_session.failed", session_id=self._session_id, error=str(e))

        self._closed = True

        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            await asyncio.wait({self._dispatch_task})
            self._dispatch_task = None

        if self._ws is not None and not self._ws.closed:
            try:
                await self._ws.close()
            except (aiohttp.ClientError, OSError) as e:
                logger.warning("acp.disconnect.error", session_id=self._session_id, error=repr(e))

        failed = self._pending.fail_all(ConnectionLost("ACP client closed"))

        if self._http is not None and self._owns_http:
            await self._http.close()

        logger.info("acp.closed", session_id=self._session_id, failed_pending=failed)

    async def _dispatch_loop(self) -> None:
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._handle_frame(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(
                        "acp.channel.error",
                        session_id=self._session_id,
                        error=repr(ws.exception()),
                    )
                    break
        except Exception as e:
            logger.error("acp.dispatch.error", session_id=self._session_id, error=repr(e))
        finally:
            failed = self._pending.fail_all(
                ConnectionLost(f"Channel to session {self._session_id} closed")
            )
            if failed:
                logger.warning("acp.channel.lost", session_id=self._session_id, failed_pending=failed)

    def _handle_frame(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("acp.frame.invalid_json", session_id=self._session_id, frame=raw[:200])
            return
        if not isinstance(data, dict):
            logger.warning("acp.frame.not_an_object", session_id=self._session_id, frame=raw[:200])
            return

        if data.get("command") == LOG_COMMAND and not data.get("correlationId"):
            self._emit_log(data.get("payload") or {})
            return

        try:
            response = CommandResponse.model_validate(data)
        except ValidationError as e:
            logger.warning("acp.frame.invalid", session_id=self._session_id, error=str(e))
            return

        if not self._pending.resolve(response):
            logger.warning(
                "acp.response.unmatched",
                session_id=self._session_id,
                correlation_id=response.correlation_id,
                command=response.command,
            )

    def _emit_log(self, payload: dict) -> None:
        event = LogEvent(
            session_id=self._session_id or "",
            level=str(payload.get("level", "info")),
            message=str(payload.get("message", "")),
        )
        logger.info("acp.remote_log", session_id=event.session_id, level=event.level, message=event.message)
        if self.on_log is None:
            return
        try:
            self.on_log(event)
        except Exception as e:
            logger.warning("acp.log_listener.error", session_id=event.session_id, error=repr(e))


def parse_analysis_result(data) -> AnalysisResult:
    """Validate ANALYZE_REPOSITORY response data (JSON text or object)."""
    if data is None or data == "":
        raise CommandFailed("Sandbox returned no analysis result", command="ANALYZE_REPOSITORY")
    try:
        if isinstance(data, (str, bytes)):
            return AnalysisResult.model_validate_json(data)
        return AnalysisResult.model_validate(data)
    except ValidationError as e:
        raise CommandFailed(
            f"Failed to parse analysis result: {e.error_count()} validation error(s)",
            command="ANALYZE_REPOSITORY",
        ) from e
