"""
Shared fixtures: in-process fake control plane and fake sandbox channel.
"""

import asyncio
import json
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from sandbox_agents.config import Settings
from sandbox_agents.protocol import ProtocolClient, decode_command
from sandbox_agents.sessions import SessionManager


class FakeSandbox:
    """WebSocket endpoint speaking the ACP command/response protocol."""

    def __init__(self):
        self.app = web.Application()
        self.app.router.add_get("/sandbox/{session_id}/ws", self._ws_handler)
        self.base_url = ""
        self.reject_status: int | None = None
        self.responders = {
            "INIT_SESSION": self.ok,
            "CLONE_REPOSITORY": self.ok,
            "RUN_COMMAND": self.ok,
            "ANALYZE_REPOSITORY": self.analysis_ok,
            "CLOSE_SESSION": self.ok,
        }
        self.received: list[tuple[str, object, str]] = []
        self.handshakes: list[dict[str, str]] = []
        self.connections: list[web.WebSocketResponse] = []
        self._tasks: set[asyncio.Task] = set()

    def endpoint(self, session_id: str) -> str:
        return f"{self.base_url}/sandbox/{session_id}"

    def commands(self, session_id: str | None = None) -> list[str]:
        return [
            command.command
            for sid, command, _ in self.received
            if session_id is None or sid == session_id
        ]

    # ---- responders -------------------------------------------------

    @staticmethod
    def make_analysis(repository_name: str) -> dict:
        return {
            "reasoning": f"analysis of {repository_name}",
            "epics": [
                {
                    "title": f"{repository_name} platform",
                    "description": "Core platform work",
                    "features": [
                        {
                            "title": "Authentication",
                            "description": "Sign-in flows",
                            "userStories": [
                                {
                                    "title": "As a user, I want to sign in so that I see my repos",
                                    "description": "OAuth sign-in",
                                    "acceptanceCriteria": "Login works, Logout works",
                                    "tasks": [
                                        {
                                            "title": "Add OAuth callback",
                                            "description": "Handle the provider redirect",
                                            "complexity": "Medium",
                                        }
                                    ],
                                }
                            ],
                        }
                    ],
                }
            ],
            "metadata": {
                "analysisTimestamp": "2026-10-18T12:00:00Z",
                "model": "sandbox",
                "reasoning": "generated in sandbox",
            },
        }

    @staticmethod
    async def ok(command, ws):
        return {"success": True, "data": "ok"}

    @staticmethod
    async def silent(command, ws):
        return None

    @classmethod
    async def analysis_ok(cls, command, ws):
        return {"success": True, "data": json.dumps(cls.make_analysis(command.repository_name))}

    @staticmethod
    def fail(reason: str):
        async def responder(command, ws):
            return {"success": False, "error": reason}
        return responder

    # ---- server side ------------------------------------------------

    async def _ws_handler(self, request: web.Request):
        self.handshakes.append(dict(request.headers))
        if self.reject_status:
            return web.Response(status=self.reject_status)

        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections.append(ws)

        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                continue
            session_id, command, correlation_id = decode_command(msg.data)
            self.received.append((session_id, command, correlation_id))
            task = asyncio.create_task(self._respond(ws, command, correlation_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return ws

    async def _respond(self, ws, command, correlation_id):
        reply = await self.responders[command.command](command, ws)
        if reply is None or ws.closed:
            return
        try:
            await ws.send_json({"correlationId": correlation_id, "command": command.command, **reply})
        except ConnectionResetError:
            pass

    async def shutdown(self):
        for task in list(self._tasks):
            task.cancel()
        for ws in self.connections:
            if not ws.closed:
                await ws.close()


class FakeControlPlane:
    """HTTP control plane: POST/DELETE /api/sessions, GET status."""

    def __init__(self, sandbox: FakeSandbox):
        self.sandbox = sandbox
        self.app = web.Application()
        self.app.router.add_post("/api/sessions", self._create)
        self.app.router.add_delete("/api/sessions/{session_id}", self._destroy)
        self.app.router.add_get("/api/sessions/{session_id}/status", self._status)
        self.base_url = ""
        # statuses returned (in order) before creation succeeds
        self.create_failures: list[int] = []
        self.create_body: dict | None = None
        self.create_attempts = 0
        self.create_requests: list[dict] = []
        self.next_ids: list[str] = []
        self.destroy_status: int | None = None
        self.destroy_calls: list[str] = []
        self.live: set[str] = set()
        self._counter = 0

    async def _create(self, request: web.Request):
        self.create_attempts += 1
        self.create_requests.append(await request.json())
        if self.create_failures:
            return web.json_response({"error": "unavailable"}, status=self.create_failures.pop(0))
        if self.create_body is not None:
            return web.json_response(self.create_body)

        self._counter += 1
        session_id = self.next_ids.pop(0) if self.next_ids else f"s{self._counter}"
        self.live.add(session_id)
        return web.json_response({
            "sessionId": session_id,
            "endpointUrl": self.sandbox.endpoint(session_id),
            "authToken": f"token-{session_id}",
            "createdAt": datetime.now(UTC).isoformat(),
        })

    async def _destroy(self, request: web.Request):
        session_id = request.match_info["session_id"]
        self.destroy_calls.append(session_id)
        if self.destroy_status:
            return web.Response(status=self.destroy_status)
        if session_id not in self.live:
            return web.json_response({"error": "not found"}, status=404)
        self.live.discard(session_id)
        return web.Response(status=204)

    async def _status(self, request: web.Request):
        session_id = request.match_info["session_id"]
        if session_id not in self.live:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response({
            "status": "active",
            "createdAt": "2026-10-18T12:00:00+00:00",
        })


class FlakyGateway:
    """Raw TCP control plane that misbehaves below the HTTP layer.

    Each request consumes one behaviour: ``"reset"`` drops the connection
    without answering, ``"truncate"`` announces a 500-byte body, sends a few
    bytes and aborts, ``"ok"`` answers normally. Once the list is empty every
    request is answered normally.
    """

    def __init__(self):
        self.behaviours: list[str] = []
        self.attempts = 0
        self.base_url = ""
        self._server: asyncio.AbstractServer | None = None

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        port = self._server.sockets[0].getsockname()[1]
        self.base_url = f"http://127.0.0.1:{port}"

    async def stop(self):
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            head = await reader.readuntil(b"\r\n\r\n")
        except (asyncio.IncompleteReadError, ConnectionError):
            writer.close()
            return
        length = 0
        for line in head.split(b"\r\n"):
            name, _, value = line.partition(b":")
            if name.strip().lower() == b"content-length":
                length = int(value.strip())
        if length:
            await reader.readexactly(length)

        self.attempts += 1
        behaviour = self.behaviours.pop(0) if self.behaviours else "ok"

        if behaviour == "reset":
            writer.transport.abort()
        elif behaviour == "truncate":
            writer.write(
                b"HTTP/1.1 200 OK\r\n"
                b"Content-Type: application/json\r\n"
                b"Content-Length: 500\r\n"
                b"\r\n"
                b'{"sessionId": "s'
            )
            await writer.drain()
            writer.transport.abort()
        else:
            body = json.dumps({
                "sessionId": f"s{self.attempts}",
                "endpointUrl": f"http://sandbox.invalid/s{self.attempts}",
                "authToken": "token",
                "status": "active",
            }).encode()
            writer.write(
                b"HTTP/1.1 200 OK\r\n"
                b"Content-Type: application/json\r\n"
                b"Connection: close\r\n"
                + f"Content-Length: {len(body)}\r\n\r\n".encode()
                + body
            )
            await writer.drain()
            writer.close()


@pytest.fixture
def settings():
    return Settings(
        vps_gateway_url="http://127.0.0.1:1",
        vps_enabled=True,
        create_max_attempts=3,
        create_backoff_seconds=0,
        http_timeout_seconds=5,
        connect_timeout_seconds=5,
        command_timeout_seconds=2,
        analysis_timeout_seconds=2,
        close_timeout_seconds=1,
        openai_api_key="",
    )


@pytest_asyncio.fixture
async def sandbox():
    fake = FakeSandbox()
    server = TestServer(fake.app)
    await server.start_server()
    fake.base_url = str(server.make_url("/")).rstrip("/")
    yield fake
    await fake.shutdown()
    await server.close()


@pytest_asyncio.fixture
async def control_plane(sandbox):
    fake = FakeControlPlane(sandbox)
    server = TestServer(fake.app)
    await server.start_server()
    fake.base_url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def session_manager(control_plane, settings):
    manager = SessionManager(gateway_url=control_plane.base_url, settings=settings)
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def client(sandbox, settings):
    client = ProtocolClient(settings=settings)
    await client.connect("s1", sandbox.endpoint("s1"), "token-s1")
    yield client
    await client.close()


@pytest_asyncio.fixture
async def gateway():
    fake = FlakyGateway()
    await fake.start()
    yield fake
    await fake.stop()
