"""
ACP message shapes.

Outbound frames::

    {"sessionId": ..., "command": "CLONE_REPOSITORY",
     "payload": {"cloneUrl": ..., "branch": ...}, "correlationId": ...}

Each command is one variant of a closed union keyed on ``command``; its
fields are the payload. Inbound frames are either command responses
(carrying ``correlationId``) or LOG notifications.
"""

import json
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class CommandType(StrEnum):
    INIT_SESSION = "INIT_SESSION"
    CLONE_REPOSITORY = "CLONE_REPOSITORY"
    RUN_COMMAND = "RUN_COMMAND"
    ANALYZE_REPOSITORY = "ANALYZE_REPOSITORY"
    CLOSE_SESSION = "CLOSE_SESSION"


LOG_COMMAND = "LOG"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# ==============================================
# Commands (outbound)
# ==============================================
class InitSession(_WireModel):
    command: Literal["INIT_SESSION"] = "INIT_SESSION"
    session_id: str


class CloneRepository(_WireModel):
    command: Literal["CLONE_REPOSITORY"] = "CLONE_REPOSITORY"
    clone_url: str
    branch: str | None = None


class RunCommand(_WireModel):
    command: Literal["RUN_COMMAND"] = "RUN_COMMAND"
    # the shell command line, not the protocol command
    command_line: str
    working_directory: str | None = None


class AnalyzeRepository(_WireModel):
    command: Literal["ANALYZE_REPOSITORY"] = "ANALYZE_REPOSITORY"
    repository_name: str


class CloseSession(_WireModel):
    command: Literal["CLOSE_SESSION"] = "CLOSE_SESSION"


Command = Annotated[
    Union[InitSession, CloneRepository, RunCommand, AnalyzeRepository, CloseSession],
    Field(discriminator="command"),
]

_command_adapter = TypeAdapter(Command)


def command_payload(command: Command) -> dict[str, Any]:
    """Wire payload for a command (everything but the tag)."""
    if isinstance(command, RunCommand):
        return {"command": command.command_line, "workingDirectory": command.working_directory}
    return command.model_dump(mode="json", by_alias=True, exclude={"command"})


def encode_command(session_id: str, command: Command, correlation_id: str) -> str:
    """Serialize one outbound frame."""
    return json.dumps({
        "sessionId": session_id,
        "command": command.command,
        "payload": command_payload(command),
        "correlationId": correlation_id,
    })


def decode_command(frame: str | bytes | dict) -> tuple[str, Command, str]:
    """
    Parse an outbound frame back into ``(session_id, command, correlation_id)``.

    Used by the fake sandbox in tests and for frame inspection. Unknown
    commands or malformed payloads raise ``pydantic.ValidationError``.
    """
    data = json.loads(frame) if isinstance(frame, (str, bytes)) else frame
    tag = data.get("command")
    payload = dict(data.get("payload") or {})
    if tag == CommandType.RUN_COMMAND:
        payload["commandLine"] = payload.pop("command", "")
    command = _command_adapter.validate_python({**payload, "command": tag})
    return data.get("sessionId", ""), command, data.get("correlationId", "")


# ==============================================
# Inbound frames
# ==============================================
class CommandResponse(_WireModel):
    """Response to one command, matched by correlation id."""

    correlation_id: str
    success: bool
    command: str = ""
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] | None = None


class LogEvent(_WireModel):
    """Log line streamed from the sandbox."""

    session_id: str
    level: str = "info"
    message: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
