"""
ACP protocol - correlated commands over a per-session WebSocket
"""

from .client import ProtocolClient, parse_analysis_result
from .messages import (
    AnalyzeRepository,
    CloneRepository,
    CloseSession,
    Command,
    CommandResponse,
    CommandType,
    InitSession,
    LogEvent,
    RunCommand,
    decode_command,
    encode_command,
)
from .registry import PendingRequests

__all__ = [
    # Client
    "ProtocolClient",
    "PendingRequests",
    "parse_analysis_result",
    # Commands
    "Command",
    "CommandType",
    "InitSession",
    "CloneRepository",
    "RunCommand",
    "AnalyzeRepository",
    "CloseSession",
    # Inbound
    "CommandResponse",
    "LogEvent",
    # Codec
    "encode_command",
    "decode_command",
]
