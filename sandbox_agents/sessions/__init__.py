"""
Sessions - sandbox lifecycle against the VPS control plane

Responsibilities:
- create, destroy and query sandbox sessions
"""

from .manager import SessionManager
from .models import SessionInfo, SessionStatus

__all__ = ["SessionInfo", "SessionManager", "SessionStatus"]
