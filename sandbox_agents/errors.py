"""
Error taxonomy for sandbox orchestration.

Two branches matter to callers:

- ``InfrastructureError``: the remote orchestration mechanism is not usable
  right now (gateway down, handshake refused, channel dropped). Callers may
  fall back to direct analysis.
- ``CommandFailed``: the sandbox answered, but the requested operation failed
  (bad clone URL, analysis error). Falling back will not help.
"""


class SandboxError(Exception):
    """Base class for every error raised by this package."""


class InfrastructureError(SandboxError):
    """The remote orchestration path is not viable."""


class GatewayUnavailable(InfrastructureError):
    """The control plane could not be reached or kept failing with 5xx."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SessionCreationFailed(InfrastructureError):
    """The control plane rejected the creation request (4xx) or sent garbage."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SessionNotFound(InfrastructureError):
    """The control plane does not know the session id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class AuthenticationFailed(InfrastructureError):
    """The channel handshake was refused."""


class ConnectionFailed(InfrastructureError):
    """The channel could not be opened."""


class CommandTimeout(InfrastructureError):
    """No response arrived for a command within its timeout."""

    def __init__(self, command: str, correlation_id: str, timeout: float):
        super().__init__(f"{command} timed out after {timeout:g}s (correlation {correlation_id})")
        self.command = command
        self.correlation_id = correlation_id
        self.timeout = timeout


class ConnectionLost(InfrastructureError):
    """The channel went away while a command was pending."""


class CommandFailed(SandboxError):
    """The sandbox reported an explicit failure for a command."""

    def __init__(self, reason: str, command: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.command = command


class CleanupFailed(SandboxError):
    """A teardown step failed. Recorded and logged, never raised to callers."""

    def __init__(self, step: str, session_id: str, cause: BaseException):
        super().__init__(f"{step} failed for session {session_id}: {cause}")
        self.step = step
        self.session_id = session_id
        self.cause = cause


class AnalysisNotConfigured(SandboxError):
    """Direct analysis was requested without LLM credentials."""


class RepositoryAnalysisFailed(SandboxError):
    """The analysis of a specific repository failed."""

    def __init__(self, reason: str, repository_name: str):
        super().__init__(f"Analysis of {repository_name} failed: {reason}")
        self.reason = reason
        self.repository_name = repository_name


class SessionInitializationFailed(InfrastructureError):
    """The sandbox refused INIT_SESSION; the environment itself is unusable."""

    def __init__(self, reason: str, session_id: str):
        super().__init__(f"Failed to initialize session {session_id}: {reason}")
        self.reason = reason
        self.session_id = session_id
