"""
Control-plane payloads.
"""

from datetime import UTC, datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _ControlPlaneModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SessionInfo(_ControlPlaneModel):
    """A provisioned sandbox session: where to connect and how to authenticate."""

    session_id: str = Field(min_length=1)
    endpoint_url: str = Field(min_length=1)
    auth_token: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime | None = None
    timeout_minutes: int = 60

    def __repr__(self) -> str:
        # keep the token out of logs and tracebacks
        return f"SessionInfo(session_id={self.session_id!r}, endpoint_url={self.endpoint_url!r})"


class SessionStatus(_ControlPlaneModel):
    """Status reported by the control plane.

    ``state`` is usually one of creating, ready, active, completed, failed.
    Unknown values are kept as-is.
    """

    session_id: str
    state: str = Field(validation_alias=AliasChoices("state", "status"))
    created_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in ("completed", "failed")
