"""
Orchestration state and outcomes.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from ..errors import CleanupFailed, CommandFailed, InfrastructureError
from ..llm.schemas import AnalysisResult


class WorkflowState(StrEnum):
    CREATED = "created"
    CONNECTED = "connected"
    INITIALIZED = "initialized"
    CLONED = "cloned"
    ANALYZED = "analyzed"
    CLOSED = "closed"
    FAILED = "failed"


_NEXT: dict[WorkflowState, WorkflowState] = {
    WorkflowState.CREATED: WorkflowState.CONNECTED,
    WorkflowState.CONNECTED: WorkflowState.INITIALIZED,
    WorkflowState.INITIALIZED: WorkflowState.CLONED,
    WorkflowState.CLONED: WorkflowState.ANALYZED,
    WorkflowState.ANALYZED: WorkflowState.CLOSED,
}

TERMINAL_STATES = frozenset({WorkflowState.CLOSED, WorkflowState.FAILED})


@dataclass
class WorkflowRun:
    """State of one orchestration, from session creation to teardown."""

    session_id: str
    repository_name: str
    state: WorkflowState = WorkflowState.CREATED
    history: list[tuple[WorkflowState, datetime]] = field(default_factory=list)
    failed_from: WorkflowState | None = None
    cleanup_errors: list[CleanupFailed] = field(default_factory=list)

    def __post_init__(self):
        self.history.append((self.state, datetime.now(UTC)))

    def advance(self, target: WorkflowState) -> None:
        if _NEXT.get(self.state) != target:
            raise ValueError(f"Illegal transition {self.state} -> {target}")
        self._enter(target)

    def fail(self) -> None:
        if self.state in TERMINAL_STATES or self.state == WorkflowState.ANALYZED:
            raise ValueError(f"Cannot fail from {self.state}")
        self.failed_from = self.state
        self._enter(WorkflowState.FAILED)

    def _enter(self, state: WorkflowState) -> None:
        self.state = state
        self.history.append((state, datetime.now(UTC)))

    @property
    def states(self) -> list[WorkflowState]:
        return [s for s, _ in self.history]


# ==============================================
# Outcomes
# ==============================================
@dataclass(frozen=True)
class AnalysisSucceeded:
    result: AnalysisResult
    run: WorkflowRun

    @property
    def session_id(self) -> str:
        return self.run.session_id


@dataclass(frozen=True)
class InfraFailure:
    """Remote orchestration is not viable right now; falling back makes sense."""

    error: InfrastructureError
    # None when session creation itself failed
    run: WorkflowRun | None = None

    @property
    def reason(self) -> str:
        return str(self.error)

    @property
    def session_id(self) -> str | None:
        return self.run.session_id if self.run else None

    @property
    def failed_from(self) -> WorkflowState:
        if self.run is None or self.run.failed_from is None:
            return WorkflowState.CREATED
        return self.run.failed_from


@dataclass(frozen=True)
class WorkflowFailure:
    """Orchestration worked but this repository/analysis failed."""

    reason: str
    run: WorkflowRun
    error: CommandFailed | None = None

    @property
    def session_id(self) -> str:
        return self.run.session_id


AnalysisOutcome = AnalysisSucceeded | InfraFailure | WorkflowFailure
