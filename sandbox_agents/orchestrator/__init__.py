"""
Orchestrator - remote analysis workflow

Responsibilities:
- provision a sandbox session per analysis
- drive INIT_SESSION / CLONE_REPOSITORY / ANALYZE_REPOSITORY
- guarantee teardown on every exit path
- classify failures as infrastructure or workflow failures
"""

from .state import (
    AnalysisOutcome,
    AnalysisSucceeded,
    InfraFailure,
    WorkflowFailure,
    WorkflowRun,
    WorkflowState,
)
from .workflow import RemoteAnalysisOrchestrator

__all__ = [
    "AnalysisOutcome",
    "AnalysisSucceeded",
    "InfraFailure",
    "RemoteAnalysisOrchestrator",
    "WorkflowFailure",
    "WorkflowRun",
    "WorkflowState",
]
