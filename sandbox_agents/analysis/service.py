"""
Repository analysis entry point.

Chooses between the remote sandbox path and direct LLM analysis:

- remote path disabled or not configured -> direct analysis
- remote InfraFailure -> log and fall back to direct analysis
- remote WorkflowFailure -> RepositoryAnalysisFailed (falling back would
  not fix a repository the sandbox could not clone or analyze)
"""

from typing import Literal

import structlog
from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..errors import RepositoryAnalysisFailed
from ..llm.schemas import AnalysisResult
from ..orchestrator import (
    AnalysisSucceeded,
    InfraFailure,
    RemoteAnalysisOrchestrator,
    WorkflowFailure,
)
from .direct import DirectAnalysisService

logger = structlog.get_logger()


class Repository(BaseModel):
    """Repository to analyze"""
    id: str
    full_name: str = Field(..., min_length=1)
    clone_url: str = Field(..., min_length=1)
    user_id: str
    description: str | None = None
    provider: str = "GitHub"
    organization_name: str | None = None
    default_branch: str | None = None
    is_private: bool = False


class AnalysisReport(BaseModel):
    """Analysis result plus which path produced it"""
    result: AnalysisResult
    source: Literal["remote", "direct"]
    session_id: str | None = None
    fallback_reason: str | None = None


def build_repository_summary(repository: Repository) -> str:
    """Metadata-only summary used when no repository content is supplied."""
    return (
        f"Repository: {repository.full_name}\n"
        f"Description: {repository.description or 'No description'}\n"
        f"Provider: {repository.provider}\n"
        f"Organization: {repository.organization_name or 'N/A'}\n"
        f"Default Branch: {repository.default_branch or 'main'}\n"
        f"Visibility: {'Private' if repository.is_private else 'Public'}\n"
        f"Clone URL: {repository.clone_url}\n"
        "\n"
        "Note: This is a summary based on repository metadata. For detailed analysis, "
        "fetch actual repository structure, files, and code from the Git provider."
    )


class RepositoryAnalysisService:
    """Analyze repositories remotely when possible, directly otherwise."""

    def __init__(
        self,
        direct: DirectAnalysisService,
        orchestrator: RemoteAnalysisOrchestrator | None = None,
        settings: Settings | None = None,
    ):
        self.direct = direct
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()

    @property
    def remote_enabled(self) -> bool:
        return self.orchestrator is not None and self.settings.vps_enabled

    async def analyze(
        self,
        repository: Repository,
        repository_content: str | None = None,
    ) -> AnalysisReport:
        log = logger.bind(repository_id=repository.id, repository=repository.full_name)

        if not self.remote_enabled:
            log.info("analysis.direct", reason="remote analysis disabled")
            result = await self._analyze_directly(repository, repository_content)
            return AnalysisReport(result=result, source="direct")

        log.info("analysis.remote")
        outcome = await self.orchestrator.analyze_via_remote_session(
            repository.id,
            repository.clone_url,
            repository.full_name,
            repository.user_id,
            branch=repository.default_branch,
        )

        if isinstance(outcome, AnalysisSucceeded):
            log.info("analysis.remote.complete", epic_count=outcome.result.epic_count)
            return AnalysisReport(
                result=outcome.result,
                source="remote",
                session_id=outcome.session_id,
            )

        if isinstance(outcome, WorkflowFailure):
            log.error("analysis.remote.workflow_failed", reason=outcome.reason)
            raise RepositoryAnalysisFailed(outcome.reason, repository.full_name) from outcome.error

        if isinstance(outcome, InfraFailure):
            log.warning(
                "analysis.remote.unavailable",
                reason=outcome.reason,
                failed_from=outcome.failed_from,
                fallback="direct",
            )
            result = await self._analyze_directly(repository, repository_content)
            return AnalysisReport(result=result, source="direct", fallback_reason=outcome.reason)

        raise TypeError(f"Unexpected orchestration outcome: {outcome!r}")

    async def _analyze_directly(self, repository: Repository, repository_content: str | None) -> AnalysisResult:
        content = repository_content or build_repository_summary(repository)
        return await self.direct.analyze(content, repository.full_name)
