"""
Remote analysis orchestrator

Runs one repository analysis inside a freshly provisioned sandbox:

    create session -> connect -> INIT_SESSION -> CLONE_REPOSITORY
    -> ANALYZE_REPOSITORY -> close channel -> destroy session

Once a session exists, teardown runs on every exit path: success, step
failure, unexpected error, or task cancellation. Teardown errors are
recorded on the run and logged; they never change the outcome.
"""

import asyncio
from collections.abc import Callable

import structlog

from ..config import Settings, get_settings
from ..errors import (
    CleanupFailed,
    CommandFailed,
    InfrastructureError,
    SessionInitializationFailed,
)
from ..protocol.client import ProtocolClient
from ..sessions.manager import SessionManager
from .state import (
    AnalysisOutcome,
    AnalysisSucceeded,
    InfraFailure,
    WorkflowFailure,
    WorkflowRun,
    WorkflowState,
)

logger = structlog.get_logger()

ClientFactory = Callable[[], ProtocolClient]

# CommandFailed raised while in one of these states came from CLONE or ANALYZE
_WORKFLOW_STEPS = frozenset({WorkflowState.INITIALIZED, WorkflowState.CLONED})


class RemoteAnalysisOrchestrator:
    """
    Composes SessionManager and ProtocolClient into the analysis workflow.

    The SessionManager (and its connection pool) may be shared; each call
    gets its own session and its own ProtocolClient from ``client_factory``.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        settings: Settings | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.sessions = session_manager
        self.settings = settings or get_settings()
        self._client_factory = client_factory or (lambda: ProtocolClient(settings=self.settings))

    async def analyze_via_remote_session(
        self,
        repository_id: str,
        clone_url: str,
        repository_name: str,
        user_id: str,
        branch: str | None = None,
    ) -> AnalysisOutcome:
        """
        Analyze a repository in a remote sandbox.

        Returns AnalysisSucceeded, InfraFailure (remote path unusable, the
        caller may fall back) or WorkflowFailure (this repository failed).
        Cancel the calling task to abort; teardown still runs and
        CancelledError propagates.
        """
        log = logger.bind(repository_id=str(repository_id), repository=repository_name)
        log.info("orchestrator.start", user_id=str(user_id))

        try:
            session = await self.sessions.create_session(
                str(user_id), self.settings.session_timeout_minutes
            )
        except InfrastructureError as e:
            # nothing acquired, nothing to clean up
            log.error("orchestrator.create_failed", error=str(e), error_type=type(e).__name__)
            return InfraFailure(error=e)

        run = WorkflowRun(session_id=session.session_id, repository_name=repository_name)
        log = log.bind(session_id=session.session_id)
        client = self._client_factory()

        try:
            return await self._run_steps(run, client, session, clone_url, repository_name, branch, log)
        finally:
            await asyncio.shield(self._cleanup(run, client, log))

    async def _run_steps(self, run, client, session, clone_url, repository_name, branch, log) -> AnalysisOutcome:
        try:
            log.info("orchestrator.connect", endpoint=session.endpoint_url)
            await client.connect(session.session_id, session.endpoint_url, session.auth_token)
            run.advance(WorkflowState.CONNECTED)

            log.info("orchestrator.init_session")
            await client.init_session()
            run.advance(WorkflowState.INITIALIZED)

            log.info("orchestrator.clone", clone_url=clone_url, branch=branch)
            await client.clone_repository(clone_url, branch)
            run.advance(WorkflowState.CLONED)

            log.info("orchestrator.analyze")
            result = await client.analyze_repository(repository_name)
            run.advance(WorkflowState.ANALYZED)

        except CommandFailed as e:
            failed_from = run.state
            run.fail()
            if failed_from in _WORKFLOW_STEPS:
                log.warning("orchestrator.workflow_failed", state=failed_from, reason=e.reason)
                return WorkflowFailure(reason=e.reason, run=run, error=e)
            log.error("orchestrator.init_failed", reason=e.reason)
            error = SessionInitializationFailed(e.reason, session.session_id)
            error.__cause__ = e
            return InfraFailure(error=error, run=run)

        except InfrastructureError as e:
            failed_from = run.state
            run.fail()
            log.error(
                "orchestrator.infra_failed",
                state=failed_from,
                error=str(e),
                error_type=type(e).__name__,
            )
            return InfraFailure(error=e, run=run)

        except asyncio.CancelledError:
            log.warning("orchestrator.cancelled", state=run.state)
            run.fail()
            raise

        log.info("orchestrator.complete", epic_count=result.epic_count)
        return AnalysisSucceeded(result=result, run=run)

    async def _cleanup(self, run: WorkflowRun, client: ProtocolClient, log) -> None:
        log.info("orchestrator.cleanup", state=run.state)
        try:
            await client.close()
        except Exception as e:
            self._record_cleanup_failure(run, "close_channel", e, log)

        try:
            await self.sessions.destroy_session(run.session_id)
        except Exception as e:
            self._record_cleanup_failure(run, "destroy_session", e, log)

        if run.state == WorkflowState.ANALYZED:
            run.advance(WorkflowState.CLOSED)
        log.info("orchestrator.cleanup.done", state=run.state, errors=len(run.cleanup_errors))

    @staticmethod
    def _record_cleanup_failure(run: WorkflowRun, step: str, error: Exception, log) -> None:
        failure = CleanupFailed(step, run.session_id, error)
        run.cleanup_errors.append(failure)
        log.warning("orchestrator.cleanup_failed", step=step, error=str(failure))
