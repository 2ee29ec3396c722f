"""
Orchestrator tests: full workflow against the fake control plane and sandbox.
"""

import asyncio

import pytest
import pytest_asyncio

from sandbox_agents.errors import (
    AuthenticationFailed,
    CommandTimeout,
    GatewayUnavailable,
    SessionInitializationFailed,
)
from sandbox_agents.orchestrator import (
    AnalysisSucceeded,
    InfraFailure,
    RemoteAnalysisOrchestrator,
    WorkflowFailure,
    WorkflowState,
)
from sandbox_agents.sessions import SessionManager


@pytest_asyncio.fixture
async def orchestrator(session_manager, settings):
    return RemoteAnalysisOrchestrator(session_manager, settings=settings)


async def run_analysis(orchestrator, name="acme/widgets"):
    return await orchestrator.analyze_via_remote_session(
        repository_id=f"repo-{name}",
        clone_url=f"https://github.com/{name}.git",
        repository_name=name,
        user_id="user-1",
    )


class TestHappyPath:
    """Successful orchestration"""

    @pytest.mark.asyncio
    async def test_success(self, orchestrator, control_plane, sandbox):
        outcome = await run_analysis(orchestrator)

        assert isinstance(outcome, AnalysisSucceeded)
        assert outcome.result.reasoning == "analysis of acme/widgets"
        assert outcome.session_id == "s1"
        assert sandbox.commands("s1") == [
            "INIT_SESSION",
            "CLONE_REPOSITORY",
            "ANALYZE_REPOSITORY",
            "CLOSE_SESSION",
        ]
        assert control_plane.destroy_calls == ["s1"]
        assert outcome.run.states == [
            WorkflowState.CREATED,
            WorkflowState.CONNECTED,
            WorkflowState.INITIALIZED,
            WorkflowState.CLONED,
            WorkflowState.ANALYZED,
            WorkflowState.CLOSED,
        ]

    @pytest.mark.asyncio
    async def test_clone_payload(self, orchestrator, sandbox):
        await orchestrator.analyze_via_remote_session(
            repository_id="r1",
            clone_url="https://github.com/acme/widgets.git",
            repository_name="acme/widgets",
            user_id="user-1",
            branch="develop",
        )

        clone = next(c for _, c, _ in sandbox.received if c.command == "CLONE_REPOSITORY")
        assert clone.clone_url == "https://github.com/acme/widgets.git"
        assert clone.branch == "develop"


class TestFailureClassification:
    """Infra vs workflow failures, and teardown on every path"""

    @pytest.mark.asyncio
    async def test_clone_failure_is_workflow_failure(self, orchestrator, control_plane, sandbox):
        sandbox.responders["CLONE_REPOSITORY"] = sandbox.fail("repository not found")

        outcome = await run_analysis(orchestrator)

        assert isinstance(outcome, WorkflowFailure)
        assert outcome.reason == "repository not found"
        assert outcome.run.failed_from == WorkflowState.INITIALIZED
        assert outcome.run.state == WorkflowState.FAILED
        assert control_plane.destroy_calls == ["s1"]
        assert "ANALYZE_REPOSITORY" not in sandbox.commands()

    @pytest.mark.asyncio
    async def test_analyze_failure_is_workflow_failure(self, orchestrator, control_plane, sandbox):
        sandbox.responders["ANALYZE_REPOSITORY"] = sandbox.fail("analysis crashed")

        outcome = await run_analysis(orchestrator)

        assert isinstance(outcome, WorkflowFailure)
        assert outcome.reason == "analysis crashed"
        assert outcome.run.failed_from == WorkflowState.CLONED
        assert control_plane.destroy_calls == ["s1"]

    @pytest.mark.asyncio
    async def test_gateway_unavailable_acquires_nothing(self, control_plane, settings):
        control_plane.create_failures = [503, 503, 503]

        async with SessionManager(gateway_url=control_plane.base_url, settings=settings) as manager:
            outcome = await run_analysis(RemoteAnalysisOrchestrator(manager, settings=settings))

        assert isinstance(outcome, InfraFailure)
        assert isinstance(outcome.error, GatewayUnavailable)
        assert outcome.run is None
        assert outcome.failed_from == WorkflowState.CREATED
        assert control_plane.destroy_calls == []

    @pytest.mark.asyncio
    async def test_truncated_create_response_is_infra_failure(self, gateway, settings):
        """A reset mid-body never escapes as a raw transport error"""
        gateway.behaviours = ["truncate"] * settings.create_max_attempts

        async with SessionManager(gateway_url=gateway.base_url, settings=settings) as manager:
            outcome = await run_analysis(RemoteAnalysisOrchestrator(manager, settings=settings))

        assert isinstance(outcome, InfraFailure)
        assert isinstance(outcome.error, GatewayUnavailable)
        assert outcome.run is None
        assert gateway.attempts == settings.create_max_attempts

    @pytest.mark.asyncio
    async def test_auth_failure_still_destroys(self, orchestrator, control_plane, sandbox):
        sandbox.reject_status = 403

        outcome = await run_analysis(orchestrator)

        assert isinstance(outcome, InfraFailure)
        assert isinstance(outcome.error, AuthenticationFailed)
        assert outcome.failed_from == WorkflowState.CREATED
        assert control_plane.destroy_calls == ["s1"]

    @pytest.mark.asyncio
    async def test_init_failure_is_infra_failure(self, orchestrator, control_plane, sandbox):
        sandbox.responders["INIT_SESSION"] = sandbox.fail("workspace unavailable")

        outcome = await run_analysis(orchestrator)

        assert isinstance(outcome, InfraFailure)
        assert isinstance(outcome.error, SessionInitializationFailed)
        assert outcome.error.reason == "workspace unavailable"
        assert outcome.failed_from == WorkflowState.CONNECTED
        assert control_plane.destroy_calls == ["s1"]

    @pytest.mark.asyncio
    async def test_analysis_timeout_is_infra_failure(self, orchestrator, control_plane, sandbox, settings):
        settings.analysis_timeout_seconds = 0.1
        sandbox.responders["ANALYZE_REPOSITORY"] = sandbox.silent

        outcome = await run_analysis(orchestrator)

        assert isinstance(outcome, InfraFailure)
        assert isinstance(outcome.error, CommandTimeout)
        assert control_plane.destroy_calls == ["s1"]


class TestCleanup:
    """Teardown never changes the outcome"""

    @pytest.mark.asyncio
    async def test_destroy_failure_is_recorded_not_raised(self, orchestrator, control_plane):
        control_plane.destroy_status = 500

        outcome = await run_analysis(orchestrator)

        assert isinstance(outcome, AnalysisSucceeded)
        assert control_plane.destroy_calls == ["s1"]
        assert [e.step for e in outcome.run.cleanup_errors] == ["destroy_session"]

    @pytest.mark.asyncio
    async def test_close_session_failure_is_ignored(self, orchestrator, control_plane, sandbox):
        sandbox.responders["CLOSE_SESSION"] = sandbox.fail("already closed")

        outcome = await run_analysis(orchestrator)

        assert isinstance(outcome, AnalysisSucceeded)
        assert outcome.run.cleanup_errors == []
        assert control_plane.destroy_calls == ["s1"]

    @pytest.mark.asyncio
    async def test_cancellation_still_tears_down(self, orchestrator, control_plane, sandbox):
        sandbox.responders["CLONE_REPOSITORY"] = sandbox.silent

        task = asyncio.create_task(run_analysis(orchestrator))
        for _ in range(100):
            if "CLONE_REPOSITORY" in sandbox.commands():
                break
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert control_plane.destroy_calls == ["s1"]
        assert sandbox.commands()[-1] == "CLOSE_SESSION"


class TestIsolation:
    """Concurrent orchestrations do not share state"""

    @pytest.mark.asyncio
    async def test_concurrent_orchestrations(self, orchestrator, control_plane, sandbox):
        original = sandbox.responders["ANALYZE_REPOSITORY"]

        async def slow_for_a(command, ws):
            if command.repository_name == "org/A":
                await asyncio.sleep(0.1)
            return await original(command, ws)

        sandbox.responders["ANALYZE_REPOSITORY"] = slow_for_a

        outcome_a, outcome_b = await asyncio.gather(
            run_analysis(orchestrator, "org/A"),
            run_analysis(orchestrator, "org/B"),
        )

        assert isinstance(outcome_a, AnalysisSucceeded)
        assert isinstance(outcome_b, AnalysisSucceeded)
        assert outcome_a.session_id != outcome_b.session_id
        assert outcome_a.result.reasoning == "analysis of org/A"
        assert outcome_b.result.reasoning == "analysis of org/B"
        assert sorted(control_plane.destroy_calls) == sorted([outcome_a.session_id, outcome_b.session_id])

        # every frame on a channel carried that channel's session id
        for sid in (outcome_a.session_id, outcome_b.session_id):
            assert sandbox.commands(sid) == [
                "INIT_SESSION",
                "CLONE_REPOSITORY",
                "ANALYZE_REPOSITORY",
                "CLOSE_SESSION",
            ]
