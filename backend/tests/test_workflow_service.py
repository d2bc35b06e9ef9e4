"""Tests for workflow_service.py -- host message handling and run lifecycle.

Covers message dispatch, background execution and event streaming,
overlap rejection, stop/abort, result retrieval and shutdown. Agent tasks
run on the scripted executor so no LLM is involved.
"""

import asyncio
from typing import Any

import pytest
from pydantic import ValidationError

from agents.errors import WorkflowAlreadyRunningError
from agents.registry import AgentRegistry
from agents.types import AgentMode
from config import Settings
from events.bus import EventBus
from events.types import EventType
from models.schemas import StartResearchMessage, WorkflowRunStatus
from tests.conftest import FakeAgent, RecordingAgentFactory, ScriptedExecutor
from workflow_service import WorkflowService, build_workflow

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PERSONAS = [
    {"id": "1", "name": "Alice", "backstory": "A busy product manager."},
    {"id": "2", "name": "Bob", "backstory": "A retired nurse."},
]


def _survey_message(conversation_id: str = "conv_1") -> dict[str, Any]:
    return {
        "type": "start-feature-survey",
        "conversationId": conversation_id,
        "projectName": "habits",
        "personas": _PERSONAS,
        "idea": "A habit tracker",
    }


def _research_message(conversation_id: str = "conv_1") -> dict[str, Any]:
    return {
        "type": "start-research",
        "conversationId": conversation_id,
        "projectName": "habits",
        "idea": "A habit tracker",
    }


@pytest.fixture()
def service(
    registry: AgentRegistry, event_bus: EventBus, executor: ScriptedExecutor
) -> WorkflowService:
    return WorkflowService(registry, event_bus, executor=executor)


def _event_types(event_bus: EventBus, conversation_id: str = "conv_1") -> list[EventType]:
    return [event.type for event in event_bus.get_run_events(conversation_id)]


# =========================================================================
# build_workflow
# =========================================================================


class TestBuildWorkflow:
    """Start messages map onto prebuilt workflows."""

    def test_research_message(self) -> None:
        message = StartResearchMessage(
            type="start-research",
            conversation_id="conv_1",
            project_name="habits",
            idea="A habit tracker",
        )
        assert build_workflow(message).name == "idea-research"


# =========================================================================
# Running workflows
# =========================================================================


class TestHandleStart:
    """A start message runs the workflow in the background."""

    async def test_feature_survey_runs_to_completion(
        self, service: WorkflowService, event_bus: EventBus, executor: ScriptedExecutor
    ) -> None:
        run = await service.handle_message(_survey_message())
        assert run is not None
        assert run.workflow_name == "feature-survey"

        settled = await service.wait_for_run("conv_1")

        assert settled is run
        assert run.status == WorkflowRunStatus.COMPLETE
        assert run.started_at is not None and run.completed_at is not None
        assert executor.called_agent_ids == ["persona-1", "persona-2", "consolidator"]

        result = service.get_last_result("conv_1")
        assert result is not None and result.success
        assert set(result.results) == {"persona-1", "persona-2", "consolidator"}

    async def test_events_streamed_in_order(
        self, service: WorkflowService, event_bus: EventBus
    ) -> None:
        await service.handle_message(_survey_message())
        await service.wait_for_run("conv_1")

        assert _event_types(event_bus) == [
            EventType.WORKFLOW_STARTED,
            EventType.AGENT_STARTING,
            EventType.AGENT_STARTING,
            EventType.AGENT_COMPLETE,
            EventType.AGENT_COMPLETE,
            EventType.AGENT_STARTING,
            EventType.AGENT_COMPLETE,
            EventType.WORKFLOW_COMPLETE,
        ]
        history = event_bus.get_run_events("conv_1")
        assert history[0].data["total_steps"] == 2
        assert history[1].agent_id == "persona-1"
        assert history[-1].data["success"] is True
        assert history[-1].data["results"]["consolidator"]["success"] is True

    async def test_subscriber_receives_events(
        self, service: WorkflowService, event_bus: EventBus
    ) -> None:
        queue = event_bus.subscribe("conv_1")
        await service.handle_message(_research_message())
        await service.wait_for_run("conv_1")

        received = []
        while not queue.empty():
            received.append(queue.get_nowait().type)
        assert received[0] == EventType.WORKFLOW_STARTED
        assert received[-1] == EventType.WORKFLOW_COMPLETE
        assert received.count(EventType.AGENT_STARTING) == 4

    async def test_late_subscriber_sees_run_progress(
        self, service: WorkflowService, event_bus: EventBus, executor: ScriptedExecutor
    ) -> None:
        gate = executor.gate("competitive-analyst")
        await service.handle_message(_research_message())
        await executor.started["competitive-analyst"].wait()

        queue = event_bus.subscribe("conv_1")
        gate.set()
        await service.wait_for_run("conv_1")

        received = []
        while not queue.empty():
            received.append(queue.get_nowait().type)
        assert received[0] == EventType.WORKFLOW_STARTED
        assert EventType.AGENT_STARTING in received[1:3]
        assert received[-1] == EventType.WORKFLOW_COMPLETE

    async def test_context_data_reaches_tasks(
        self, service: WorkflowService, executor: ScriptedExecutor
    ) -> None:
        message = _research_message()
        message["data"] = {"audience": "remote teams"}
        await service.handle_message(message)
        await service.wait_for_run("conv_1")

        assert all("remote teams" in call[2] for call in executor.calls)
        assert all(call[3] == "habits" for call in executor.calls)

    async def test_halted_workflow_reports_error(
        self, registry: AgentRegistry, event_bus: EventBus
    ) -> None:
        executor = ScriptedExecutor(failures={"ux-agent": RuntimeError("no design")})
        service = WorkflowService(registry, event_bus, executor=executor)

        await service.handle_message({
            "type": "start-build-iteration",
            "conversationId": "conv_1",
            "projectName": "habits",
            "userStory": "As a user I want streaks",
            "framework": "react",
        })
        run = await service.wait_for_run("conv_1")

        assert run is not None
        assert run.status == WorkflowRunStatus.ERROR
        assert run.error_message == "Agent ux-agent failed: no design"
        assert executor.called_agent_ids == ["ux-agent"]
        final = event_bus.get_run_events("conv_1")[-1]
        assert final.type == EventType.WORKFLOW_COMPLETE
        assert final.data["success"] is False

    async def test_invalid_message_rejected(
        self, service: WorkflowService, executor: ScriptedExecutor
    ) -> None:
        with pytest.raises(ValidationError):
            await service.handle_message({"type": "start-research", "conversationId": "c"})
        assert executor.calls == []


# =========================================================================
# Overlap
# =========================================================================


class TestOverlap:
    """Only one workflow runs at a time."""

    async def test_second_start_rejected(
        self, service: WorkflowService, event_bus: EventBus, executor: ScriptedExecutor
    ) -> None:
        gate = executor.gate("competitive-analyst")
        await service.handle_message(_research_message("conv_1"))
        await executor.started["competitive-analyst"].wait()

        with pytest.raises(WorkflowAlreadyRunningError):
            await service.handle_message(_research_message("conv_2"))

        assert _event_types(event_bus, "conv_2") == [EventType.WORKFLOW_ERROR]
        assert service.get_run("conv_2") is None

        gate.set()
        run = await service.wait_for_run("conv_1")
        assert run is not None and run.status == WorkflowRunStatus.COMPLETE

    async def test_rejected_before_task_starts(
        self, service: WorkflowService, executor: ScriptedExecutor
    ) -> None:
        await service.handle_message(_research_message("conv_1"))
        # The first run is scheduled but has not started executing yet.
        with pytest.raises(WorkflowAlreadyRunningError):
            await service.handle_message(_research_message("conv_2"))
        await service.wait_for_run("conv_1")

    async def test_next_start_allowed_after_completion(
        self, service: WorkflowService
    ) -> None:
        await service.handle_message(_research_message("conv_1"))
        await service.wait_for_run("conv_1")

        run = await service.handle_message(_research_message("conv_2"))
        await service.wait_for_run("conv_2")
        assert run is not None and run.status == WorkflowRunStatus.COMPLETE


# =========================================================================
# Stop
# =========================================================================


class TestStop:
    """stop-workflow aborts the running workflow."""

    async def test_stop_aborts_running_workflow(
        self, service: WorkflowService, event_bus: EventBus, executor: ScriptedExecutor
    ) -> None:
        executor.gate("persona-1")
        executor.gate("persona-2")
        await service.handle_message(_survey_message())
        await executor.started["persona-2"].wait()

        assert service.is_running("conv_1")
        result = await service.handle_message({"type": "stop-workflow", "conversationId": "conv_1"})
        assert result is None

        run = await service.wait_for_run("conv_1")
        assert run is not None
        assert run.status == WorkflowRunStatus.CANCELLED
        assert sorted(executor.cancelled) == ["persona-1", "persona-2"]
        assert "consolidator" not in executor.called_agent_ids
        assert _event_types(event_bus)[-1] == EventType.WORKFLOW_CANCELLED
        assert not service.is_running("conv_1")

    async def test_stop_before_execution_cancels_task(
        self, service: WorkflowService, event_bus: EventBus, executor: ScriptedExecutor
    ) -> None:
        await service.handle_message(_research_message())

        assert await service.stop_workflow("conv_1") is True

        run = service.get_run("conv_1")
        assert run is not None and run.status == WorkflowRunStatus.CANCELLED
        assert executor.calls == []
        assert _event_types(event_bus)[-1] == EventType.WORKFLOW_CANCELLED

    async def test_stop_when_idle_is_noop(self, service: WorkflowService) -> None:
        assert await service.stop_workflow("conv_1") is False


# =========================================================================
# Shutdown
# =========================================================================


class TestShutdown:
    """shutdown cancels runs, disposes agents and closes channels."""

    async def test_shutdown_cleans_everything(
        self,
        service: WorkflowService,
        registry: AgentRegistry,
        event_bus: EventBus,
        executor: ScriptedExecutor,
    ) -> None:
        await registry.get_or_create_agent("chat_1")
        executor.gate("competitive-analyst")
        queue = event_bus.subscribe("conv_1")
        await service.handle_message(_research_message())
        await executor.started["competitive-analyst"].wait()

        await service.shutdown()

        assert not service.is_running()
        assert service.get_run("conv_1") is None
        assert registry.get_active_agent_count() == 0
        assert event_bus.get_subscriber_count("conv_1") == 0

        received = []
        while not queue.empty():
            received.append(queue.get_nowait().type)
        assert received[-1] == EventType.CHANNEL_CLOSED

    async def test_shutdown_when_idle(self, service: WorkflowService) -> None:
        await service.shutdown()
        assert not service.is_running()


class TestDefaultExecutor:
    """Without an explicit executor, tasks run on registry agents."""

    async def test_tasks_run_on_temporary_agents(
        self, registry: AgentRegistry, event_bus: EventBus
    ) -> None:
        service = WorkflowService(registry, event_bus)
        await service.handle_message(_research_message())
        run = await service.wait_for_run("conv_1")

        assert run is not None and run.status == WorkflowRunStatus.COMPLETE
        result = service.get_last_result("conv_1")
        assert result is not None
        assert result.results["synthesizer"].output.startswith("echo: Task: Synthesize")
        assert registry.get_active_agent_count() == 0

    async def test_survey_wider_than_agent_limit(
        self, agent_factory: RecordingAgentFactory, event_bus: EventBus
    ) -> None:
        registry = AgentRegistry(agent_factory=agent_factory, max_active_agents=2)
        chat_agents = [
            await registry.get_or_create_agent(cid) for cid in ("chat_1", "chat_2")
        ]
        original_call = agent_factory.__call__

        async def slow_factory(
            conversation_id: str, mode: AgentMode, agent_settings: Settings
        ) -> FakeAgent:
            agent = await original_call(conversation_id, mode, agent_settings)

            async def slow_chat(text: str, *, system_prompt: str | None = None) -> str:
                await asyncio.sleep(0.01)
                return f"echo: {text}"

            agent.chat = slow_chat  # type: ignore[method-assign]
            return agent

        registry.agent_factory = slow_factory
        service = WorkflowService(registry, event_bus)
        message = _survey_message()
        message["personas"] = [
            {"id": str(i), "name": f"Persona {i}", "backstory": "A tester."}
            for i in range(1, 13)
        ]

        await service.handle_message(message)
        run = await service.wait_for_run("conv_1")

        assert run is not None and run.status == WorkflowRunStatus.COMPLETE
        result = service.get_last_result("conv_1")
        assert result is not None
        assert len(result.results) == 13
        assert all(r.success for r in result.results.values())
        assert [registry.get_agent(cid) for cid in ("chat_1", "chat_2")] == chat_agents
        assert not any(isinstance(a, FakeAgent) and a.disposed for a in chat_agents)
