"""Workflow service coordinating host requests with workflow execution.

This module provides the WorkflowService class that turns validated host
messages into workflow runs, executes them in background tasks and streams
their progress to host views.

The WorkflowService coordinates between:
- AgentRegistry: Conversation agents, whose factory builds the task agents
- WorkflowOrchestrator: For executing workflow definitions
- EventBus: For progress streaming to the host UI

Usage:
    >>> from agents.chat_agent import create_chat_agent
    >>> from agents.registry import AgentRegistry
    >>> from events import EventBus
    >>> from workflow_service import WorkflowService
    >>>
    >>> registry = AgentRegistry(agent_factory=create_chat_agent)
    >>> service = WorkflowService(registry, EventBus())
    >>>
    >>> run = await service.handle_message({
    ...     "type": "start-research",
    ...     "conversationId": "conv_123",
    ...     "projectName": "habits",
    ...     "idea": "A habit tracker for remote teams",
    ... })
    >>> await service.wait_for_run("conv_123")
    >>> service.get_last_result("conv_123").success
    >>>
    >>> await service.shutdown()
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import ValidationError

from agents.errors import WorkflowAlreadyRunningError
from agents.executors import RegistryTaskExecutor
from agents.registry import AgentRegistry
from agents.types import AgentTaskExecutor
from events import EventBus
from events.types import EventType, WorkflowEvent
from models.schemas import (
    StartBuildIterationMessage,
    StartFeatureSurveyMessage,
    StartResearchMessage,
    StartWorkflowMessage,
    StopWorkflowMessage,
    WorkflowRunStatus,
    parse_host_message,
)
from workflows.builders import (
    create_build_iteration_workflow,
    create_feature_survey_workflow,
    create_research_workflow,
)
from workflows.orchestrator import ABORTED_ERROR, WorkflowOrchestrator
from workflows.types import (
    ProgressCallback,
    ProgressStatus,
    ProgressUpdate,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowResult,
)

logger = structlog.get_logger()


_PROGRESS_EVENT_TYPES = {
    ProgressStatus.STARTING: EventType.AGENT_STARTING,
    ProgressStatus.COMPLETE: EventType.AGENT_COMPLETE,
    ProgressStatus.FAILED: EventType.AGENT_FAILED,
}


@dataclass
class WorkflowRun:
    """Information about one workflow run requested by the host.

    Attributes:
        conversation_id: Conversation that requested the run
        workflow_name: Name of the workflow definition
        project_name: Project the workflow runs for
        status: Current run status (idle, running, complete, error, cancelled)
        created_at: Unix timestamp when the run was requested
        started_at: Unix timestamp when execution began (None if not started)
        completed_at: Unix timestamp when execution finished (None if not complete)
        error_message: Error message if status is "error" (None otherwise)
        result: The orchestrator's result once the run settles
    """

    conversation_id: str
    workflow_name: str
    project_name: str
    status: WorkflowRunStatus
    created_at: float
    started_at: float | None = None
    completed_at: float | None = None
    error_message: str | None = None
    result: WorkflowResult | None = None


def build_workflow(message: StartWorkflowMessage) -> WorkflowDefinition:
    """Map a start message onto its prebuilt workflow definition.

    Raises:
        ValueError: If the message kind has no workflow.
    """
    if isinstance(message, StartFeatureSurveyMessage):
        return create_feature_survey_workflow(message.personas, message.idea)

    if isinstance(message, StartResearchMessage):
        return create_research_workflow(message.idea)

    if isinstance(message, StartBuildIterationMessage):
        return create_build_iteration_workflow(
            message.user_story,
            message.framework,
            message.personas,
            message.previous_feedback,
        )

    raise ValueError(f"Unsupported message type: {type(message).__name__}")


class WorkflowService:
    """Runs host-requested workflows one at a time.

    The service owns a single WorkflowOrchestrator, so at most one workflow
    is in flight across all conversations. A start request that arrives
    while a run is scheduled or running is rejected with
    WorkflowAlreadyRunningError and reported to the host as a
    ``workflow_error`` event.

    Thread Safety:
        All operations use asyncio.Lock to ensure safe concurrent access
        to the run registry.

    Attributes:
        registry: Registry of conversation agents. Default task agents are
            built with its factory and settings but live outside it.
        event_bus: Event bus for progress streaming
        executor: Gateway that performs each agent task
        orchestrator: Executes the workflow definitions
    """

    def __init__(
        self,
        registry: AgentRegistry,
        event_bus: EventBus,
        executor: AgentTaskExecutor | None = None,
        orchestrator: WorkflowOrchestrator | None = None,
    ) -> None:
        """Initialize the WorkflowService.

        Args:
            registry: Registry of conversation agents
            event_bus: Event bus for emitting events
            executor: Task executor (defaults to a RegistryTaskExecutor)
            orchestrator: Orchestrator (defaults to one driving ``executor``)
        """
        self.registry = registry
        self.event_bus = event_bus
        self.executor = executor or RegistryTaskExecutor(registry)
        self.orchestrator = orchestrator or WorkflowOrchestrator(self.executor)
        self._runs: dict[str, WorkflowRun] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()
        logger.info("workflow_service_initialized")

    async def handle_message(self, raw: dict[str, Any] | str | bytes) -> WorkflowRun | None:
        """Validate and dispatch one inbound host message.

        Args:
            raw: The message as received from the host.

        Returns:
            The scheduled WorkflowRun for start messages, None for stop.

        Raises:
            pydantic.ValidationError: If the message is malformed.
            WorkflowAlreadyRunningError: If a workflow is already in flight.
        """
        try:
            message = parse_host_message(raw)
        except ValidationError as e:
            logger.warning(
                "host_message_invalid",
                error_count=e.error_count(),
                errors=e.errors(include_url=False),
            )
            raise

        logger.info(
            "host_message_received",
            message_type=message.type,
            conversation_id=message.conversation_id,
        )

        if isinstance(message, StopWorkflowMessage):
            await self.stop_workflow(message.conversation_id)
            return None

        return await self.start_workflow(message)

    async def start_workflow(self, message: StartWorkflowMessage) -> WorkflowRun:
        """Build the requested workflow and start it in a background task.

        This method:
        1. Builds the workflow definition and context from the message
        2. Registers a WorkflowRun for the conversation
        3. Emits WORKFLOW_STARTED
        4. Starts orchestrator execution in a background task

        Raises:
            WorkflowAlreadyRunningError: If a workflow is already in flight.
        """
        conversation_id = message.conversation_id
        workflow = build_workflow(message)
        context = WorkflowContext(
            project_name=message.project_name,
            iteration_number=(
                message.iteration_number
                if isinstance(message, StartBuildIterationMessage)
                else None
            ),
            data=dict(message.data),
        )

        async with self._lock:
            busy = self.orchestrator.is_workflow_running() or any(
                not task.done() for task in self._tasks.values()
            )
            if not busy:
                run = WorkflowRun(
                    conversation_id=conversation_id,
                    workflow_name=workflow.name,
                    project_name=message.project_name,
                    status=WorkflowRunStatus.IDLE,
                    created_at=time.time(),
                )
                self._runs[conversation_id] = run

                await self.event_bus.publish(
                    WorkflowEvent(
                        type=EventType.WORKFLOW_STARTED,
                        conversation_id=conversation_id,
                        data={
                            "workflow": workflow.name,
                            "project_name": message.project_name,
                            "total_steps": len(workflow.steps),
                        },
                    )
                )
                self._schedule_run(run, workflow, context)

        if busy:
            error = WorkflowAlreadyRunningError(
                "A workflow is already running. Please wait or abort.",
                conversation_id=conversation_id,
            )
            logger.warning(
                "start_workflow_rejected",
                conversation_id=conversation_id,
                workflow=workflow.name,
            )
            await self.event_bus.publish(
                WorkflowEvent(
                    type=EventType.WORKFLOW_ERROR,
                    conversation_id=conversation_id,
                    data={"error": error.user_message, "phase": "validation"},
                )
            )
            raise error

        logger.info(
            "start_workflow_complete",
            conversation_id=conversation_id,
            workflow=workflow.name,
            total_steps=len(workflow.steps),
        )
        return run

    def _schedule_run(
        self,
        run: WorkflowRun,
        workflow: WorkflowDefinition,
        context: WorkflowContext,
    ) -> None:
        """Create and register the background task for a run. Lock must be held."""
        conversation_id = run.conversation_id
        background_task = asyncio.create_task(
            self._run_workflow(run, workflow, context),
            name=f"workflow_{conversation_id}",
        )
        self._tasks[conversation_id] = background_task

        def _remove_task(t: asyncio.Task[None], cid: str = conversation_id) -> None:
            if self._tasks.get(cid) is t:
                self._tasks.pop(cid, None)

        background_task.add_done_callback(_remove_task)

    def _progress_publisher(self, conversation_id: str) -> ProgressCallback:
        """Build the progress callback that forwards updates to the event bus."""

        def on_progress(update: ProgressUpdate) -> None:
            self.event_bus.publish_sync(
                WorkflowEvent(
                    type=_PROGRESS_EVENT_TYPES[update.status],
                    conversation_id=conversation_id,
                    agent_id=update.agent_id,
                    data={
                        "step": update.step,
                        "total_steps": update.total_steps,
                        "message": update.message,
                    },
                )
            )

        return on_progress

    async def _run_workflow(
        self,
        run: WorkflowRun,
        workflow: WorkflowDefinition,
        context: WorkflowContext,
    ) -> None:
        """Run a workflow in the background and report how it settled."""
        conversation_id = run.conversation_id
        try:
            async with self._lock:
                run.status = WorkflowRunStatus.RUNNING
                run.started_at = time.time()

            result = await self.orchestrator.execute_workflow(
                workflow,
                context,
                on_progress=self._progress_publisher(conversation_id),
            )

        except asyncio.CancelledError:
            logger.info(
                "workflow_run_cancelled",
                conversation_id=conversation_id,
                workflow=workflow.name,
            )
            async with self._lock:
                run.status = WorkflowRunStatus.CANCELLED
                run.completed_at = time.time()
            raise

        except Exception as e:
            logger.error(
                "workflow_run_error",
                conversation_id=conversation_id,
                workflow=workflow.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            async with self._lock:
                run.status = WorkflowRunStatus.ERROR
                run.error_message = str(e)
                run.completed_at = time.time()

            await self.event_bus.publish(
                WorkflowEvent(
                    type=EventType.WORKFLOW_ERROR,
                    conversation_id=conversation_id,
                    data={"error": str(e), "phase": "execution"},
                )
            )
            return

        async with self._lock:
            run.result = result
            run.completed_at = time.time()
            if result.success:
                run.status = WorkflowRunStatus.COMPLETE
            elif result.error == ABORTED_ERROR:
                run.status = WorkflowRunStatus.CANCELLED
            else:
                run.status = WorkflowRunStatus.ERROR
                run.error_message = result.error

        results = {
            agent_id: agent_result.model_dump()
            for agent_id, agent_result in result.results.items()
        }
        if run.status == WorkflowRunStatus.CANCELLED:
            await self.event_bus.publish(
                WorkflowEvent(
                    type=EventType.WORKFLOW_CANCELLED,
                    conversation_id=conversation_id,
                    data={
                        "workflow": workflow.name,
                        "reason": "user_cancelled",
                        "results": results,
                    },
                )
            )
        else:
            await self.event_bus.publish(
                WorkflowEvent(
                    type=EventType.WORKFLOW_COMPLETE,
                    conversation_id=conversation_id,
                    data={
                        "workflow": workflow.name,
                        "success": result.success,
                        "results": results,
                        "error": result.error,
                    },
                )
            )

        logger.info(
            "workflow_run_complete",
            conversation_id=conversation_id,
            workflow=workflow.name,
            status=run.status.value,
        )

    async def stop_workflow(self, conversation_id: str) -> bool:
        """Abort the conversation's running workflow.

        In-flight agent tasks are cancelled; the run then settles as
        cancelled and emits WORKFLOW_CANCELLED.

        Args:
            conversation_id: Conversation whose run should stop.

        Returns:
            True if a run was stopped, False if nothing was running.
        """
        async with self._lock:
            run = self._runs.get(conversation_id)
            task = self._tasks.get(conversation_id)

        if run is None or task is None or task.done():
            logger.info("stop_workflow_noop", conversation_id=conversation_id)
            return False

        if self.orchestrator.abort():
            logger.info("stop_workflow_aborted", conversation_id=conversation_id)
            return True

        # Scheduled but not yet executing; cancel the task itself.
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

        # A task cancelled before its first step never reaches its handler.
        async with self._lock:
            if run.status != WorkflowRunStatus.CANCELLED:
                run.status = WorkflowRunStatus.CANCELLED
                run.completed_at = time.time()

        await self.event_bus.publish(
            WorkflowEvent(
                type=EventType.WORKFLOW_CANCELLED,
                conversation_id=conversation_id,
                data={
                    "workflow": run.workflow_name,
                    "reason": "user_cancelled",
                    "results": {},
                },
            )
        )
        logger.info("stop_workflow_cancelled_task", conversation_id=conversation_id)
        return True

    async def wait_for_run(self, conversation_id: str) -> WorkflowRun | None:
        """Wait until the conversation's run settles and return it."""
        task = self._tasks.get(conversation_id)
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        return self._runs.get(conversation_id)

    def get_run(self, conversation_id: str) -> WorkflowRun | None:
        """Get the latest run for a conversation."""
        return self._runs.get(conversation_id)

    def get_last_result(self, conversation_id: str) -> WorkflowResult | None:
        """Get the result of the conversation's latest settled run."""
        run = self._runs.get(conversation_id)
        return run.result if run is not None else None

    def is_running(self, conversation_id: str | None = None) -> bool:
        """Check whether a run is in flight, optionally for one conversation."""
        if conversation_id is None:
            return any(not task.done() for task in self._tasks.values())
        task = self._tasks.get(conversation_id)
        return task is not None and not task.done()

    async def shutdown(self) -> None:
        """Cancel every run and release all agents and channels.

        This method should be called when the host deactivates so that no
        background task or agent outlives it.
        """
        logger.info("workflow_service_shutdown_start", run_count=len(self._runs))

        self.orchestrator.abort()

        # Collect tasks under the lock, then cancel outside to avoid deadlock
        # (the task's CancelledError handler also acquires _lock).
        async with self._lock:
            tasks_to_cancel = list(self._tasks.items())
            self._tasks.clear()
            conversation_ids = list(self._runs)

        for conversation_id, task in tasks_to_cancel:
            if not task.done():
                task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception) as e:
                if not isinstance(e, asyncio.CancelledError):
                    logger.error(
                        "shutdown_task_cancel_failed",
                        conversation_id=conversation_id,
                        error=str(e),
                    )

        if isinstance(self.executor, RegistryTaskExecutor):
            await self.executor.dispose()
        await self.registry.dispose_all_agents()

        for conversation_id in conversation_ids:
            try:
                await self.event_bus.close_channel(conversation_id)
            except Exception as e:
                logger.warning(
                    "shutdown_close_channel_failed",
                    conversation_id=conversation_id,
                    error=str(e),
                )

        async with self._lock:
            self._runs.clear()

        logger.info("workflow_service_shutdown_complete")
