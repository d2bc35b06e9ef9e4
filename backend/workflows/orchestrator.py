"""Workflow orchestrator for multi-agent generation flows.

This module provides the WorkflowOrchestrator class, which executes a
declarative WorkflowDefinition through an injected AgentTaskExecutor:

- Steps run strictly in declared order; there is no dependency inference.
- A sequential step runs one agent; its failure halts the workflow.
- A parallel step fans out to several agents concurrently; each outcome is
  independent and failures never stop siblings or later steps.
- Every agent task produces exactly two progress notifications: ``starting``
  then ``complete`` or ``failed``.

Usage:
    >>> from agents.executors import LLMTaskExecutor
    >>> from workflows.builders import create_feature_survey_workflow
    >>>
    >>> orchestrator = WorkflowOrchestrator(LLMTaskExecutor())
    >>> workflow = create_feature_survey_workflow(personas, "A habit tracker")
    >>> result = await orchestrator.execute_workflow(
    ...     workflow,
    ...     WorkflowContext(project_name="habits"),
    ...     on_progress=lambda update: print(update.agent_id, update.status),
    ... )
    >>> result.results["consolidator"].output
"""

import asyncio
import json
import time

import structlog

from agents.errors import MisconfiguredWorkflowError, WorkflowAlreadyRunningError
from agents.types import AgentTaskExecutor
from config import settings
from workflows.types import (
    AgentResult,
    ParallelStep,
    ProgressCallback,
    ProgressStatus,
    ProgressUpdate,
    WorkflowAgent,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowResult,
    WorkflowState,
)

logger = structlog.get_logger()

ABORTED_ERROR = "Workflow aborted"


def build_agent_prompt(
    task: str,
    context: WorkflowContext,
    previous_results: dict[str, AgentResult],
) -> str:
    """Build the task text handed to the executor.

    The step task comes first, followed by the context data (as JSON) and the
    outputs of every previously successful agent, in the order they were
    recorded.

    Args:
        task: The step's task text.
        context: The run's context.
        previous_results: Results recorded before this step started.

    Returns:
        The complete task prompt.
    """
    sections = [f"Task: {task}"]

    if context.data:
        sections.append(
            f"Context:\n{json.dumps(context.data, indent=2, default=str)}"
        )

    completed = [result for result in previous_results.values() if result.success]
    if completed:
        outputs = "\n".join(
            f"\n--- {result.role} ---\n{result.output}" for result in completed
        )
        sections.append(f"Previous Results:{outputs}")

    return "\n\n".join(sections)


class WorkflowOrchestrator:
    """Executes workflow definitions one run at a time.

    State machine: Idle -> Running -> Idle. A second ``execute_workflow`` or
    ``resume_workflow`` call while a run is in flight raises
    WorkflowAlreadyRunningError.

    Cancellation:
        ``abort()`` cancels every in-flight executor call (the executor sees
        asyncio.CancelledError), records those agents as failed, and the run
        resolves with ``success=False`` and ``error="Workflow aborted"``.

    Attributes:
        executor: Gateway that performs each agent task.
        task_timeout_seconds: Per-task timeout; 0 or None disables it.
    """

    def __init__(
        self,
        executor: AgentTaskExecutor,
        task_timeout_seconds: float | None = None,
    ) -> None:
        """Initialize an idle orchestrator.

        Args:
            executor: The AgentTaskExecutor used for every task.
            task_timeout_seconds: Per-task timeout (defaults to config).
        """
        self.executor = executor
        self.task_timeout_seconds = (
            task_timeout_seconds if task_timeout_seconds is not None
            else settings.agent_task_timeout_seconds
        )
        self._running = False
        self._abort_requested = False
        self._current_workflow: WorkflowDefinition | None = None
        self._current_state: WorkflowState | None = None
        self._inflight: set[asyncio.Task[AgentResult]] = set()

    async def execute_workflow(
        self,
        workflow: WorkflowDefinition,
        context: WorkflowContext,
        on_progress: ProgressCallback | None = None,
    ) -> WorkflowResult:
        """Execute a workflow from its first step.

        Args:
            workflow: The definition to run.
            context: Shared context, passed by reference through the run.
            on_progress: Optional callback for every progress transition.

        Returns:
            The aggregated WorkflowResult. Task failures never raise.

        Raises:
            WorkflowAlreadyRunningError: If a run is already in flight.
            MisconfiguredWorkflowError: If a step references an unknown agent.
        """
        state = WorkflowState(
            workflow_name=workflow.name,
            project_name=context.project_name,
            context=context,
        )
        return await self._run(workflow, state, on_progress)

    async def resume_workflow(
        self,
        saved_state: WorkflowState,
        workflow: WorkflowDefinition,
        on_progress: ProgressCallback | None = None,
    ) -> WorkflowResult:
        """Continue a paused run from its saved step.

        The step that was in flight when the run was paused is executed again
        from the start; results of earlier steps are kept.
        """
        state = saved_state.model_copy(deep=True)
        state.paused_at = None
        return await self._run(workflow, state, on_progress)

    def _check_can_start(self, workflow: WorkflowDefinition) -> None:
        if self._running:
            raise WorkflowAlreadyRunningError(
                "A workflow is already running. Please wait or abort."
            )
        missing = workflow.missing_agent_ids()
        if missing:
            raise MisconfiguredWorkflowError(
                f"Workflow '{workflow.name}' references unknown agents: "
                f"{', '.join(missing)}",
                agent_id=missing[0],
            )

    async def _run(
        self,
        workflow: WorkflowDefinition,
        state: WorkflowState,
        on_progress: ProgressCallback | None,
    ) -> WorkflowResult:
        self._check_can_start(workflow)

        self._running = True
        self._abort_requested = False
        self._current_workflow = workflow
        self._current_state = state

        result = WorkflowResult(
            workflow_name=workflow.name,
            start_time=state.start_time,
        )
        total_steps = len(workflow.steps)

        logger.info(
            "workflow_started",
            workflow=workflow.name,
            project_name=state.project_name,
            total_steps=total_steps,
            start_step=state.current_step,
        )

        try:
            for index in range(state.current_step, total_steps):
                if self._abort_requested:
                    result.error = ABORTED_ERROR
                    break

                step = workflow.steps[index]
                state.current_step = index

                if isinstance(step, ParallelStep):
                    await self._execute_parallel_step(
                        workflow, step, state, index, total_steps, on_progress
                    )
                else:
                    agent_result = await self._execute_sequential_step(
                        workflow, step.agent, step.task, state, index,
                        total_steps, on_progress,
                    )
                    if not agent_result.success and not self._abort_requested:
                        result.error = (
                            f"Agent {agent_result.agent_id} failed: "
                            f"{agent_result.error}"
                        )
                        logger.warning(
                            "workflow_halted",
                            workflow=workflow.name,
                            step=index + 1,
                            agent_id=agent_result.agent_id,
                            error=agent_result.error,
                        )
                        break

                if self._abort_requested:
                    result.error = ABORTED_ERROR
                    break
            else:
                state.current_step = total_steps
                result.success = True
        finally:
            result.results = dict(state.results)
            result.end_time = time.time()
            self._running = False
            self._abort_requested = False
            self._current_workflow = None
            self._current_state = None

        logger.info(
            "workflow_finished",
            workflow=workflow.name,
            success=result.success,
            error=result.error,
            agents_run=len(result.results),
            duration_seconds=round(result.end_time - result.start_time, 3),
        )
        return result

    async def _execute_sequential_step(
        self,
        workflow: WorkflowDefinition,
        agent_id: str,
        task: str,
        state: WorkflowState,
        index: int,
        total_steps: int,
        on_progress: ProgressCallback | None,
    ) -> AgentResult:
        """Run a single agent and record its result."""
        agent = self._roster_entry(workflow, agent_id)
        self._emit_starting(on_progress, agent, index, total_steps)

        (agent_result,) = await self._run_agents(
            workflow, [agent], task, state.context, state.results
        )

        self._record(state, agent_result)
        self._emit_settled(on_progress, agent, agent_result, index, total_steps)
        return agent_result

    async def _execute_parallel_step(
        self,
        workflow: WorkflowDefinition,
        step: ParallelStep,
        state: WorkflowState,
        index: int,
        total_steps: int,
        on_progress: ProgressCallback | None,
    ) -> list[AgentResult]:
        """Run every listed agent concurrently and record all results.

        Progress and results are reported in declared agent order once every
        task has settled, independent of completion order.
        """
        agents = [self._roster_entry(workflow, agent_id) for agent_id in step.agents]
        for agent in agents:
            self._emit_starting(on_progress, agent, index, total_steps)

        agent_results = await self._run_agents(
            workflow, agents, step.task, state.context, state.results
        )

        for agent, agent_result in zip(agents, agent_results):
            self._record(state, agent_result)
            self._emit_settled(on_progress, agent, agent_result, index, total_steps)

        failed = [r.agent_id for r in agent_results if not r.success]
        if failed:
            logger.warning(
                "parallel_step_partial_failure",
                workflow=workflow.name,
                step=index + 1,
                failed_agents=failed,
                total_agents=len(agents),
            )
        return agent_results

    async def _run_agents(
        self,
        workflow: WorkflowDefinition,
        agents: list[WorkflowAgent],
        task: str,
        context: WorkflowContext,
        previous_results: dict[str, AgentResult],
    ) -> list[AgentResult]:
        """Invoke the executor for each agent concurrently and wait for all.

        Tasks are created in declared order, so invocation start order follows
        it. Every agent sees the same snapshot of previous results.
        """
        prompt = build_agent_prompt(task, context, dict(previous_results))
        tasks = [
            asyncio.create_task(
                self._invoke_agent(agent, prompt, context.project_name),
                name=f"workflow_{workflow.name}_{agent.id}",
            )
            for agent in agents
        ]
        self._inflight.update(tasks)
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._inflight.difference_update(tasks)

        agent_results: list[AgentResult] = []
        for agent, outcome in zip(agents, outcomes):
            if isinstance(outcome, AgentResult):
                agent_results.append(outcome)
                continue
            # Only cancellation reaches here; executor errors are converted
            # inside _invoke_agent.
            error = (
                ABORTED_ERROR if isinstance(outcome, asyncio.CancelledError)
                else str(outcome)
            )
            agent_results.append(
                AgentResult(agent_id=agent.id, role=agent.role, success=False, error=error)
            )
        return agent_results

    async def _invoke_agent(
        self,
        agent: WorkflowAgent,
        prompt: str,
        project_name: str,
    ) -> AgentResult:
        """Run one executor call and convert its outcome into an AgentResult."""
        started = time.time()
        # timeout(None) never fires, so expired() only reports our own deadline.
        deadline = asyncio.timeout(self.task_timeout_seconds or None)
        try:
            async with deadline:
                output = await self.executor.execute_agent_task(
                    agent.id, agent.system_prompt, prompt, project_name
                )
        except Exception as e:
            if isinstance(e, TimeoutError) and deadline.expired():
                logger.error(
                    "agent_task_timeout",
                    agent_id=agent.id,
                    timeout_seconds=self.task_timeout_seconds,
                )
                error = f"Agent timed out after {self.task_timeout_seconds}s"
            else:
                logger.error(
                    "agent_task_failed",
                    agent_id=agent.id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                error = str(e) or type(e).__name__
            return AgentResult(
                agent_id=agent.id,
                role=agent.role,
                success=False,
                error=error,
                timestamp=started,
            )

        logger.info(
            "agent_task_complete",
            agent_id=agent.id,
            output_length=len(output),
            latency_ms=int((time.time() - started) * 1000),
        )
        return AgentResult(
            agent_id=agent.id,
            role=agent.role,
            output=output,
            success=True,
            timestamp=started,
        )

    @staticmethod
    def _roster_entry(workflow: WorkflowDefinition, agent_id: str) -> WorkflowAgent:
        agent = workflow.get_agent(agent_id)
        if agent is None:
            raise MisconfiguredWorkflowError(
                f"Agent definition not found: {agent_id}", agent_id=agent_id
            )
        return agent

    @staticmethod
    def _record(state: WorkflowState, agent_result: AgentResult) -> None:
        state.results[agent_result.agent_id] = agent_result
        if agent_result.success:
            state.completed_agents.append(agent_result.agent_id)

    def _emit_starting(
        self,
        on_progress: ProgressCallback | None,
        agent: WorkflowAgent,
        index: int,
        total_steps: int,
    ) -> None:
        self._emit(on_progress, ProgressUpdate(
            step=index + 1,
            total_steps=total_steps,
            agent_id=agent.id,
            status=ProgressStatus.STARTING,
            message=f"Starting {agent.role}...",
        ))

    def _emit_settled(
        self,
        on_progress: ProgressCallback | None,
        agent: WorkflowAgent,
        agent_result: AgentResult,
        index: int,
        total_steps: int,
    ) -> None:
        if agent_result.success:
            status = ProgressStatus.COMPLETE
            message = f"{agent.role} completed"
        else:
            status = ProgressStatus.FAILED
            message = f"{agent.role} failed: {agent_result.error}"
        self._emit(on_progress, ProgressUpdate(
            step=index + 1,
            total_steps=total_steps,
            agent_id=agent.id,
            status=status,
            message=message,
        ))

    @staticmethod
    def _emit(on_progress: ProgressCallback | None, update: ProgressUpdate) -> None:
        """Deliver a progress update; callback errors are logged and ignored."""
        if on_progress is None:
            return
        try:
            on_progress(update)
        except Exception as e:
            logger.warning(
                "progress_callback_failed",
                agent_id=update.agent_id,
                status=update.status.value,
                error=str(e),
            )

    def abort(self) -> bool:
        """Abort the running workflow, cancelling in-flight agent tasks.

        Returns:
            True if a run was in flight.
        """
        if not self._running:
            return False
        self._abort_requested = True
        for task in list(self._inflight):
            task.cancel()
        logger.info(
            "workflow_abort_requested",
            workflow=self._current_workflow.name if self._current_workflow else None,
            cancelled_tasks=len(self._inflight),
        )
        return True

    def pause(self) -> WorkflowState | None:
        """Snapshot the running workflow for a later resume, then abort it.

        Returns:
            The saved state, or None when nothing is running.
        """
        if self._current_state is None:
            return None
        self._current_state.paused_at = time.time()
        snapshot = self._current_state.model_copy(deep=True)
        self.abort()
        logger.info(
            "workflow_paused",
            workflow=snapshot.workflow_name,
            current_step=snapshot.current_step,
        )
        return snapshot

    def is_workflow_running(self) -> bool:
        """Check if a workflow is currently running."""
        return self._running

    def get_current_state(self) -> WorkflowState | None:
        """Get a copy of the in-flight run's state (for persistence)."""
        return self._current_state.model_copy(deep=True) if self._current_state else None

    def get_current_workflow(self) -> WorkflowDefinition | None:
        """Get the in-flight workflow definition (for inspection)."""
        return self._current_workflow
