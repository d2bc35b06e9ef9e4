"""Workflow definition, context, result and progress models.

A workflow is an agent roster plus an ordered list of steps. Steps are a
tagged union on ``type``:

- ``sequential``: one agent; a failure halts the rest of the workflow.
- ``parallel``: several agents run concurrently; failures are recorded per
  agent and never stop siblings or later steps.

All models use Pydantic v2 so that payloads arriving from the host can be
validated on ingress and converted into these shapes before reaching the
orchestrator.
"""

import time
from collections.abc import Callable
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class WorkflowAgent(BaseModel):
    """An agent in a workflow's roster.

    Attributes:
        id: Identifier referenced by steps.
        role: Human-readable role name (e.g., "Feature Analyst").
        system_prompt: System prompt used for every task this agent runs.
    """

    id: str
    role: str
    system_prompt: str


class SequentialStep(BaseModel):
    """A single agent task whose failure halts the workflow."""

    type: Literal["sequential"] = "sequential"
    agent: str
    task: str
    # Informational only; ordering comes from the step's position.
    dependencies: list[str] = Field(default_factory=list)

    @property
    def agent_ids(self) -> list[str]:
        return [self.agent]


class ParallelStep(BaseModel):
    """A fan-out of agent tasks that settle independently."""

    type: Literal["parallel"] = "parallel"
    agents: list[str]
    task: str
    dependencies: list[str] = Field(default_factory=list)

    @property
    def agent_ids(self) -> list[str]:
        return list(self.agents)


WorkflowStep = Annotated[SequentialStep | ParallelStep, Field(discriminator="type")]


class WorkflowDefinition(BaseModel):
    """A complete workflow: roster plus ordered steps."""

    name: str
    description: str | None = None
    agents: list[WorkflowAgent]
    steps: list[WorkflowStep]

    def get_agent(self, agent_id: str) -> WorkflowAgent | None:
        """Look up a roster entry by id."""
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def missing_agent_ids(self) -> list[str]:
        """Agent ids referenced by steps but absent from the roster, in step order."""
        roster = {agent.id for agent in self.agents}
        missing: list[str] = []
        for step in self.steps:
            for agent_id in step.agent_ids:
                if agent_id not in roster and agent_id not in missing:
                    missing.append(agent_id)
        return missing


class WorkflowContext(BaseModel):
    """Execution context shared by every step of a run.

    Attributes:
        project_name: Project the workflow runs for.
        iteration_number: Build iteration, when applicable.
        data: Free-form key/value bag included in every task prompt.
    """

    project_name: str
    iteration_number: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class AgentResult(BaseModel):
    """Outcome of one agent task."""

    agent_id: str
    role: str
    output: str = ""
    success: bool
    error: str | None = None
    timestamp: float = Field(default_factory=time.time)


class WorkflowResult(BaseModel):
    """Outcome of a whole workflow run.

    ``success`` is False only when a sequential step failed or the run was
    aborted; parallel failures are visible in ``results`` alone.
    """

    workflow_name: str
    success: bool = False
    results: dict[str, AgentResult] = Field(default_factory=dict)
    error: str | None = None
    start_time: float
    end_time: float = 0.0


class ProgressStatus(StrEnum):
    """Per-agent progress transitions."""

    STARTING = "starting"
    COMPLETE = "complete"
    FAILED = "failed"


class ProgressUpdate(BaseModel):
    """A single progress notification.

    Attributes:
        step: 1-based index of the step the agent belongs to.
        total_steps: Number of steps in the workflow.
        agent_id: Agent whose status changed.
        status: The transition.
        message: Human-readable description.
    """

    step: int
    total_steps: int
    agent_id: str
    status: ProgressStatus
    message: str = ""


class WorkflowState(BaseModel):
    """Snapshot of an in-flight run, used for pause and resume."""

    workflow_name: str
    project_name: str
    current_step: int = 0
    completed_agents: list[str] = Field(default_factory=list)
    results: dict[str, AgentResult] = Field(default_factory=dict)
    context: WorkflowContext
    start_time: float = Field(default_factory=time.time)
    paused_at: float | None = None


# Invoked for every progress transition; the return value is ignored.
ProgressCallback = Callable[[ProgressUpdate], object]
