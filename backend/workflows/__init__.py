"""Declarative multi-agent workflows.

Key Components:
    - WorkflowDefinition and friends: Pydantic models for rosters, steps,
      context, results and progress
    - WorkflowOrchestrator: Executes definitions through a task executor
    - Builders: Prebuilt feature-survey, research and build-iteration
      workflows
"""

from workflows.builders import (
    Persona,
    create_build_iteration_workflow,
    create_feature_survey_workflow,
    create_research_workflow,
)
from workflows.orchestrator import WorkflowOrchestrator, build_agent_prompt
from workflows.types import (
    AgentResult,
    ParallelStep,
    ProgressCallback,
    ProgressStatus,
    ProgressUpdate,
    SequentialStep,
    WorkflowAgent,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowResult,
    WorkflowState,
    WorkflowStep,
)

__all__ = [
    "AgentResult",
    "ParallelStep",
    "Persona",
    "ProgressCallback",
    "ProgressStatus",
    "ProgressUpdate",
    "SequentialStep",
    "WorkflowAgent",
    "WorkflowContext",
    "WorkflowDefinition",
    "WorkflowOrchestrator",
    "WorkflowResult",
    "WorkflowState",
    "WorkflowStep",
    "build_agent_prompt",
    "create_build_iteration_workflow",
    "create_feature_survey_workflow",
    "create_research_workflow",
]
