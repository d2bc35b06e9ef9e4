"""Event type definitions for the Personaut event system.

This module defines the events that flow from workflow execution to the host
UI. Progress updates produced by the orchestrator are translated into these
events by the workflow service.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types in the Personaut system.

    Events are categorized by:
    - Workflow lifecycle: Start, completion, error and cancellation
    - Agent progress: Per-agent task transitions inside a workflow
    - Channel: Closing sentinel for subscribers
    """

    # Workflow lifecycle
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_COMPLETE = "workflow_complete"
    WORKFLOW_ERROR = "workflow_error"
    WORKFLOW_CANCELLED = "workflow_cancelled"

    # Agent progress
    AGENT_STARTING = "agent_starting"
    AGENT_COMPLETE = "agent_complete"
    AGENT_FAILED = "agent_failed"

    # Channel
    CHANNEL_CLOSED = "channel_closed"


class WorkflowEvent(BaseModel):
    """An event emitted during workflow execution.

    Each event includes:
    - type: The category of event (from EventType enum)
    - timestamp: Unix timestamp when the event occurred
    - conversation_id: Which host conversation this event belongs to
    - agent_id: Which workflow agent produced this event (if applicable)
    - data: Event-specific payload

    Payload schemas by event type:

    WORKFLOW_STARTED:
        - workflow: str - Workflow name
        - project_name: str - Project the workflow runs for
        - total_steps: int - Number of steps

    AGENT_STARTING / AGENT_COMPLETE / AGENT_FAILED:
        - step: int - 1-based step index
        - total_steps: int - Number of steps
        - message: str - Human-readable description

    WORKFLOW_COMPLETE:
        - workflow: str - Workflow name
        - success: bool - Overall success flag
        - results: dict - Per-agent results
        - error: Optional[str] - Why the workflow halted

    WORKFLOW_ERROR:
        - error: str - Error message
        - phase: str - "validation" or "execution"
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    conversation_id: str
    agent_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
