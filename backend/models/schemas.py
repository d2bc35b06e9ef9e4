"""Pydantic schemas for messages crossing the host UI boundary.

Webview messages arrive as loosely-typed camelCase JSON. Each kind is a
member of a tagged union on ``type`` and is validated on ingress, before any
of it reaches the workflow core.
All models use Pydantic v2 with strict type validation.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from workflows.builders import Persona


class WorkflowRunStatus(StrEnum):
    """Lifecycle status of a workflow run owned by the service."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class HostMessage(BaseModel):
    """Base for inbound host messages (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    conversation_id: str = Field(
        min_length=1,
        description="Conversation the request belongs to",
        examples=["conv_abc123"],
    )


class StartWorkflowMessage(HostMessage):
    """Fields shared by every message that starts a workflow."""

    project_name: str = Field(
        min_length=1,
        max_length=200,
        description="Project the workflow runs for",
        examples=["habit-tracker"],
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form context included in every task prompt",
    )


class StartFeatureSurveyMessage(StartWorkflowMessage):
    """Request to survey personas about an idea."""

    type: Literal["start-feature-survey"]
    personas: list[Persona] = Field(min_length=1)
    idea: str = Field(min_length=1, max_length=10000)


class StartResearchMessage(StartWorkflowMessage):
    """Request to research an idea."""

    type: Literal["start-research"]
    idea: str = Field(min_length=1, max_length=10000)


class StartBuildIterationMessage(StartWorkflowMessage):
    """Request to run one UX -> developer -> feedback iteration."""

    type: Literal["start-build-iteration"]
    user_story: str = Field(min_length=1, max_length=10000)
    framework: str = Field(min_length=1, examples=["react", "vue"])
    personas: list[Persona] = Field(default_factory=list)
    previous_feedback: str | None = None
    iteration_number: int | None = Field(default=None, ge=1)


class StopWorkflowMessage(HostMessage):
    """Request to abort the conversation's running workflow."""

    type: Literal["stop-workflow"]


InboundMessage = Annotated[
    StartFeatureSurveyMessage
    | StartResearchMessage
    | StartBuildIterationMessage
    | StopWorkflowMessage,
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_host_message(raw: dict[str, Any] | str | bytes) -> InboundMessage:
    """Validate a raw host message into its typed form.

    Args:
        raw: A decoded JSON object or a JSON string.

    Returns:
        The typed message.

    Raises:
        pydantic.ValidationError: If the message is malformed or its type is
            unknown.
    """
    if isinstance(raw, (str, bytes)):
        return _inbound_adapter.validate_json(raw)
    return _inbound_adapter.validate_python(raw)
