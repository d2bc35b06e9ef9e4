"""Shared types for agents and the agent registry.

The registry and the workflow orchestrator only depend on the structural
contracts defined here. Concrete agents (see ``agents.chat_agent``) and task
executors (see ``agents.executors``) satisfy them without inheriting from them.
"""

from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from config import Settings


class AgentMode(StrEnum):
    """Context an agent is created for."""

    CHAT = "chat"
    BUILD = "build"
    FEEDBACK = "feedback"


class AgentCapability(BaseModel):
    """A named affordance registered for a conversation.

    Attributes:
        name: Capability name used for lookups (exact match).
        description: Human-readable description.
        tools: Ordered tool names backing the capability.
    """

    name: str
    description: str = ""
    tools: list[str] = Field(default_factory=list)


@runtime_checkable
class Agent(Protocol):
    """Minimal contract the registry needs from an agent instance."""

    @property
    def conversation_id(self) -> str: ...

    @property
    def mode(self) -> AgentMode: ...

    async def chat(
        self,
        text: str,
        *,
        system_prompt: str | None = None,
    ) -> str: ...

    def load_history(self, messages: list[dict[str, Any]]) -> None: ...

    def abort(self) -> None: ...

    def dispose(self) -> None: ...


class AgentTaskExecutor(Protocol):
    """Sole gateway from the workflow orchestrator to model-backed computation."""

    async def execute_agent_task(
        self,
        agent_id: str,
        system_prompt: str,
        task: str,
        project_name: str,
    ) -> str:
        """Run one agent turn and return its text, raising on failure."""
        ...


# Builds a new agent for (conversation_id, mode, agent_settings). May raise on bad
# configuration.
AgentFactory = Callable[[str, AgentMode, Settings], Agent | Awaitable[Agent]]
