"""Task executors connecting the workflow orchestrator to model computation.

Two implementations of the ``AgentTaskExecutor`` protocol are provided:

- RegistryTaskExecutor: runs each task on a temporary build-mode agent
  built by an AgentRegistry's factory, then disposes it.
- LLMTaskExecutor: makes a single direct LLM call per task, for workflows that
  do not need full agent state.
"""

import uuid
from collections.abc import Awaitable

import structlog

from agents.errors import AgentError, TaskExecutionError
from agents.llm import LLMClient
from agents.registry import AgentRegistry
from agents.types import Agent, AgentMode
from config import Settings

logger = structlog.get_logger()


class RegistryTaskExecutor:
    """Executes workflow tasks on short-lived agents.

    Task agents are built by ``registry``'s factory with its current settings
    but live in a private, unbounded ``task_registry``. They never count
    against the conversation agents' limit and never evict them.

    Each task gets its own conversation id of the form
    ``workflow-{project}-{agent_id}-{12 hex chars}``; the agent is always
    disposed once the task settles.
    """

    def __init__(self, registry: AgentRegistry) -> None:
        self.registry = registry
        self.task_registry = AgentRegistry(
            agent_factory=self._build_agent, max_active_agents=0
        )
        self._active_conversations: set[str] = set()

    def _build_agent(
        self, conversation_id: str, mode: AgentMode, agent_settings: Settings
    ) -> Agent | Awaitable[Agent]:
        # Read at build time so update_settings on the conversation registry applies.
        return self.registry.agent_factory(
            conversation_id, mode, self.registry.agent_settings
        )

    @property
    def active_conversation_count(self) -> int:
        return len(self._active_conversations)

    async def execute_agent_task(
        self,
        agent_id: str,
        system_prompt: str,
        task: str,
        project_name: str,
    ) -> str:
        """Run one task on a temporary agent.

        Raises:
            AgentConstructionError: If the agent could not be created.
            TaskExecutionError: If the agent failed to respond.
        """
        conversation_id = f"workflow-{project_name}-{agent_id}-{uuid.uuid4().hex[:12]}"
        self._active_conversations.add(conversation_id)

        try:
            async with self.task_registry.lease(conversation_id, AgentMode.BUILD) as agent:
                return await agent.chat(task, system_prompt=system_prompt)
        except AgentError as e:
            if e.agent_id is None:
                e.agent_id = agent_id
            raise
        except Exception as e:
            raise TaskExecutionError(
                f"Agent {agent_id} failed: {e}",
                conversation_id=conversation_id,
                agent_id=agent_id,
            ) from e
        finally:
            try:
                await self.task_registry.dispose_agent(conversation_id)
            except Exception as dispose_error:
                logger.error(
                    "workflow_agent_dispose_failed",
                    conversation_id=conversation_id,
                    error=str(dispose_error),
                )
            self._active_conversations.discard(conversation_id)

    async def dispose(self) -> None:
        """Dispose every workflow agent still in flight."""
        for conversation_id in list(self._active_conversations):
            try:
                await self.task_registry.dispose_agent(conversation_id)
            except Exception as e:
                logger.error(
                    "workflow_agent_dispose_failed",
                    conversation_id=conversation_id,
                    error=str(e),
                )
        self._active_conversations.clear()


class LLMTaskExecutor:
    """Executes workflow tasks as single stateless LLM calls."""

    def __init__(self, llm_client: LLMClient | None = None) -> None:
        self.llm_client = llm_client or LLMClient()

    async def execute_agent_task(
        self,
        agent_id: str,
        system_prompt: str,
        task: str,
        project_name: str,
    ) -> str:
        try:
            response = await self.llm_client.complete(
                system_prompt, [{"role": "user", "content": task}], agent_id=agent_id
            )
        except AgentError as e:
            logger.error(
                "llm_task_failed",
                agent_id=agent_id,
                project_name=project_name,
                category=e.error_type.value,
                error=str(e),
            )
            raise TaskExecutionError(
                f"Agent {agent_id} failed: {e}",
                agent_id=agent_id,
                error_type=e.error_type,
            ) from e
        except Exception as e:
            logger.error(
                "llm_task_failed",
                agent_id=agent_id,
                project_name=project_name,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise TaskExecutionError(
                f"Agent {agent_id} failed: {e}", agent_id=agent_id
            ) from e
        return response.content
