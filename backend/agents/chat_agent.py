"""LiteLLM-backed conversation agent.

ChatAgent is the default ``Agent`` implementation handed to the registry. It
keeps the conversation history in memory, produces one assistant reply per
``chat`` call, and supports aborting the in-flight call.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from agents.errors import (
    AgentAbortedError,
    AgentConstructionError,
    AgentError,
    AgentErrorType,
    TaskExecutionError,
)
from agents.llm import LLMClient, MockLLMClient
from agents.prompts import CHAT_SYSTEM_PROMPT, MOCK_RESPONSE
from agents.types import AgentMode
from config import Settings, settings

logger = structlog.get_logger()


MessagesCallback = Callable[[str, list[dict[str, Any]]], Awaitable[None] | None]


class ChatAgent:
    """A stateful agent bound to one conversation.

    Attributes:
        llm_client: Client used for every reply.
        on_messages_updated: Optional hook called with (conversation_id,
            history) after each completed turn, typically for persistence.
    """

    def __init__(
        self,
        conversation_id: str,
        mode: AgentMode,
        llm_client: LLMClient,
        on_messages_updated: MessagesCallback | None = None,
    ) -> None:
        self._conversation_id = conversation_id
        self._mode = mode
        self.llm_client = llm_client
        self.on_messages_updated = on_messages_updated
        self._history: list[dict[str, Any]] = []
        self._current_call: asyncio.Task[Any] | None = None
        self._aborted = False
        self._disposed = False

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def mode(self) -> AgentMode:
        return self._mode

    @property
    def history(self) -> list[dict[str, Any]]:
        """A copy of the conversation history."""
        return list(self._history)

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def load_history(self, messages: list[dict[str, Any]]) -> None:
        """Replace the in-memory history with previously persisted messages."""
        self._history = [dict(message) for message in messages]
        logger.info(
            "agent_history_loaded",
            conversation_id=self._conversation_id,
            message_count=len(self._history),
        )

    async def chat(
        self,
        text: str,
        *,
        system_prompt: str | None = None,
    ) -> str:
        """Send a user message and return the assistant's reply.

        Args:
            text: User message.
            system_prompt: Overrides the default system prompt for this turn.

        Returns:
            The assistant reply text.

        Raises:
            AgentAbortedError: If ``abort`` was called during the call.
            TaskExecutionError: If the agent is disposed or the LLM call fails.
        """
        if self._disposed:
            raise TaskExecutionError(
                "Agent has been disposed",
                conversation_id=self._conversation_id,
            )

        self._aborted = False
        user_message = {"role": "user", "content": text}

        self._current_call = asyncio.create_task(
            self.llm_client.complete(
                system_prompt or CHAT_SYSTEM_PROMPT,
                [*self._history, user_message],
                agent_id=self._conversation_id,
            ),
            name=f"chat_{self._conversation_id}",
        )
        try:
            response = await self._current_call
        except asyncio.CancelledError:
            if not self._aborted:
                raise
            logger.info("agent_chat_aborted", conversation_id=self._conversation_id)
            raise AgentAbortedError(
                "Agent call was aborted",
                conversation_id=self._conversation_id,
            ) from None
        except AgentError as e:
            logger.error(
                "agent_chat_failed",
                conversation_id=self._conversation_id,
                category=e.error_type.value,
                error=str(e),
            )
            if e.conversation_id is None:
                e.conversation_id = self._conversation_id
            raise
        except Exception as e:
            logger.error(
                "agent_chat_failed",
                conversation_id=self._conversation_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise TaskExecutionError(
                str(e), conversation_id=self._conversation_id
            ) from e
        finally:
            self._current_call = None

        self._history.append(user_message)
        self._history.append({"role": "assistant", "content": response.content})
        await self._notify_messages_updated()
        return response.content

    async def _notify_messages_updated(self) -> None:
        """Invoke the persistence hook; failures are logged, never raised."""
        if self.on_messages_updated is None:
            return
        try:
            result = self.on_messages_updated(self._conversation_id, self.history)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "agent_messages_update_failed",
                conversation_id=self._conversation_id,
                error=str(e),
            )

    def abort(self) -> None:
        """Cancel the in-flight LLM call, if any."""
        if self._current_call is not None and not self._current_call.done():
            self._aborted = True
            self._current_call.cancel()

    def dispose(self) -> None:
        """Abort any in-flight call and release the history."""
        self.abort()
        self._history.clear()
        self._disposed = True
        logger.debug("chat_agent_disposed", conversation_id=self._conversation_id)


def create_chat_agent(
    conversation_id: str,
    mode: AgentMode,
    agent_settings: Settings | None = None,
    on_messages_updated: MessagesCallback | None = None,
) -> ChatAgent:
    """Default agent factory for the registry.

    Args:
        conversation_id: Conversation the agent serves.
        mode: Context the agent is created for.
        agent_settings: Configuration to build from; the registry passes the
            settings merged through ``update_settings``. Defaults to config.
        on_messages_updated: Optional persistence hook.

    Raises:
        AgentConstructionError: If a Gemini model is configured without an
            API key and mock mode is off.
    """
    config = agent_settings or settings
    if config.use_mock_llm:
        llm_client: LLMClient = MockLLMClient(
            default_content=MOCK_RESPONSE, agent_settings=config
        )
    else:
        if config.default_model.startswith("gemini/") and not config.gemini_api_key:
            raise AgentConstructionError(
                "API key not found. Please set GEMINI_API_KEY in settings.",
                conversation_id=conversation_id,
                error_type=AgentErrorType.INITIALIZATION_FAILED,
            )
        llm_client = LLMClient(config)

    return ChatAgent(
        conversation_id=conversation_id,
        mode=mode,
        llm_client=llm_client,
        on_messages_updated=on_messages_updated,
    )
