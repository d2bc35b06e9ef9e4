"""Tests for agents/chat_agent.py -- the default conversation agent.

Covers reply generation and history, system prompt override, abort of the
in-flight call, disposal, the persistence hook and the registry factory.
"""

import asyncio
from typing import Any

import pytest

from agents.chat_agent import ChatAgent, create_chat_agent
from agents.errors import (
    AgentAbortedError,
    AgentConstructionError,
    AgentErrorType,
    TaskExecutionError,
)
from agents.llm import LLMResponse, MockLLMClient
from agents.prompts import CHAT_SYSTEM_PROMPT, MOCK_RESPONSE
from agents.types import Agent, AgentMode
from config import Settings, settings
from tests.conftest import make_llm_response

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _BlockingLLMClient(MockLLMClient):
    """Mock whose call blocks until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def complete(  # type: ignore[override]
        self, system_prompt: str, messages: list[dict[str, Any]], **kwargs: Any
    ) -> LLMResponse:
        self.entered.set()
        await self.release.wait()
        return make_llm_response("late")


class _RateLimitedLLMClient(MockLLMClient):
    async def complete(self, system_prompt, messages, *, agent_id=None):  # type: ignore[override]
        raise TaskExecutionError(
            "LLM call failed: quota", error_type=AgentErrorType.NETWORK_ERROR
        )


def _agent(*responses: str, **kwargs: Any) -> tuple[ChatAgent, MockLLMClient]:
    client = MockLLMClient(responses=[make_llm_response(r) for r in responses])
    return ChatAgent("conv_1", AgentMode.CHAT, client, **kwargs), client


# =========================================================================
# chat
# =========================================================================


class TestChat:
    """Replies and history."""

    async def test_returns_reply_and_records_history(self) -> None:
        agent, client = _agent("Hi there!")

        reply = await agent.chat("Hello")

        assert reply == "Hi there!"
        assert agent.history == [
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hi there!"},
        ]
        call = client.call_history[0]
        assert call["system_prompt"] == CHAT_SYSTEM_PROMPT
        assert call["agent_id"] == "conv_1"
        assert call["messages"] == [{"role": "user", "content": "Hello"}]

    async def test_history_sent_on_next_turn(self) -> None:
        agent, client = _agent("one", "two")
        await agent.chat("first")
        await agent.chat("second")

        messages = client.call_history[1]["messages"]
        assert [m["content"] for m in messages] == ["first", "one", "second"]

    async def test_system_prompt_override(self) -> None:
        agent, client = _agent("ok")
        await agent.chat("task", system_prompt="You are a UX designer.")
        assert client.call_history[0]["system_prompt"] == "You are a UX designer."

    async def test_load_history(self) -> None:
        agent, client = _agent("ok")
        agent.load_history([{"role": "user", "content": "earlier"}])
        await agent.chat("now")
        assert client.call_history[0]["messages"][0]["content"] == "earlier"

    async def test_llm_failure_wrapped(self) -> None:
        agent, _ = _agent()  # no responses -> IndexError
        with pytest.raises(TaskExecutionError) as exc_info:
            await agent.chat("Hello")
        assert exc_info.value.conversation_id == "conv_1"
        assert agent.history == []

    async def test_llm_error_keeps_its_category(self) -> None:
        agent = ChatAgent("conv_1", AgentMode.CHAT, _RateLimitedLLMClient())
        with pytest.raises(TaskExecutionError) as exc_info:
            await agent.chat("Hello")
        assert exc_info.value.error_type == AgentErrorType.NETWORK_ERROR
        assert exc_info.value.conversation_id == "conv_1"

    def test_satisfies_agent_protocol(self) -> None:
        agent, _ = _agent()
        assert isinstance(agent, Agent)


# =========================================================================
# abort / dispose
# =========================================================================


class TestAbortAndDispose:
    """abort cancels the in-flight call; dispose makes the agent unusable."""

    async def test_abort_in_flight_call(self) -> None:
        client = _BlockingLLMClient()
        agent = ChatAgent("conv_1", AgentMode.BUILD, client)

        pending = asyncio.create_task(agent.chat("Hello"))
        await client.entered.wait()
        agent.abort()

        with pytest.raises(AgentAbortedError):
            await pending
        assert agent.history == []

    async def test_abort_without_call_is_noop(self) -> None:
        agent, _ = _agent()
        agent.abort()

    async def test_dispose_rejects_further_chat(self) -> None:
        agent, _ = _agent("ok")
        await agent.chat("Hello")
        agent.dispose()

        assert agent.is_disposed
        assert agent.history == []
        with pytest.raises(TaskExecutionError, match="disposed"):
            await agent.chat("again")


# =========================================================================
# on_messages_updated hook
# =========================================================================


class TestMessagesHook:
    """The persistence hook sees each completed turn; its errors are ignored."""

    async def test_async_hook_called(self) -> None:
        seen: list[tuple[str, int]] = []

        async def hook(conversation_id: str, messages: list[dict[str, Any]]) -> None:
            seen.append((conversation_id, len(messages)))

        agent, _ = _agent("ok", on_messages_updated=hook)
        await agent.chat("Hello")
        assert seen == [("conv_1", 2)]

    async def test_hook_failure_does_not_break_chat(self) -> None:
        def hook(conversation_id: str, messages: list[dict[str, Any]]) -> None:
            raise OSError("disk full")

        agent, _ = _agent("ok", on_messages_updated=hook)
        assert await agent.chat("Hello") == "ok"


# =========================================================================
# create_chat_agent
# =========================================================================


class TestCreateChatAgent:
    """Default registry factory."""

    async def test_mock_mode(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "use_mock_llm", True)
        agent = create_chat_agent("conv_1", AgentMode.FEEDBACK)

        assert agent.mode == AgentMode.FEEDBACK
        assert await agent.chat("Hello") == MOCK_RESPONSE

    def test_missing_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "use_mock_llm", False)
        monkeypatch.setattr(settings, "default_model", "gemini/gemini-2.0-flash")
        monkeypatch.setattr(settings, "gemini_api_key", "")

        with pytest.raises(AgentConstructionError, match="API key") as exc_info:
            create_chat_agent("conv_1", AgentMode.CHAT)
        assert exc_info.value.error_type == AgentErrorType.INITIALIZATION_FAILED

    def test_with_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "use_mock_llm", False)
        monkeypatch.setattr(settings, "gemini_api_key", "test-key")

        agent = create_chat_agent("conv_1", AgentMode.CHAT)
        assert agent.conversation_id == "conv_1"

    def test_explicit_settings_override_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "use_mock_llm", True)
        config = Settings(
            _env_file=None,
            use_mock_llm=False,
            default_model="gemini/gemini-2.5-pro",
            gemini_api_key="other-key",
        )

        agent = create_chat_agent("conv_1", AgentMode.CHAT, config)

        assert not isinstance(agent.llm_client, MockLLMClient)
        assert agent.llm_client.model == "gemini/gemini-2.5-pro"
        assert agent.llm_client.settings is config
