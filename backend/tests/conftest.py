"""Shared test fixtures for backend tests.

Provides fake agents, a scripted task executor, an EventBus and LLM
response factories so that tests never touch real LLM APIs.
"""

import asyncio
import sys
from collections import defaultdict
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from agents.registry import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

# Use litellm's bundled model cost map instead of fetching it over the
# network at import time (the failed fetch's warning can deadlock the
# import under pytest's log capture in offline environments).
__import__("os").environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from agents.llm import LLMMetrics, LLMResponse  # noqa: E402
from agents.registry import AgentRegistry  # noqa: E402
from agents.types import AgentMode  # noqa: E402
from config import Settings  # noqa: E402
from events.bus import EventBus  # noqa: E402
from workflows.builders import Persona  # noqa: E402

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    return EventBus(max_history=100)


# ---------------------------------------------------------------------------
# Fake agents
# ---------------------------------------------------------------------------


class FakeAgent:
    """In-memory Agent that echoes the task text."""

    def __init__(
        self,
        conversation_id: str,
        mode: AgentMode,
        agent_settings: Settings | None = None,
    ) -> None:
        self._conversation_id = conversation_id
        self._mode = mode
        self.agent_settings = agent_settings
        self.messages: list[dict[str, Any]] = []
        self.prompts: list[str | None] = []
        self.aborted = 0
        self.disposed = False
        self.dispose_error: Exception | None = None
        self.reply: str | None = None
        self.chat_error: Exception | None = None

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def mode(self) -> AgentMode:
        return self._mode

    async def chat(self, text: str, *, system_prompt: str | None = None) -> str:
        self.prompts.append(system_prompt)
        if self.chat_error is not None:
            raise self.chat_error
        self.messages.append({"role": "user", "content": text})
        return self.reply if self.reply is not None else f"echo: {text}"

    def load_history(self, messages: list[dict[str, Any]]) -> None:
        self.messages = list(messages)

    def abort(self) -> None:
        self.aborted += 1

    def dispose(self) -> None:
        self.disposed = True
        if self.dispose_error is not None:
            raise self.dispose_error


class RecordingAgentFactory:
    """Async agent factory that records every construction.

    Yields to the event loop before building, so concurrent callers really
    interleave.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, AgentMode]] = []
        self.settings_seen: list[Settings] = []
        self.created: list[FakeAgent] = []
        self.fail_with: Exception | None = None

    async def __call__(
        self, conversation_id: str, mode: AgentMode, agent_settings: Settings
    ) -> FakeAgent:
        self.calls.append((conversation_id, mode))
        self.settings_seen.append(agent_settings)
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        agent = FakeAgent(conversation_id, mode, agent_settings)
        self.created.append(agent)
        return agent


@pytest.fixture()
def agent_factory() -> RecordingAgentFactory:
    """Provide a recording agent factory for each test."""
    return RecordingAgentFactory()


@pytest.fixture()
def registry(agent_factory: RecordingAgentFactory) -> AgentRegistry:
    """Provide an unbounded AgentRegistry backed by fake agents."""
    return AgentRegistry(agent_factory=agent_factory, max_active_agents=0)


# ---------------------------------------------------------------------------
# Scripted executor
# ---------------------------------------------------------------------------


class ScriptedExecutor:
    """AgentTaskExecutor with per-agent outputs, failures and delays.

    Attributes:
        calls: (agent_id, system_prompt, task, project_name) per invocation,
            in start order.
        finished: Agent ids in completion order.
        gates: Per-agent events; an agent with a gate waits for it to be set.
        cancelled: Agent ids whose call observed cancellation.
    """

    def __init__(
        self,
        outputs: dict[str, str] | None = None,
        failures: dict[str, Exception] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.outputs = outputs or {}
        self.failures = failures or {}
        self.delays = delays or {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, str, str, str]] = []
        self.finished: list[str] = []
        self.cancelled: list[str] = []
        self.started: dict[str, asyncio.Event] = defaultdict(asyncio.Event)

    def gate(self, agent_id: str) -> asyncio.Event:
        """Make ``agent_id`` block until the returned event is set."""
        event = asyncio.Event()
        self.gates[agent_id] = event
        return event

    async def execute_agent_task(
        self,
        agent_id: str,
        system_prompt: str,
        task: str,
        project_name: str,
    ) -> str:
        self.calls.append((agent_id, system_prompt, task, project_name))
        self.started[agent_id].set()
        try:
            if agent_id in self.delays:
                await asyncio.sleep(self.delays[agent_id])
            if agent_id in self.gates:
                await self.gates[agent_id].wait()
        except asyncio.CancelledError:
            self.cancelled.append(agent_id)
            raise
        self.finished.append(agent_id)
        if agent_id in self.failures:
            raise self.failures[agent_id]
        return self.outputs.get(agent_id, f"output of {agent_id}")

    @property
    def called_agent_ids(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture()
def executor() -> ScriptedExecutor:
    """Provide a ScriptedExecutor with default outputs."""
    return ScriptedExecutor()


# ---------------------------------------------------------------------------
# Personas
# ---------------------------------------------------------------------------


@pytest.fixture()
def personas() -> list[Persona]:
    return [
        Persona(id="1", name="Alice", backstory="A busy product manager."),
        Persona(id="2", name="Bob", backstory="A retired nurse."),
        Persona(id="3", name="Chen", backstory="A student who codes at night."),
    ]


# ---------------------------------------------------------------------------
# Response Factories
# ---------------------------------------------------------------------------


def make_llm_response(content: str = "", finish_reason: str = "stop") -> LLMResponse:
    """Create an LLMResponse with sensible defaults."""
    return LLMResponse(
        content=content,
        finish_reason=finish_reason,
        metrics=LLMMetrics(model="mock", input_tokens=10, output_tokens=20, latency_ms=100),
    )

