"""Agent lifecycle, LLM integration, prompts and task executors.

This module exports the key components needed for agent execution:
- Agent protocol, modes and capabilities
- AgentRegistry for per-conversation agent lifecycle management
- ChatAgent and its factory
- LLM client utilities with retry logic and metrics tracking
- Task executors used by the workflow orchestrator
"""

from agents.chat_agent import ChatAgent, create_chat_agent
from agents.errors import (
    AgentAbortedError,
    AgentConstructionError,
    AgentError,
    AgentErrorType,
    MisconfiguredWorkflowError,
    TaskExecutionError,
    WorkflowAlreadyRunningError,
)
from agents.executors import LLMTaskExecutor, RegistryTaskExecutor
from agents.llm import LLMClient, LLMMetrics, LLMResponse, MockLLMClient
from agents.registry import AgentRegistry, AgentRegistryEntry
from agents.types import (
    Agent,
    AgentCapability,
    AgentFactory,
    AgentMode,
    AgentTaskExecutor,
)

__all__ = [
    # Types
    "Agent",
    "AgentCapability",
    "AgentFactory",
    "AgentMode",
    "AgentTaskExecutor",
    # Errors
    "AgentError",
    "AgentErrorType",
    "AgentAbortedError",
    "AgentConstructionError",
    "MisconfiguredWorkflowError",
    "TaskExecutionError",
    "WorkflowAlreadyRunningError",
    # Registry
    "AgentRegistry",
    "AgentRegistryEntry",
    # Agents
    "ChatAgent",
    "create_chat_agent",
    # LLM
    "LLMClient",
    "LLMMetrics",
    "LLMResponse",
    "MockLLMClient",
    # Executors
    "LLMTaskExecutor",
    "RegistryTaskExecutor",
]
