"""Agent registry for per-conversation agent lifecycle management.

This module provides the AgentRegistry class, the single source of truth that
maps a conversation id to exactly one live agent. It also keeps a per-
conversation capability directory that hosts can query for discovery.

Usage:
    >>> from agents.chat_agent import create_chat_agent
    >>> from agents.registry import AgentRegistry
    >>>
    >>> registry = AgentRegistry(agent_factory=create_chat_agent)
    >>> agent = await registry.get_or_create_agent("conv_123", AgentMode.CHAT)
    >>> async with registry.lease("conv_123") as agent:
    ...     reply = await agent.chat("Hello!")
    >>>
    >>> registry.register_capability(
    ...     "conv_123",
    ...     AgentCapability(name="file-ops", description="Files", tools=["read"]),
    ... )
    >>> registry.query_capability("conv_123", "file-ops")
    True
    >>>
    >>> await registry.dispose_all_agents()
"""

import asyncio
import inspect
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog

from agents.errors import AgentConstructionError
from agents.types import Agent, AgentCapability, AgentFactory, AgentMode
from config import Settings, settings

logger = structlog.get_logger()


# Settings whose change invalidates every live agent.
CRITICAL_SETTINGS = frozenset({
    "gemini_api_key",
    "default_model",
    "llm_fallback_model",
    "use_mock_llm",
})


@dataclass
class AgentRegistryEntry:
    """Metadata tracked for each live agent.

    Attributes:
        agent: The agent instance.
        mode: Mode the agent was created with (first writer wins).
        created_at: Unix timestamp of creation.
        last_access: Unix timestamp of the last lookup through the registry.
        leases: Open ``lease`` blocks; a leased agent is never evicted.
    """

    agent: Agent
    mode: AgentMode
    created_at: float
    last_access: float
    leases: int = 0


class AgentRegistry:
    """Maps conversation ids to live agents and tracks their capabilities.

    The registry is an explicit object rather than a module-level singleton,
    so independent registries can coexist (one per host window, one per test).

    Thread Safety:
        Creation for a given conversation id is serialized by a per-id
        asyncio.Lock, so concurrent ``get_or_create_agent`` calls for the same
        id construct exactly one agent and all observe it. Map mutations
        happen without awaiting in between, so no caller can see a partially
        registered entry.

    Attributes:
        agent_factory: Callable building a new agent for (conversation_id,
            mode, agent_settings).
        agent_settings: Configuration handed to the factory, including every
            change merged through ``update_settings``.
        max_active_agents: Upper bound on live agents (0 disables it). The
            least recently accessed agent that is not leased is disposed to
            make room for a new one.
    """

    def __init__(
        self,
        agent_factory: AgentFactory,
        max_active_agents: int | None = None,
        agent_settings: Settings | None = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            agent_factory: Builds agents; may be sync or async and may raise.
            max_active_agents: Live agent limit (defaults to config).
            agent_settings: Base configuration for agents (defaults to config).
        """
        self.agent_factory = agent_factory
        self.agent_settings = agent_settings or settings
        self.max_active_agents = (
            max_active_agents if max_active_agents is not None
            else self.agent_settings.max_active_agents
        )
        self._agents: dict[str, AgentRegistryEntry] = {}
        self._capabilities: dict[str, list[AgentCapability]] = {}
        self._creation_locks: dict[str, asyncio.Lock] = {}
        self._host_settings: dict[str, Any] = {}
        logger.info(
            "agent_registry_initialized",
            max_active_agents=self.max_active_agents,
        )

    def _creation_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._creation_locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._creation_locks[conversation_id] = lock
        return lock

    async def get_or_create_agent(
        self,
        conversation_id: str,
        mode: AgentMode = AgentMode.CHAT,
    ) -> Agent:
        """Get the agent for a conversation, creating it on first use.

        An existing agent is returned as-is even when ``mode`` differs from
        the mode it was created with.

        Args:
            conversation_id: Opaque conversation identifier.
            mode: Mode for a newly created agent.

        Returns:
            The single live agent for the conversation.

        Raises:
            AgentConstructionError: If the factory fails. The registry is left
                unchanged.
        """
        existing = self._touch(conversation_id)
        if existing is not None:
            return existing

        async with self._creation_lock(conversation_id):
            # Another caller may have finished construction while we waited.
            existing = self._touch(conversation_id)
            if existing is not None:
                return existing

            logger.info(
                "agent_create_start",
                conversation_id=conversation_id,
                mode=mode.value,
            )

            try:
                agent = self.agent_factory(conversation_id, mode, self.agent_settings)
                if inspect.isawaitable(agent):
                    agent = await agent
            except AgentConstructionError:
                logger.error(
                    "agent_create_failed",
                    conversation_id=conversation_id,
                    mode=mode.value,
                )
                raise
            except Exception as e:
                logger.error(
                    "agent_create_failed",
                    conversation_id=conversation_id,
                    mode=mode.value,
                    error=str(e),
                )
                raise AgentConstructionError(
                    f"Failed to create agent for conversation "
                    f"'{conversation_id}': {e}",
                    conversation_id=conversation_id,
                ) from e

            try:
                await self._evict_if_full()
            except BaseException:
                await self._discard_unregistered(conversation_id, agent)
                raise

            now = time.time()
            self._agents[conversation_id] = AgentRegistryEntry(
                agent=agent,
                mode=mode,
                created_at=now,
                last_access=now,
            )

            logger.info(
                "agent_created",
                conversation_id=conversation_id,
                mode=mode.value,
                total_agents=len(self._agents),
            )
            return agent

    def _touch(self, conversation_id: str) -> Agent | None:
        entry = self._agents.get(conversation_id)
        if entry is None:
            return None
        entry.last_access = time.time()
        logger.debug(
            "agent_reused",
            conversation_id=conversation_id,
            mode=entry.mode.value,
            age_seconds=round(entry.last_access - entry.created_at, 3),
        )
        return entry.agent

    async def _evict_if_full(self) -> None:
        """Dispose least recently used idle agents until there is room for one more.

        When every live agent is leased the limit is exceeded instead.
        """
        if self.max_active_agents <= 0:
            return
        while len(self._agents) >= self.max_active_agents:
            idle = [cid for cid, entry in self._agents.items() if entry.leases == 0]
            if not idle:
                logger.warning(
                    "agent_limit_exceeded",
                    active_agents=len(self._agents),
                    max_active_agents=self.max_active_agents,
                )
                return
            oldest_id = min(idle, key=lambda cid: self._agents[cid].last_access)
            logger.info(
                "agent_evicted",
                conversation_id=oldest_id,
                max_active_agents=self.max_active_agents,
            )
            try:
                await self.dispose_agent(oldest_id)
            except Exception:
                # Entry is already gone; the failure was logged by dispose_agent.
                continue

    async def _discard_unregistered(self, conversation_id: str, agent: Agent) -> None:
        """Dispose an agent built for a creation that did not complete."""
        logger.warning("agent_create_abandoned", conversation_id=conversation_id)
        try:
            result = agent.dispose()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "agent_dispose_failed",
                conversation_id=conversation_id,
                error=str(e),
            )

    @asynccontextmanager
    async def lease(
        self,
        conversation_id: str,
        mode: AgentMode = AgentMode.CHAT,
    ) -> AsyncIterator[Agent]:
        """Get or create a conversation's agent and hold it for a block.

        A leased agent is never evicted to honor ``max_active_agents``.
        ``dispose_agent`` still disposes it.
        """
        agent = await self.get_or_create_agent(conversation_id, mode)
        entry = self._agents.get(conversation_id)
        if entry is not None:
            entry.leases += 1
        try:
            yield agent
        finally:
            if entry is not None:
                entry.leases -= 1

    def get_agent(self, conversation_id: str) -> Agent | None:
        """Return the live agent for a conversation without creating one."""
        entry = self._agents.get(conversation_id)
        return entry.agent if entry is not None else None

    def has_agent(self, conversation_id: str) -> bool:
        """Check if an agent exists for a conversation."""
        return conversation_id in self._agents

    def get_active_agent_count(self) -> int:
        """Get the number of live agents."""
        return len(self._agents)

    async def dispose_agent(self, conversation_id: str) -> None:
        """Dispose a conversation's agent and drop its capabilities.

        Unknown ids are a no-op.

        Args:
            conversation_id: Conversation whose agent should be disposed.

        Raises:
            Exception: Whatever the agent's ``dispose`` raised. The registry
                entry is removed regardless.
        """
        entry = self._agents.pop(conversation_id, None)
        if entry is None:
            logger.debug(
                "agent_dispose_not_found",
                conversation_id=conversation_id,
            )
            return

        self._capabilities.pop(conversation_id, None)
        lock = self._creation_locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._creation_locks[conversation_id]

        logger.info(
            "agent_dispose_start",
            conversation_id=conversation_id,
            mode=entry.mode.value,
            lifetime_seconds=round(time.time() - entry.created_at, 3),
        )

        try:
            result = entry.agent.dispose()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "agent_dispose_failed",
                conversation_id=conversation_id,
                error=str(e),
            )
            raise

        logger.info(
            "agent_disposed",
            conversation_id=conversation_id,
            remaining_agents=len(self._agents),
        )

    async def dispose_all_agents(self) -> None:
        """Dispose every live agent.

        Individual dispose failures are logged and do not stop the others.
        """
        conversation_ids = list(self._agents.keys())
        logger.info("dispose_all_agents_start", total_agents=len(conversation_ids))

        for conversation_id in conversation_ids:
            try:
                await self.dispose_agent(conversation_id)
            except Exception as e:
                logger.error(
                    "dispose_all_agent_failed",
                    conversation_id=conversation_id,
                    error=str(e),
                )

        self._agents.clear()
        self._capabilities.clear()
        self._creation_locks = {
            cid: lock for cid, lock in self._creation_locks.items() if lock.locked()
        }
        logger.info("dispose_all_agents_complete")

    async def update_settings(self, changes: dict[str, Any]) -> bool:
        """Merge host settings, reinitializing agents on critical changes.

        Keys naming a ``Settings`` field are applied to ``agent_settings``, so
        agents created afterwards are built with them. Other keys are kept in
        ``current_settings`` only.

        Args:
            changes: Changed setting names mapped to their new values.

        Returns:
            True if agents were reinitialized.
        """
        self._host_settings.update(changes)
        agent_changes = {
            key: value for key, value in changes.items() if key in Settings.model_fields
        }
        if agent_changes:
            self.agent_settings = self.agent_settings.model_copy(update=agent_changes)
        critical = sorted(key for key in changes if key in CRITICAL_SETTINGS)

        if not critical:
            logger.info(
                "settings_updated",
                changed_settings=sorted(changes),
                reinitialized=False,
            )
            return False

        logger.info(
            "settings_updated",
            changed_settings=sorted(changes),
            critical_settings=critical,
            active_agents=len(self._agents),
            reinitialized=True,
        )
        await self.reinitialize_agents()
        return True

    @property
    def current_settings(self) -> dict[str, Any]:
        """Host settings merged through ``update_settings``."""
        return dict(self._host_settings)

    async def reinitialize_agents(self) -> None:
        """Dispose all agents so the next request recreates them."""
        previous = len(self._agents)
        await self.dispose_all_agents()
        logger.info("agents_reinitialized", previous_agent_count=previous)

    def register_capability(
        self,
        conversation_id: str,
        capability: AgentCapability,
    ) -> None:
        """Append a capability for a conversation.

        Allowed even when no agent exists for the conversation.
        """
        capabilities = self._capabilities.setdefault(conversation_id, [])
        capabilities.append(capability)
        logger.info(
            "capability_registered",
            conversation_id=conversation_id,
            capability=capability.name,
            total_capabilities=len(capabilities),
        )

    def get_capabilities(self, conversation_id: str) -> list[AgentCapability]:
        """Get a conversation's capabilities in registration order."""
        return list(self._capabilities.get(conversation_id, []))

    def query_capability(self, conversation_id: str, capability_name: str) -> bool:
        """Check whether a capability with this exact name was registered."""
        return any(
            capability.name == capability_name
            for capability in self._capabilities.get(conversation_id, [])
        )
