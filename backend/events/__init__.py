"""Event system for workflow progress communication.

This package provides the event infrastructure between workflow execution
and host UI consumers. The event system is based on an async pub/sub pattern
using asyncio.Queue.

Key Components:
    - EventType: Enum of all event types in the system
    - WorkflowEvent: Pydantic model for events flowing through the system
    - EventBus: Async pub/sub implementation for event distribution

Usage:
    >>> from events import EventBus, EventType, WorkflowEvent
    >>>
    >>> bus = EventBus()
    >>> queue = bus.subscribe("conv_123")
    >>> bus.publish_sync(WorkflowEvent(
    ...     type=EventType.AGENT_STARTING,
    ...     conversation_id="conv_123",
    ...     agent_id="persona-1",
    ... ))
    >>> event = await queue.get()
"""

from events.bus import EventBus
from events.types import EventType, WorkflowEvent

__all__ = [
    "EventType",
    "WorkflowEvent",
    "EventBus",
]
