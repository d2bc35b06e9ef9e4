"""Progress channels between workflow runs and host views.

Each conversation has a channel. Host views subscribe to it and receive
``WorkflowEvent`` objects on an asyncio.Queue. A channel also keeps the log of
its current run, meaning every event since the last WORKFLOW_STARTED. A view
that opens mid-run, or reconnects after a reload, first receives that log and
then the live events, so its progress display never starts from a blank state.
"""

import asyncio
import contextlib
import threading
from collections import defaultdict

import structlog

from config import settings
from events.types import EventType, WorkflowEvent

logger = structlog.get_logger()


class EventBus:
    """Per-conversation pub/sub with current-run replay.

    Thread Safety:
        Channel state is guarded by a threading.Lock. ``publish_sync`` may be
        called from another thread; delivery is then scheduled on the loop
        that last ran ``publish``. On that loop it delivers immediately, so
        events keep their publish order.

    Usage:
        >>> bus = EventBus()
        >>> await bus.publish(WorkflowEvent(
        ...     type=EventType.WORKFLOW_STARTED, conversation_id="conv_123"
        ... ))
        >>> queue = bus.subscribe("conv_123")  # replays WORKFLOW_STARTED
        >>> event = await queue.get()
        >>> await bus.close_channel("conv_123")

    Attributes:
        max_history: Events kept in a run log; the oldest are dropped first.
    """

    def __init__(self, max_history: int | None = None) -> None:
        self.max_history = (
            max_history if max_history is not None else settings.event_history_limit
        )
        self._subscribers: dict[str, list[asyncio.Queue[WorkflowEvent]]] = defaultdict(list)
        self._run_logs: dict[str, list[WorkflowEvent]] = {}
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        logger.info("event_bus_initialized", max_history=self.max_history)

    def subscribe(self, conversation_id: str) -> asyncio.Queue[WorkflowEvent]:
        """Open a view on a conversation, starting with its current run's events."""
        queue: asyncio.Queue[WorkflowEvent] = asyncio.Queue()
        with self._lock:
            replayed = self._run_logs.get(conversation_id, [])
            for event in replayed:
                queue.put_nowait(event)
            self._subscribers[conversation_id].append(queue)
            subscriber_count = len(self._subscribers[conversation_id])

        logger.info(
            "subscriber_added",
            conversation_id=conversation_id,
            subscriber_count=subscriber_count,
            replayed_events=len(replayed),
        )
        return queue

    def unsubscribe(
        self, conversation_id: str, queue: asyncio.Queue[WorkflowEvent]
    ) -> None:
        """Remove a view's queue; unknown queues are ignored."""
        with self._lock:
            queues = self._subscribers.get(conversation_id)
            if not queues or queue not in queues:
                return
            queues.remove(queue)
            if not queues:
                del self._subscribers[conversation_id]

        logger.info("subscriber_removed", conversation_id=conversation_id)

    def _record(self, event: WorkflowEvent) -> list[asyncio.Queue[WorkflowEvent]]:
        """Append to the run log and return the subscribers. Lock must be held."""
        if event.type == EventType.WORKFLOW_STARTED:
            self._run_logs[event.conversation_id] = []
        run_log = self._run_logs.setdefault(event.conversation_id, [])
        run_log.append(event)
        if len(run_log) > self.max_history:
            del run_log[: len(run_log) - self.max_history]
        return list(self._subscribers.get(event.conversation_id, []))

    async def publish(self, event: WorkflowEvent) -> None:
        """Publish an event to its conversation's views."""
        self._loop = asyncio.get_running_loop()
        with self._lock:
            subscribers = self._record(event)
        for queue in subscribers:
            queue.put_nowait(event)

        logger.debug(
            "event_published",
            conversation_id=event.conversation_id,
            event_type=event.type.value,
            subscriber_count=len(subscribers),
            agent_id=event.agent_id,
        )

    def publish_sync(self, event: WorkflowEvent) -> None:
        """Publish from a plain callback, such as the orchestrator's progress hook.

        asyncio.Queue is not thread-safe, so a call from outside the bus loop
        is handed to it with call_soon_threadsafe.
        """
        with self._lock:
            subscribers = self._record(event)
            loop = self._loop

        try:
            running_loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        for queue in subscribers:
            if loop is not None and running_loop is not loop and not loop.is_closed():
                with contextlib.suppress(RuntimeError):
                    loop.call_soon_threadsafe(queue.put_nowait, event)
            else:
                queue.put_nowait(event)

        logger.debug(
            "event_published_sync",
            conversation_id=event.conversation_id,
            event_type=event.type.value,
            subscriber_count=len(subscribers),
        )

    def get_run_events(self, conversation_id: str) -> list[WorkflowEvent]:
        """Events of the conversation's current (or last) run, oldest first."""
        with self._lock:
            return list(self._run_logs.get(conversation_id, []))

    async def close_channel(self, conversation_id: str) -> None:
        """Close a conversation's channel.

        Every view receives a CHANNEL_CLOSED sentinel so its read loop can
        stop. Views and the run log are dropped.
        """
        with self._lock:
            queues = self._subscribers.pop(conversation_id, [])
            run_log = self._run_logs.pop(conversation_id, [])

        for queue in queues:
            queue.put_nowait(
                WorkflowEvent(
                    type=EventType.CHANNEL_CLOSED,
                    conversation_id=conversation_id,
                    data={"reason": "channel_closed"},
                )
            )

        logger.info(
            "channel_closed",
            conversation_id=conversation_id,
            subscribers_removed=len(queues),
            run_events_dropped=len(run_log),
        )

    def get_subscriber_count(self, conversation_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(conversation_id, []))
