"""Publish/subscribe fan-out of agent events, keyed by task id.

Publishing is synchronous and never blocks: each subscriber owns a bounded
queue, and a full queue drops its oldest event to make room.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Event kinds published on a task topic."""
    STATE = "state"
    THINKING = "thinking"
    ACTION = "action"
    PROGRESS = "progress"
    LOG = "log"
    ARTIFACT_CREATED = "artifactCreated"
    ARTIFACT_UPDATED = "artifactUpdated"
    ARTIFACT_DELETED = "artifactDeleted"
    PREVIEW_UPDATED = "previewUpdated"
    DELIVERABLE_PRODUCED = "deliverableProduced"


def _encoder(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


@dataclass(frozen=True)
class AgentEvent:
    """An event published for one task."""
    kind: EventKind
    task_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "task_id": self.task_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=_encoder)

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        return f"event: {self.kind.value}\ndata: {self.to_json()}\n\n"


class Subscription:
    """A single subscriber's view of one task topic."""

    def __init__(self, task_id: str, max_queue: int):
        self.task_id = task_id
        self.dropped = 0
        self._queue: asyncio.Queue[AgentEvent] = asyncio.Queue(maxsize=max_queue)

    def offer(self, event: AgentEvent) -> None:
        """Enqueue without blocking, evicting the oldest event when full."""
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    async def get(self) -> AgentEvent:
        return await self._queue.get()

    def get_nowait(self) -> AgentEvent:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self

    async def __anext__(self) -> AgentEvent:
        return await self._queue.get()


class EventBus:
    """Fan-out of events to any number of subscribers per task id."""

    def __init__(self, max_queue: int = 1000):
        self._max_queue = max_queue
        self._subscribers: dict[str, set[Subscription]] = {}

    def publish(self, task_id: str, kind: EventKind, /, **data: Any) -> AgentEvent:
        """Publish an event to every subscriber of ``task_id``."""
        event = AgentEvent(kind=kind, task_id=task_id, data=data)
        for sub in list(self._subscribers.get(task_id, ())):
            sub.offer(event)
            if sub.dropped and sub.dropped % 100 == 1:
                logger.warning(
                    f"Subscriber on task {task_id} is lagging, dropped {sub.dropped} events"
                )
        return event

    def open(self, task_id: str) -> Subscription:
        """Register a subscription; the caller must ``close`` it."""
        sub = Subscription(task_id, self._max_queue)
        self._subscribers.setdefault(task_id, set()).add(sub)
        logger.debug(f"Subscriber added for task {task_id}")
        return sub

    def close(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.task_id)
        if not subs:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.task_id]
        logger.debug(f"Subscriber removed for task {sub.task_id}")

    @asynccontextmanager
    async def subscribe(self, task_id: str) -> AsyncIterator[Subscription]:
        """Subscribe to a task topic for the duration of the block."""
        sub = self.open(task_id)
        try:
            yield sub
        finally:
            self.close(sub)

    def subscriber_count(self, task_id: str) -> int:
        return len(self._subscribers.get(task_id, ()))
