"""
Reconciliation Events - In-memory pub/sub of per-object outcomes.

Every ensure call publishes one event describing what happened to the
object (created, updated, left unchanged, or skipped as foreign).
"""

import asyncio
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Outcome of a single reconciliation."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    UNCHANGED = "UNCHANGED"
    SKIPPED_FOREIGN = "SKIPPED_FOREIGN"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ObjectEvent:
    """Event emitted after an object was reconciled."""

    event_type: EventType
    kind: str
    namespace: str
    name: str
    resource_version: Optional[str] = None
    timestamp: str = field(default_factory=_utcnow)

    def to_json(self) -> str:
        """Serialize the event as a JSON line."""
        data = asdict(self)
        data["event_type"] = self.event_type.value
        return json.dumps(data, sort_keys=True)


class EventSubscription:
    """
    Async iterator over events delivered to one subscriber.

    A ``None`` sentinel on the queue ends iteration.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        filter_fn: Optional[Callable[[ObjectEvent], bool]] = None,
    ):
        self._queue = queue
        self._filter_fn = filter_fn

    def __aiter__(self) -> AsyncIterator[ObjectEvent]:
        return self

    async def __anext__(self) -> ObjectEvent:
        while True:
            event = await self._queue.get()
            if event is None:
                raise StopAsyncIteration
            if self._filter_fn is None or self._filter_fn(event):
                return event


class EventBus:
    """
    Non-blocking fan-out of ObjectEvents to subscriber queues.

    Publishing never waits on a slow subscriber: events for a full queue are
    dropped and counted.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}
        self.dropped = 0

    def publish(self, event: ObjectEvent) -> None:
        """Deliver event to every subscriber with room in its queue."""
        for subscriber_id, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.warning(
                    f"Dropped event for subscriber {subscriber_id}: queue full"
                )

    def subscribe(
        self,
        filter_fn: Optional[Callable[[ObjectEvent], bool]] = None,
    ) -> Tuple[str, EventSubscription]:
        """
        Register a new subscriber.

        Args:
            filter_fn: Optional predicate; only matching events are yielded.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[subscriber_id] = queue
        logger.debug(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue, filter_fn)

    def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber and end its iteration."""
        queue = self._subscribers.pop(subscriber_id, None)
        if queue is None:
            return
        try:
            queue.put_nowait(None)
        except asyncio.QueueFull:
            # Make room for the sentinel; the subscriber is going away
            queue.get_nowait()
            queue.put_nowait(None)
        logger.debug(f"Unsubscribed: {subscriber_id}")

    def subscriber_count(self) -> int:
        """Return the current number of subscribers."""
        return len(self._subscribers)
