"""Fan-out of transfer events to WebSocket subscribers."""

import asyncio
import logging
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)

QUEUE_SIZE = 256


class EventBroadcaster:
    """Each subscriber gets its own bounded queue.

    A subscriber that stops draining its queue loses its oldest events
    rather than blocking the publisher.
    """

    def __init__(self, queue_size: int = QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        logger.debug("Subscriber added (%d total)", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        logger.debug("Subscriber removed (%d total)", len(self._subscribers))

    def publish(self, event: Dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(event)
