from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging

from regnotify.domain.models import BroadcastProgress

logger = logging.getLogger("runtime")

EVENT_STATUS = "status"
EVENT_SENDING_PROGRESS = "sending_progress"
EVENT_NOTIFY = "notify"


@dataclass
class EventHub:
    """Fan-out of live admin events to every connected subscriber.

    Each subscriber owns a bounded queue; a subscriber that stops reading
    loses its oldest events instead of stalling publishers.
    """

    queue_size: int = 100
    _subscribers: set[asyncio.Queue[dict[str, object]]] = field(default_factory=set)

    def subscribe(self) -> asyncio.Queue[dict[str, object]]:
        queue: asyncio.Queue[dict[str, object]] = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, object]]) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, *, event: str, data: dict[str, object]) -> None:
        message: dict[str, object] = {"event": event, "data": data}
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
                logger.debug("event subscriber lagging, dropped oldest event", extra={"event": event})
            queue.put_nowait(message)

    async def publish_progress(self, progress: BroadcastProgress) -> None:
        await self.publish(
            event=EVENT_SENDING_PROGRESS,
            data={
                "status": progress.status,
                "total": progress.total,
                "processed": progress.processed,
                "successful": progress.successful,
                "failed": progress.failed,
            },
        )

    async def notify(self, message: str, *, level: str = "info") -> None:
        await self.publish(event=EVENT_NOTIFY, data={"message": message, "type": level})
