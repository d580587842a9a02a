from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog


logger = structlog.get_logger(__name__)

STATUS_EVENT = "status"

# A sink accepts an event name and a JSON-serialisable payload; raising
# means the subscriber is gone.
Sink = Callable[[str, Any], Awaitable[None]]


class SubscriberRegistry:
    """Live status subscribers.

    Registration delivers the full snapshot before the subscriber becomes
    visible to broadcasts, so a new subscriber never sees a diff first.
    """

    def __init__(self):
        self._subscribers: dict[str, Sink] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber_id: object) -> bool:
        return subscriber_id in self._subscribers

    async def register(self, subscriber_id: str, sink: Sink, snapshot: Callable[[], dict[str, Any]]) -> bool:
        async with self._lock:
            try:
                await sink(STATUS_EVENT, snapshot())
            except Exception as e:
                logger.warning("Initial snapshot delivery failed", subscriber_id=subscriber_id, error=str(e))
                return False
            self._subscribers[subscriber_id] = sink
        logger.info("Subscriber registered", subscriber_id=subscriber_id, subscribers=len(self._subscribers))
        return True

    async def unregister(self, subscriber_id: str) -> bool:
        async with self._lock:
            removed = self._subscribers.pop(subscriber_id, None) is not None
        if removed:
            logger.info("Subscriber unregistered", subscriber_id=subscriber_id, subscribers=len(self._subscribers))
        return removed

    async def broadcast(self, payload: dict[str, Any], event: str = STATUS_EVENT) -> int:
        """Send to every subscriber; failing sinks are dropped. Returns the delivered count."""
        async with self._lock:
            targets = list(self._subscribers.items())

        delivered = 0
        failed: list[str] = []
        for subscriber_id, sink in targets:
            try:
                await sink(event, payload)
                delivered += 1
            except Exception as e:
                logger.warning("Subscriber write failed", subscriber_id=subscriber_id, error=str(e))
                failed.append(subscriber_id)

        for subscriber_id in failed:
            await self.unregister(subscriber_id)
        return delivered


class QueueSink:
    """Buffers events for one Server-Sent Events connection."""

    def __init__(self, maxsize: int = 100):
        self.queue: asyncio.Queue[tuple[str, Any] | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def __call__(self, event: str, payload: Any) -> None:
        if self.closed:
            raise ConnectionError("Subscriber stream closed")
        try:
            self.queue.put_nowait((event, payload))
        except asyncio.QueueFull:
            # The client stopped reading; end its stream so it reconnects.
            self.close()
            raise ConnectionError("Subscriber stream is not draining")

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(None)

    async def stream(self) -> AsyncIterator[str]:
        while not self.closed:
            item = await self.queue.get()
            if item is None:
                return
            event, payload = item
            yield format_sse(event, payload)


def format_sse(event: str, payload: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"
