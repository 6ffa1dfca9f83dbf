"""Non-blocking event bus between the engine and its observers.

The engine publishes progress records from inside agent runs; a slow
or absent consumer must never stall those runs, so publish() only
ever does a put_nowait() and drops the event when the queue is full.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from .events import WorkflowEvent

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue bridging engine events to a consumer loop."""

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue[WorkflowEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    def publish(self, event: WorkflowEvent) -> None:
        """Enqueue *event* without waiting; drop it if the queue is full."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "EventBus queue full, dropping: %s (queue size: %d)",
                event.event_type,
                self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[WorkflowEvent]:
        """Yield events as they arrive. Stops on close() once drained."""
        while not (self._closed and self._queue.empty()):
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield event

    def drain(self) -> list[WorkflowEvent]:
        """Return and remove every queued event without waiting."""
        events: list[WorkflowEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        """Stop the consumer loop after the queue empties."""
        self._closed = True
