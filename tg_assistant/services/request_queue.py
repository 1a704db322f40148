# tg_assistant/services/request_queue.py

import asyncio
import logging

from tg_assistant.data_schemas.requests import ChatWithLlmRequest

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 20

# End-of-stream marker, put back after each read so every consumer sees it
_CLOSED = object()


class QueueClosed(Exception):
    """Raised to a consumer once the queue is closed and drained"""


class LlmRequestQueue:
    """Fixed-capacity queue of model requests that drops new items when full.

    Admission never suspends the producer: `offer` either enqueues the
    request or rejects it on the spot. Already queued requests are never
    displaced. After `close`, new offers are rejected and consumers receive
    the queued requests followed by `QueueClosed`.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        # Unbounded underneath so close markers always fit; capacity is
        # enforced in offer()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending = 0
        self._closed = False
        self.admitted = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._pending

    def full(self) -> bool:
        return self._pending >= self.capacity

    def offer(self, request: ChatWithLlmRequest) -> bool:
        """Try to admit a request; False means it was dropped."""
        if self._closed:
            self.dropped += 1
            logger.warning(
                f"Dropping request for message {request.message.message_id}: queue is closed"
            )
            return False
        if self._pending >= self.capacity:
            self.dropped += 1
            logger.warning(
                f"Dropping request for message {request.message.message_id} "
                f"in chat {request.message.chat.id}: queue is full ({self.capacity})"
            )
            return False
        self._pending += 1
        self.admitted += 1
        self._queue.put_nowait(request)
        return True

    async def get(self) -> ChatWithLlmRequest:
        """Wait for the next request; raises QueueClosed when none will come."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for the other consumers
            self._queue.put_nowait(_CLOSED)
            raise QueueClosed()
        self._pending -= 1
        return item

    def close(self) -> None:
        """Stop admitting requests. Queued requests stay available to consumers."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def abandon(self) -> int:
        """Discard every queued request without processing it."""
        abandoned = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is not _CLOSED:
                abandoned += 1
        self._pending = 0
        if self._closed:
            self._queue.put_nowait(_CLOSED)
        return abandoned

    def stats(self) -> dict:
        return {
            "capacity": self.capacity,
            "depth": self._pending,
            "admitted": self.admitted,
            "dropped": self.dropped,
            "closed": self._closed,
        }
