"""
In-process outbound channel.

Keeps every accepted message per topic and fans it out to live subscribers.
Handy for tests and for embedding the source in a larger asyncio program.

Example:
    adapter = InMemoryAdapter(max_pending=10)

    async with adapter:
        async for msg in adapter.consume("files"):
            print(msg.headers["file_name"])
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import AsyncIterator, Deque, Dict, List, Optional

from sftpsource.exceptions import DeliveryError
from sftpsource.streaming.adapters.base import Message, MessageAdapter

# How often an idle subscriber re-checks that the adapter is still connected
_IDLE_POLL_S = 1.0

DEFAULT_RETAIN = 1000


class InMemoryAdapter(MessageAdapter):
    """
    Topic log plus per-subscriber queues.

    ``max_pending`` bounds each subscriber's queue (0 is unbounded). When a
    subscriber is that far behind, ``produce`` waits for it, which in turn
    holds the poll cycle on the current file.

    ``retain`` caps how many recent messages each topic keeps for
    ``from_beginning`` replay and ``get_topic_messages``; older ones are
    dropped. 0 keeps none, ``None`` keeps everything.
    """

    def __init__(self, max_pending: int = 0, retain: Optional[int] = DEFAULT_RETAIN):
        super().__init__()
        if retain is not None and retain < 0:
            raise ValueError(f"retain must be >= 0 or None, got {retain}")
        self.max_pending = max_pending
        self.retain = retain
        self._log: Dict[str, Deque[Message]] = defaultdict(lambda: deque(maxlen=self.retain))
        self._next_offset: Dict[str, int] = defaultdict(int)
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        """Disconnect and forget every topic."""
        self._connected = False
        self._log.clear()
        self._next_offset.clear()
        self._subscribers.clear()

    async def consume(self, topic: str, *, from_beginning: bool = False) -> AsyncIterator[Message]:
        """Yield messages for ``topic`` until the adapter disconnects or the caller stops."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_pending)
        self._subscribers[topic].append(queue)
        # Taken in the same step as subscribing, so nothing is missed or repeated
        backlog = list(self._log[topic]) if from_beginning else []

        try:
            for message in backlog:
                yield message
            while self._connected:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=_IDLE_POLL_S)
                except asyncio.TimeoutError:
                    continue
                yield message
        finally:
            subscribers = self._subscribers.get(topic, [])
            if queue in subscribers:
                subscribers.remove(queue)

    async def produce(self, topic: str, message: Message) -> None:
        """Append to the retained log, then wait until every subscriber has room for it."""
        if not self._connected:
            raise DeliveryError(f"In-memory adapter not connected; cannot produce to '{topic}'")

        message.topic = topic
        message.offset = self._next_offset[topic]
        self._next_offset[topic] += 1
        if message.timestamp is None:
            message.timestamp = datetime.now(timezone.utc)
        self._log[topic].append(message)

        for queue in list(self._subscribers.get(topic, [])):
            await queue.put(message)

    def get_topic_messages(self, topic: str) -> List[Message]:
        return list(self._log.get(topic, []))

    def clear_topic(self, topic: str) -> None:
        self._log.pop(topic, None)
