"""
Outbound channel interface.

The dispatcher hands every file message to a ``MessageAdapter``. ``produce``
returning normally is the commit signal; raising is the rollback signal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class Message:
    """
    One remote file on its way to a consumer.

    ``key`` is the remote path. ``value`` is a local ``Path`` (copy mode,
    ``ref``), a live ``RemoteStreamHandle`` (stream mode, ``ref``) or the
    file's ``bytes`` (``contents``). ``topic`` and ``offset`` are filled in by
    the adapter that accepts it.
    """

    key: Optional[str] = None
    value: Any = None
    headers: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    topic: Optional[str] = None
    offset: Optional[int] = None

    @property
    def is_stream(self) -> bool:
        return hasattr(self.value, "read")

    def to_dict(self) -> Dict[str, Any]:
        """File headers plus a payload descriptor; streams and bytes are never inlined."""
        descriptor: Dict[str, Any] = dict(self.headers)
        if isinstance(self.value, Path):
            descriptor["local_path"] = str(self.value)
        elif self.is_stream:
            descriptor["stream"] = True
        elif isinstance(self.value, (bytes, bytearray)):
            descriptor["content_length"] = len(self.value)

        descriptor["_message_key"] = self.key
        descriptor["_topic"] = self.topic
        if self.timestamp is not None:
            descriptor["_message_timestamp"] = self.timestamp.isoformat()
        return descriptor


class MessageAdapter(ABC):
    """
    Base class for outbound channels (``InMemoryAdapter``, ``WebhookAdapter``).

    Usable as an async context manager that connects on entry and
    disconnects on exit.
    """

    def __init__(self) -> None:
        self._connected = False

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def disconnect(self) -> None: ...

    @abstractmethod
    async def produce(self, topic: str, message: Message) -> None:
        """
        Deliver one message. May wait while the channel applies backpressure.

        Raises:
            DeliveryError: the channel did not accept the message
        """

    async def produce_batch(self, topic: str, messages: List[Message]) -> int:
        """Produce ``messages`` in order; stops at the first failure. Returns the number sent."""
        sent = 0
        for message in messages:
            await self.produce(topic, message)
            sent += 1
        return sent

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def __aenter__(self) -> MessageAdapter:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()
