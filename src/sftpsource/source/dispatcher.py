"""
Hands materialized files to the outbound channel and settles their commit handle.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from sftpsource.source.commit import CommitHandle, CommitOutcome
from sftpsource.source.types import DispatchEnvelope, LocalFileHandle, RemoteEntry
from sftpsource.streaming.adapters.base import Message, MessageAdapter
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.dispatcher")


def file_headers(entry: RemoteEntry, separator: str = "/") -> dict[str, str]:
    """Headers describing the remote file a message came from."""
    idx = entry.full_path.rfind(separator)
    directory = entry.full_path[:idx] if idx > 0 else (separator if idx == 0 else "")
    return {
        "file_name": entry.name,
        "remote_directory": directory,
        "remote_file": entry.name,
        "remote_path": entry.full_path,
        "file_size": str(entry.size),
        "modified_time": entry.modified_time.isoformat(),
    }


class Dispatcher:
    """
    Emits one message per envelope and resolves its handle from the outcome.

    ``payload_mode`` is ``ref`` (local path or live stream handle) or
    ``contents`` (the file's bytes).
    """

    def __init__(self, adapter: MessageAdapter, topic: str = "output", payload_mode: str = "ref", separator: str = "/"):
        self.adapter = adapter
        self.topic = topic
        self.payload_mode = payload_mode
        self.separator = separator

    async def build_message(self, envelope: DispatchEnvelope) -> Message:
        entry = envelope.source_entry
        headers = file_headers(entry, self.separator)
        payload = envelope.payload

        if isinstance(payload, LocalFileHandle):
            headers["local_path"] = str(payload.path)
            value = await asyncio.to_thread(payload.read_bytes) if self.payload_mode == "contents" else payload.path
        else:
            value = await asyncio.to_thread(payload.read) if self.payload_mode == "contents" else payload

        return Message(
            key=entry.full_path,
            value=value,
            headers=headers,
            timestamp=datetime.now(timezone.utc),
        )

    async def dispatch(self, envelope: DispatchEnvelope, handle: CommitHandle) -> CommitOutcome:
        """
        Deliver the envelope and resolve ``handle``.

        Returns COMMITTED or ROLLED_BACK. Cancellation and other
        BaseExceptions resolve the handle UNKNOWN and propagate.
        """
        path = envelope.source_entry.full_path
        try:
            message = await self.build_message(envelope)
            await self.adapter.produce(self.topic, message)
        except Exception as e:
            logger.error(f"Delivery of {path} failed, rolling back: {e}")
            await asyncio.to_thread(handle.resolve, CommitOutcome.ROLLED_BACK)
            return CommitOutcome.ROLLED_BACK
        except BaseException:
            logger.warning(f"Delivery of {path} interrupted; outcome unknown")
            handle.resolve(CommitOutcome.UNKNOWN)
            raise

        # commit callbacks may touch the remote session
        await asyncio.to_thread(handle.resolve, CommitOutcome.COMMITTED)
        logger.debug(f"Delivered {path} to '{self.topic}'")
        return CommitOutcome.COMMITTED
