"""
Testing utilities for sftpsource pipelines.

In-process stand-ins for the remote server and the outbound channel, so a
poller can be exercised end to end without SFTP or HTTP.

Usage:
    from sftpsource.testing import InMemorySession, RecordingAdapter
    from sftpsource.source import PollConfig, SeenFileStore, SimpleMetadataBackend, build_poller

    session = InMemorySession()
    session.add_file("/in/a.txt", b"alpha")
    adapter = RecordingAdapter()
    store = SeenFileStore(SimpleMetadataBackend(), "test")

    poller = build_poller(session, store, adapter, PollConfig(remote_dir="/in", stream=True))
    result = await poller.run_cycle()
    assert [m.headers["file_name"] for m in adapter.messages] == ["a.txt"]
"""

from __future__ import annotations

import asyncio
import io
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from sftpsource.exceptions import DeliveryError, TransportError
from sftpsource.source.types import RemoteEntry, join_remote_path
from sftpsource.streaming.adapters.base import Message, MessageAdapter


class InMemorySession:
    """
    Remote session over an in-memory tree of files.

    Directory listings come back in insertion order. Failures can be injected
    per operation: ``fail_list``, ``fail_open`` and ``fail_delete`` hold paths
    (or ``"*"``) that raise ``TransportError``.
    """

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.mtimes: Dict[str, datetime] = {}
        self.directories: Set[str] = {"/"}
        self.fail_list: Set[str] = set()
        self.fail_open: Set[str] = set()
        self.fail_delete: Set[str] = set()
        self.opened: List[io.BytesIO] = []
        self.deleted: List[str] = []
        self.list_calls = 0
        self.list_hook: Optional[Callable[[str], None]] = None
        self._lock = threading.Lock()

    def add_file(self, path: str, data: bytes = b"", modified_time: datetime | None = None) -> None:
        self.files[path] = data
        self.mtimes[path] = modified_time or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.directories.add(path.rsplit("/", 1)[0] or "/")

    def add_dir(self, path: str) -> None:
        self.directories.add(path.rstrip("/") or "/")

    def list(self, remote_dir: str) -> List[RemoteEntry]:
        with self._lock:
            self.list_calls += 1
        if self.list_hook is not None:
            self.list_hook(remote_dir)
        if remote_dir in self.fail_list or "*" in self.fail_list:
            raise TransportError(f"injected listing failure for {remote_dir}", path=remote_dir)

        directory = remote_dir.rstrip("/") or "/"
        if directory not in self.directories:
            raise TransportError(f"No such directory: {remote_dir}", path=remote_dir)

        entries = []
        for path, data in list(self.files.items()):
            parent, _, name = path.rpartition("/")
            if (parent or "/") == directory:
                entries.append(
                    RemoteEntry(
                        name=name,
                        full_path=path,
                        size=len(data),
                        modified_time=self.mtimes[path],
                    )
                )
        for sub in sorted(self.directories):
            parent, _, name = sub.rpartition("/")
            if name and (parent or "/") == directory:
                entries.append(RemoteEntry(name=name, full_path=join_remote_path(directory, name), is_directory=True))
        return entries

    def open(self, path: str) -> io.BytesIO:
        if path in self.fail_open or "*" in self.fail_open:
            raise TransportError(f"injected open failure for {path}", path=path)
        if path not in self.files:
            raise TransportError(f"No such file: {path}", path=path)
        handle = io.BytesIO(self.files[path])
        self.opened.append(handle)
        return handle

    def fetch(self, path: str) -> bytes:
        with self.open(path) as handle:
            return handle.read()

    def delete(self, path: str) -> None:
        if path in self.fail_delete or "*" in self.fail_delete:
            raise TransportError(f"injected delete failure for {path}", path=path)
        if path not in self.files:
            raise TransportError(f"No such file: {path}", path=path)
        del self.files[path]
        self.mtimes.pop(path, None)
        self.deleted.append(path)

    @property
    def open_handles(self) -> int:
        return sum(1 for handle in self.opened if not handle.closed)


class RecordingAdapter(MessageAdapter):
    """
    Outbound channel that records every message it accepts.

    ``fail_keys`` (message keys, i.e. remote paths) and ``fail_all`` make
    ``produce`` raise ``DeliveryError``. ``read_streams`` drains stream
    payloads inside ``produce`` the way a synchronous consumer would.
    ``gate``, when set, makes ``produce`` wait on it (backpressure).
    """

    def __init__(self, *, read_streams: bool = True) -> None:
        super().__init__()
        self.read_streams = read_streams
        self.messages: List[Message] = []
        self.bodies: Dict[str, bytes] = {}
        self.fail_keys: Set[str] = set()
        self.fail_all = False
        self.gate: Optional[asyncio.Event] = None
        self.attempts = 0
        self._connected = True

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def produce(self, topic: str, message: Message) -> None:
        self.attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_all or message.key in self.fail_keys:
            raise DeliveryError(f"injected delivery failure for {message.key}")

        message.topic = topic
        if message.is_stream and self.read_streams:
            self.bodies[message.key or ""] = message.value.read()
        elif isinstance(message.value, bytes):
            self.bodies[message.key or ""] = message.value
        self.messages.append(message)

    @property
    def keys(self) -> List[Optional[str]]:
        return [m.key for m in self.messages]

    def headers_for(self, key: str) -> Dict[str, Any]:
        for message in self.messages:
            if message.key == key:
                return dict(message.headers)
        raise KeyError(key)
