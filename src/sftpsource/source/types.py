"""
Type definitions for the polling source: remote entries, poll config,
payload handles and the remote session protocol.
"""

from __future__ import annotations

import re
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Protocol, Union

from sftpsource.exceptions import ConfigurationError, FilterConfigError

PAYLOAD_MODES = ("ref", "contents")
DEFAULT_LOCAL_DIR = Path(tempfile.gettempdir()) / "sftpsource" / "output"
DEFAULT_NAMESPACE = "sftpSource"

_REPEATED_SLASH = re.compile(r"/{2,}")


@dataclass(frozen=True)
class RemoteEntry:
    """One entry of a remote directory listing."""

    name: str
    full_path: str
    is_directory: bool = False
    size: int = 0
    modified_time: datetime = field(default_factory=lambda: datetime.fromtimestamp(0, tz=timezone.utc))


@dataclass(frozen=True)
class SeenRecord:
    key: str
    first_seen_at: datetime


def entry_key(full_path: str, separator: str = "/") -> str:
    """
    Dedup identity of a remote path.

    The remote separator is normalized to ``/`` and runs of it are collapsed.
    Case is left alone: whether ``A.txt`` and ``a.txt`` are the same file is
    up to the server.
    """
    path = full_path.replace(separator, "/") if separator != "/" else full_path
    return _REPEATED_SLASH.sub("/", path)


def join_remote_path(directory: str, name: str, separator: str = "/") -> str:
    """Join a remote directory and entry name using the server's separator."""
    if not directory:
        return name
    if directory.endswith(separator):
        return f"{directory}{name}"
    return f"{directory}{separator}{name}"


class RemoteSession(Protocol):
    """
    The remote file capability the source polls.

    Implementations translate their own failures into ``TransportError``.
    """

    def list(self, remote_dir: str) -> list[RemoteEntry]: ...

    def open(self, path: str) -> BinaryIO: ...

    def fetch(self, path: str) -> bytes: ...

    def delete(self, path: str) -> None: ...


@dataclass(frozen=True)
class LocalFileHandle:
    """A fully downloaded copy of a remote entry."""

    path: Path
    entry: RemoteEntry

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


class RemoteStreamHandle:
    """
    Read handle bound to the live remote session.

    Stays open until the consumer finishes or the commit boundary closes it.
    """

    def __init__(self, file_obj: BinaryIO, entry: RemoteEntry):
        self._file = file_obj
        self.entry = entry

    @property
    def path(self) -> str:
        return self.entry.full_path

    @property
    def closed(self) -> bool:
        return bool(getattr(self._file, "closed", False))

    def read(self, size: int = -1) -> bytes:
        return self._file.read(size)

    def close(self) -> None:
        if not self.closed:
            self._file.close()

    def __enter__(self) -> RemoteStreamHandle:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"RemoteStreamHandle(path='{self.path}', closed={self.closed})"


Payload = Union[LocalFileHandle, RemoteStreamHandle]


@dataclass
class DispatchEnvelope:
    payload: Payload
    source_entry: RemoteEntry

    @property
    def is_stream(self) -> bool:
        return isinstance(self.payload, RemoteStreamHandle)


@dataclass(frozen=True)
class PollConfig:
    """
    Startup configuration of one poller. Immutable once built.

    Defaults mirror the classic SFTP source properties: remote dir ``/``,
    ``.tmp`` download suffix, timestamps preserved, nothing deleted, no cap
    on messages per poll, one poll per second.
    """

    remote_dir: str = "/"
    remote_separator: str = "/"
    filename_pattern: str | None = None
    filename_regex: str | None = None
    stream: bool = False
    local_dir: Path = DEFAULT_LOCAL_DIR
    tmp_file_suffix: str = ".tmp"
    auto_create_local_dir: bool = True
    preserve_timestamp: bool = True
    delete_remote_files: bool = False
    poll_interval: float = 1.0
    initial_delay: float = 0.0
    max_messages_per_poll: int = -1
    store_namespace: str = DEFAULT_NAMESPACE
    payload_mode: str = "ref"

    def __post_init__(self) -> None:
        if _has_text(self.filename_pattern) and self.filename_regex is not None:
            raise FilterConfigError(
                "filename_pattern and filename_regex are mutually exclusive",
                details={"filename_pattern": self.filename_pattern, "filename_regex": self.filename_regex},
            )
        if not self.remote_separator:
            raise ConfigurationError("remote_file_separator must not be empty")
        if self.poll_interval <= 0:
            raise ConfigurationError(f"trigger.fixed_delay must be > 0, got {self.poll_interval}")
        if self.initial_delay < 0:
            raise ConfigurationError(f"trigger.initial_delay must be >= 0, got {self.initial_delay}")
        if not self.stream and not self.tmp_file_suffix:
            raise ConfigurationError("tmp_file_suffix must not be empty when downloading to a local directory")
        if self.payload_mode not in PAYLOAD_MODES:
            raise ConfigurationError(f"source.mode must be one of {PAYLOAD_MODES}, got '{self.payload_mode}'")
        if not self.store_namespace:
            raise ConfigurationError("metadata.namespace must not be empty")

    @property
    def unbounded(self) -> bool:
        return self.max_messages_per_poll <= 0

    @property
    def delete_after_commit(self) -> bool:
        """Remote delete is deferred to the commit boundary only for streamed payloads."""
        return self.stream and self.delete_remote_files

    @classmethod
    def from_config(cls, config: Any) -> PollConfig:
        """
        Build from a loaded ``Config`` (or its raw dict).

        Reads the ``source``, ``trigger`` and ``metadata`` sections.
        """
        data = config.data if hasattr(config, "data") else config
        source = data.get("source", {}) or {}
        trigger = data.get("trigger", {}) or {}
        metadata = data.get("metadata", {}) or {}

        try:
            return cls(
                remote_dir=str(source.get("remote_dir", "/")),
                remote_separator=str(source.get("remote_file_separator", "/")),
                filename_pattern=source.get("filename_pattern"),
                filename_regex=source.get("filename_regex"),
                stream=_as_bool(source.get("stream", False)),
                local_dir=Path(source.get("local_dir") or DEFAULT_LOCAL_DIR).expanduser(),
                tmp_file_suffix=str(source.get("tmp_file_suffix", ".tmp")),
                auto_create_local_dir=_as_bool(source.get("auto_create_local_dir", True)),
                preserve_timestamp=_as_bool(source.get("preserve_timestamp", True)),
                delete_remote_files=_as_bool(source.get("delete_remote_files", False)),
                poll_interval=float(trigger.get("fixed_delay", 1.0)),
                initial_delay=float(trigger.get("initial_delay", 0.0)),
                max_messages_per_poll=int(trigger.get("max_messages", -1)),
                store_namespace=str(metadata.get("namespace", DEFAULT_NAMESPACE)),
                payload_mode=str(source.get("mode", "ref")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid source configuration: {e}") from e


def _has_text(value: str | None) -> bool:
    return value is not None and bool(value.strip())


def _as_bool(value: Any) -> bool:
    # YAML already yields bools; env substitution yields strings
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
