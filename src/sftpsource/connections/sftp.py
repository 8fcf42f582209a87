"""
SFTP session backed by paramiko.

Implements the remote session the poller drives: list, open, fetch, delete.
"""

from __future__ import annotations

import socket
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import paramiko

from sftpsource.exceptions import ConfigurationError, ProtocolError, TransportError
from sftpsource.source.types import RemoteEntry, join_remote_path
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.connections.sftp")

# Errors paramiko raises for network, auth and remote filesystem failures
_REMOTE_ERRORS = (OSError, EOFError, socket.timeout, paramiko.SSHException)


@dataclass(frozen=True)
class SFTPConfig:
    host: str
    port: int = 22
    username: str | None = None
    password: str | None = None
    private_key_path: str | None = None
    private_key_passphrase: str | None = None
    connect_timeout_s: float = 15.0


class RemoteReader:
    """
    Open remote file whose read failures surface as ``TransportError``.

    A transfer that breaks partway raises EOFError or SSHException from
    paramiko; callers only ever see the source's own error types.
    """

    def __init__(self, handle: Any, path: str, *, on_error: Callable[[], None] | None = None):
        self._handle = handle
        self.path = path
        self._on_error = on_error

    @property
    def closed(self) -> bool:
        return bool(getattr(self._handle, "closed", False))

    def read(self, size: int | None = None) -> bytes:
        try:
            return self._handle.read(size)
        except _REMOTE_ERRORS as e:
            if self._on_error is not None:
                self._on_error()
            raise TransportError(f"Cannot read remote file '{self.path}': {e}", path=self.path, cause=e) from e

    def close(self) -> None:
        self._handle.close()

    def __enter__(self) -> RemoteReader:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any) -> None:
        self.close()


class SFTPConnection:
    """
    Lazily connected SFTP client for one configured connection.

    Every remote failure surfaces as ``TransportError``. A failure that leaves
    the transport dead drops the client so the next poll cycle reconnects.
    """

    def __init__(self, name: str, config: dict[str, Any]):
        self.name = name
        self.config = config
        self._transport: paramiko.Transport | None = None
        self._client: paramiko.SFTPClient | None = None

    def _parse_config(self) -> SFTPConfig:
        cfg = self.config.get("config", {}) if isinstance(self.config, dict) else {}
        return SFTPConfig(
            host=cfg.get("host", ""),
            port=int(cfg.get("port", 22)),
            username=cfg.get("username"),
            password=cfg.get("password"),
            private_key_path=cfg.get("private_key_path"),
            private_key_passphrase=cfg.get("private_key_passphrase"),
            connect_timeout_s=float(cfg.get("connect_timeout_s", 15.0)),
        )

    def connect(self) -> paramiko.SFTPClient:
        """Connect (lazy) and return a live ``paramiko.SFTPClient``."""
        if self._client is not None:
            return self._client

        cfg = self._parse_config()
        if not cfg.host:
            raise ConfigurationError(f"SFTP connection '{self.name}' missing host")

        try:
            transport = paramiko.Transport((cfg.host, cfg.port))
            transport.banner_timeout = cfg.connect_timeout_s
            transport.auth_timeout = cfg.connect_timeout_s
            transport.connect(
                username=cfg.username,
                password=cfg.password,
                pkey=self._load_private_key(cfg),
            )
            client = paramiko.SFTPClient.from_transport(transport)
        except _REMOTE_ERRORS as e:
            raise TransportError(
                f"Cannot connect SFTP '{self.name}' to {cfg.host}:{cfg.port}: {e}", cause=e
            ) from e

        self._transport = transport
        self._client = client
        logger.info(f"Connected SFTP '{self.name}' to {cfg.host}:{cfg.port}")
        return client

    @staticmethod
    def _load_private_key(cfg: SFTPConfig) -> paramiko.PKey | None:
        if not cfg.private_key_path:
            return None
        try:
            return paramiko.RSAKey.from_private_key_file(cfg.private_key_path, password=cfg.private_key_passphrase)
        except paramiko.SSHException:
            return paramiko.Ed25519Key.from_private_key_file(cfg.private_key_path, password=cfg.private_key_passphrase)

    def list(self, remote_dir: str) -> list[RemoteEntry]:
        client = self.connect()
        try:
            attrs = client.listdir_attr(remote_dir)
        except paramiko.SFTPError as e:
            raise ProtocolError(f"Unexpected SFTP reply listing '{remote_dir}': {e}", details={"remote_dir": remote_dir}) from e
        except _REMOTE_ERRORS as e:
            self._reset()
            raise TransportError(f"Cannot list remote directory '{remote_dir}': {e}", path=remote_dir, cause=e) from e

        return [
            RemoteEntry(
                name=attr.filename,
                full_path=join_remote_path(remote_dir, attr.filename),
                is_directory=stat.S_ISDIR(attr.st_mode or 0),
                size=int(attr.st_size if attr.st_size is not None else 0),
                modified_time=datetime.fromtimestamp(int(attr.st_mtime or 0), tz=timezone.utc),
            )
            for attr in attrs
        ]

    def open(self, path: str) -> RemoteReader:
        client = self.connect()
        try:
            handle = client.open(path, "rb")
            handle.prefetch()
        except _REMOTE_ERRORS as e:
            self._reset()
            raise TransportError(f"Cannot open remote file '{path}': {e}", path=path, cause=e) from e
        return RemoteReader(handle, path, on_error=self._reset)

    def fetch(self, path: str) -> bytes:
        with self.open(path) as handle:
            return handle.read()

    def delete(self, path: str) -> None:
        client = self.connect()
        try:
            client.remove(path)
        except _REMOTE_ERRORS as e:
            raise TransportError(f"Cannot delete remote file '{path}': {e}", path=path, cause=e) from e

    def _reset(self) -> None:
        # Keep the transport only while it is still alive
        if self._transport is not None and not self._transport.is_active():
            self.close()

    def close(self) -> None:
        """Close SFTP client + underlying transport."""
        try:
            if self._client is not None:
                self._client.close()
        finally:
            self._client = None
        try:
            if self._transport is not None:
                self._transport.close()
        finally:
            self._transport = None

    def __enter__(self) -> SFTPConnection:
        self.connect()
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any) -> None:
        self.close()
