"""
Tests for the paramiko-backed SFTP session.
"""

import stat
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from sftpsource.connections import build_session
from sftpsource.connections.sftp import SFTPConfig, SFTPConnection
from sftpsource.exceptions import ConfigurationError, ProtocolError, TransportError


def _attr(name, *, mode=stat.S_IFREG | 0o644, size=10, mtime=1_700_000_000):
    attr = paramiko.SFTPAttributes()
    attr.filename = name
    attr.st_mode = mode
    attr.st_size = size
    attr.st_mtime = mtime
    return attr


@pytest.fixture
def conn():
    """SFTPConnection with a mocked, already-connected client."""
    c = SFTPConnection("remote", {"type": "sftp", "config": {"host": "sftp.example.com"}})
    c._client = MagicMock()
    c._transport = MagicMock()
    c._transport.is_active.return_value = True
    return c


class TestSFTPConfig:
    def test_sftp_config_parsing(self):
        conn = SFTPConnection(
            "test",
            {
                "config": {
                    "host": "sftp.example.com",
                    "port": 2222,
                    "username": "user",
                    "password": "pass123",
                    "connect_timeout_s": 30.0,
                }
            },
        )

        cfg = conn._parse_config()
        assert cfg == SFTPConfig(
            host="sftp.example.com", port=2222, username="user", password="pass123", connect_timeout_s=30.0
        )

    def test_sftp_config_defaults(self):
        cfg = SFTPConnection("test", {"config": {"host": "sftp.example.com"}})._parse_config()
        assert cfg.port == 22
        assert cfg.username is None
        assert cfg.private_key_path is None
        assert cfg.connect_timeout_s == 15.0

    def test_missing_host(self):
        with pytest.raises(ConfigurationError, match="missing host"):
            SFTPConnection("test", {"config": {}}).connect()

    def test_connect_failure_is_transport_error(self):
        conn = SFTPConnection("test", {"config": {"host": "sftp.example.com"}})
        with patch("sftpsource.connections.sftp.paramiko.Transport", side_effect=OSError("refused")):
            with pytest.raises(TransportError, match="refused"):
                conn.connect()

    def test_connect_uses_password(self):
        conn = SFTPConnection("test", {"config": {"host": "h", "username": "u", "password": "p"}})
        with patch("sftpsource.connections.sftp.paramiko.Transport") as transport_cls, patch(
            "sftpsource.connections.sftp.paramiko.SFTPClient.from_transport"
        ) as from_transport:
            client = conn.connect()

        transport_cls.assert_called_once_with(("h", 22))
        transport_cls.return_value.connect.assert_called_once_with(username="u", password="p", pkey=None)
        assert client is from_transport.return_value
        # connect is lazy and cached
        assert conn.connect() is client


class TestSFTPSession:
    def test_list_maps_attributes(self, conn):
        conn._client.listdir_attr.return_value = [
            _attr("a.txt", size=5, mtime=1_700_000_000),
            _attr("sub", mode=stat.S_IFDIR | 0o755),
        ]

        entries = conn.list("/in")

        assert entries[0].name == "a.txt"
        assert entries[0].full_path == "/in/a.txt"
        assert entries[0].size == 5
        assert entries[0].modified_time == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
        assert not entries[0].is_directory
        assert entries[1].is_directory

    def test_list_missing_directory(self, conn):
        conn._client.listdir_attr.side_effect = FileNotFoundError(2, "No such file")
        with pytest.raises(TransportError) as exc_info:
            conn.list("/missing")
        assert exc_info.value.path == "/missing"

    def test_list_protocol_error(self, conn):
        conn._client.listdir_attr.side_effect = paramiko.SFTPError("Expected name response")
        with pytest.raises(ProtocolError):
            conn.list("/in")

    def test_dead_transport_dropped_after_failure(self, conn):
        conn._client.listdir_attr.side_effect = EOFError()
        conn._transport.is_active.return_value = False

        with pytest.raises(TransportError):
            conn.list("/in")

        assert conn._client is None
        assert conn._transport is None

    def test_open_and_fetch(self, conn):
        handle = MagicMock()
        handle.__enter__.return_value = handle
        handle.read.return_value = b"alpha"
        conn._client.open.return_value = handle

        assert conn.fetch("/in/a.txt") == b"alpha"
        conn._client.open.assert_called_with("/in/a.txt", "rb")

    def test_open_failure(self, conn):
        conn._client.open.side_effect = PermissionError(13, "Permission denied")
        with pytest.raises(TransportError):
            conn.open("/in/a.txt")

    def test_read_failure_midway_is_transport_error(self, conn):
        handle = MagicMock()
        handle.read.side_effect = [b"partial", EOFError()]
        conn._client.open.return_value = handle
        conn._transport.is_active.return_value = False

        reader = conn.open("/in/a.txt")
        assert reader.read(7) == b"partial"
        with pytest.raises(TransportError) as exc_info:
            reader.read(7)

        assert isinstance(exc_info.value.__cause__, EOFError)
        # the dead transport is dropped so the next cycle reconnects
        assert conn._client is None
        reader.close()
        handle.close.assert_called_once()

    def test_delete(self, conn):
        conn.delete("/in/a.txt")
        conn._client.remove.assert_called_once_with("/in/a.txt")

    def test_delete_failure(self, conn):
        conn._client.remove.side_effect = paramiko.SSHException("channel closed")
        with pytest.raises(TransportError):
            conn.delete("/in/a.txt")

    def test_close(self, conn):
        client, transport = conn._client, conn._transport
        conn.close()
        client.close.assert_called_once()
        transport.close.assert_called_once()
        assert conn._client is None


class TestBuildSession:
    def test_named_connection(self):
        session = build_session(
            {
                "connections": {"remote": {"type": "sftp", "config": {"host": "h"}}},
                "source": {"connection": "remote"},
            }
        )
        assert isinstance(session, SFTPConnection)
        assert session.name == "remote"

    def test_single_connection_implied(self):
        session = build_session({"connections": {"only": {"type": "sftp", "config": {"host": "h"}}}})
        assert session.name == "only"

    def test_unknown_connection(self):
        with pytest.raises(ConfigurationError, match="not found"):
            build_session({"connections": {"a": {"type": "sftp"}}, "source": {"connection": "b"}})

    def test_unsupported_type(self):
        with pytest.raises(ConfigurationError, match="unsupported"):
            build_session({"connections": {"a": {"type": "s3"}}, "source": {"connection": "a"}})
