"""
Remote connections.

Only SFTP is supported; ``build_session`` picks the connection the
``source.connection`` key names out of the ``connections`` section.
"""

from __future__ import annotations

from typing import Any

from sftpsource.connections.sftp import SFTPConfig, SFTPConnection
from sftpsource.exceptions import ConfigurationError

__all__ = ["SFTPConfig", "SFTPConnection", "build_session"]


def build_session(config: Any) -> SFTPConnection:
    data = config.data if hasattr(config, "data") else config
    connections = data.get("connections", {}) or {}
    source = data.get("source", {}) or {}

    name = source.get("connection")
    if not name:
        if len(connections) != 1:
            raise ConfigurationError("source.connection must name one of the configured connections")
        name = next(iter(connections))

    conn_config = connections.get(name)
    if conn_config is None:
        available = ", ".join(sorted(connections)) or "(none)"
        raise ConfigurationError(f"Connection '{name}' not found. Available: {available}")

    conn_type = str(conn_config.get("type", "sftp")).lower()
    if conn_type != "sftp":
        raise ConfigurationError(f"Connection '{name}' has unsupported type '{conn_type}'; only 'sftp' is supported")
    return SFTPConnection(name, conn_config)
