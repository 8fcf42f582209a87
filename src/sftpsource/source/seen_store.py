"""
Persistent accept-once ledger for remote files.

A grow-only set of entry keys per namespace, stored in a key-value backend.
Nothing is ever removed: once a key is recorded the file is never dispatched
again, so the ledger grows with the number of distinct remote paths seen.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import ibis

from sftpsource.exceptions import ConfigurationError, StateStoreError
from sftpsource.source.types import SeenRecord
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.seen_store")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS seen_files (
    namespace VARCHAR NOT NULL,
    key VARCHAR NOT NULL,
    value VARCHAR NOT NULL,
    PRIMARY KEY (namespace, key)
)
"""


class MetadataBackend(ABC):
    """Namespaced key-value storage underneath the seen-file ledger."""

    @abstractmethod
    def get(self, namespace: str, key: str) -> str | None: ...

    @abstractmethod
    def put(self, namespace: str, key: str, value: str) -> None: ...

    @abstractmethod
    def put_if_absent(self, namespace: str, key: str, value: str) -> bool:
        """Store ``value`` unless ``key`` exists. Returns True if it was stored."""

    @abstractmethod
    def items(self, namespace: str) -> list[tuple[str, str]]: ...

    def keys(self, namespace: str) -> list[str]:
        return [key for key, _ in self.items(namespace)]

    def close(self) -> None:
        pass


class SimpleMetadataBackend(MetadataBackend):
    """
    Process-local backend. Nothing survives a restart.

    Fine for tests and throwaway pollers; use DuckDBMetadataBackend anywhere
    redelivery after a restart matters.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def get(self, namespace: str, key: str) -> str | None:
        with self._lock:
            return self._data.get(namespace, {}).get(key)

    def put(self, namespace: str, key: str, value: str) -> None:
        with self._lock:
            self._data.setdefault(namespace, {})[key] = value

    def put_if_absent(self, namespace: str, key: str, value: str) -> bool:
        with self._lock:
            bucket = self._data.setdefault(namespace, {})
            if key in bucket:
                return False
            bucket[key] = value
            return True

    def items(self, namespace: str) -> list[tuple[str, str]]:
        with self._lock:
            return sorted(self._data.get(namespace, {}).items())


class DuckDBMetadataBackend(MetadataBackend):
    """
    File-backed backend on an embedded DuckDB database (through ibis).

    Every write is committed before the call returns, so a key recorded
    before a crash is visible after restart.
    """

    def __init__(self, path: str | Path = ":memory:"):
        self.path = str(path)
        self._connection: Any = None
        self._lock = threading.Lock()

    @property
    def connection(self) -> Any:
        """Lazily open the database and create the table."""
        if self._connection is None:
            try:
                if self.path == ":memory:":
                    self._connection = ibis.duckdb.connect()
                else:
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                    self._connection = ibis.duckdb.connect(self.path)
                self._connection.raw_sql(SCHEMA_SQL)
            except Exception as e:
                self._connection = None
                raise StateStoreError(
                    f"Cannot open metadata database '{self.path}': {e}", details={"path": self.path}
                ) from e
        return self._connection

    def get(self, namespace: str, key: str) -> str | None:
        with self._lock:
            rows = self._fetch(
                f"SELECT value FROM seen_files WHERE namespace = '{_escape(namespace)}' AND key = '{_escape(key)}'"
            )
        return str(rows[0][0]) if rows else None

    def put(self, namespace: str, key: str, value: str) -> None:
        with self._lock:
            self._execute(
                "INSERT OR REPLACE INTO seen_files (namespace, key, value) "
                f"VALUES ('{_escape(namespace)}', '{_escape(key)}', '{_escape(value)}')"
            )

    def put_if_absent(self, namespace: str, key: str, value: str) -> bool:
        with self._lock:
            rows = self._fetch(
                f"SELECT 1 FROM seen_files WHERE namespace = '{_escape(namespace)}' AND key = '{_escape(key)}'"
            )
            if rows:
                return False
            self._execute(
                "INSERT INTO seen_files (namespace, key, value) "
                f"VALUES ('{_escape(namespace)}', '{_escape(key)}', '{_escape(value)}')"
            )
            return True

    def items(self, namespace: str) -> list[tuple[str, str]]:
        with self._lock:
            rows = self._fetch(
                f"SELECT key, value FROM seen_files WHERE namespace = '{_escape(namespace)}' ORDER BY key"
            )
        return [(str(k), str(v)) for k, v in rows]

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.disconnect()
                except Exception as e:
                    logger.debug(f"Error closing metadata database {self.path}: {e}")
                self._connection = None

    def _execute(self, query: str) -> None:
        try:
            self.connection.raw_sql(query)
        except StateStoreError:
            raise
        except Exception as e:
            raise StateStoreError(f"Metadata write failed: {e}", details={"path": self.path}) from e

    def _fetch(self, query: str) -> list[tuple]:
        try:
            return list(self.connection.raw_sql(query).fetchall())
        except StateStoreError:
            raise
        except Exception as e:
            raise StateStoreError(f"Metadata read failed: {e}", details={"path": self.path}) from e


class SeenFileStore:
    """Grow-only ledger of dispatched entry keys, scoped to one namespace."""

    def __init__(self, backend: MetadataBackend, namespace: str):
        self.backend = backend
        self.namespace = namespace

    def is_seen(self, key: str) -> bool:
        return self.backend.get(self.namespace, key) is not None

    def mark_seen(self, key: str) -> None:
        """Record ``key``. Marking an already-seen key is a no-op."""
        self.mark_if_absent(key)

    def mark_if_absent(self, key: str) -> bool:
        """Record ``key`` unless present; True means this call recorded it."""
        return self.backend.put_if_absent(self.namespace, key, _utcnow().isoformat())

    def get_record(self, key: str) -> SeenRecord | None:
        value = self.backend.get(self.namespace, key)
        if value is None:
            return None
        return SeenRecord(key=key, first_seen_at=datetime.fromisoformat(value))

    def records(self) -> list[SeenRecord]:
        return [SeenRecord(key=k, first_seen_at=datetime.fromisoformat(v)) for k, v in self.backend.items(self.namespace)]

    def close(self) -> None:
        self.backend.close()

    def __len__(self) -> int:
        return len(self.backend.items(self.namespace))


def build_metadata_backend(config: dict[str, Any], project_dir: Path | None = None) -> MetadataBackend:
    """
    Create the backend named in the ``metadata`` config section.

    Relative DuckDB paths resolve against ``project_dir``.
    """
    metadata = config.get("metadata", {}) or {}
    backend = str(metadata.get("backend", "duckdb"))

    if backend == "memory":
        logger.warning("Using in-memory metadata backend: seen files are forgotten on restart")
        return SimpleMetadataBackend()

    if backend == "duckdb":
        path = Path(str(metadata.get("path", ".sftpsource/metadata.duckdb"))).expanduser()
        if not path.is_absolute() and project_dir is not None:
            path = project_dir / path
        return DuckDBMetadataBackend(path)

    raise ConfigurationError(f"Unknown metadata backend '{backend}'. Use 'duckdb' or 'memory'.")


def _escape(value: str) -> str:
    return value.replace("'", "''")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
