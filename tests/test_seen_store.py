"""
Tests for the seen-file store and its metadata backends.
"""

from datetime import datetime

import pytest

from sftpsource.exceptions import ConfigurationError, StateStoreError
from sftpsource.source.seen_store import (
    DuckDBMetadataBackend,
    SeenFileStore,
    SimpleMetadataBackend,
    _escape,
    build_metadata_backend,
)


class TestSimpleMetadataBackend:
    def test_put_if_absent(self):
        backend = SimpleMetadataBackend()
        assert backend.put_if_absent("ns", "k", "v1") is True
        assert backend.put_if_absent("ns", "k", "v2") is False
        assert backend.get("ns", "k") == "v1"

    def test_namespaces_are_isolated(self):
        backend = SimpleMetadataBackend()
        backend.put("a", "k", "1")
        assert backend.get("b", "k") is None
        assert backend.keys("a") == ["k"]
        assert backend.keys("b") == []


class TestDuckDBMetadataBackend:
    def test_escape(self):
        assert _escape("it's") == "it''s"

    def test_roundtrip_in_memory(self):
        backend = DuckDBMetadataBackend()
        try:
            assert backend.put_if_absent("ns", "/in/a.txt", "t1") is True
            assert backend.put_if_absent("ns", "/in/a.txt", "t2") is False
            assert backend.get("ns", "/in/a.txt") == "t1"
            assert backend.get("ns", "/in/missing") is None
        finally:
            backend.close()

    def test_quotes_in_keys(self):
        backend = DuckDBMetadataBackend()
        try:
            backend.put("ns", "/in/it's.txt", "v")
            assert backend.get("ns", "/in/it's.txt") == "v"
            assert backend.items("ns") == [("/in/it's.txt", "v")]
        finally:
            backend.close()

    def test_items_sorted_and_namespaced(self):
        backend = DuckDBMetadataBackend()
        try:
            backend.put("ns", "b", "2")
            backend.put("ns", "a", "1")
            backend.put("other", "c", "3")
            assert backend.items("ns") == [("a", "1"), ("b", "2")]
        finally:
            backend.close()

    def test_unopenable_path_raises_state_store_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        backend = DuckDBMetadataBackend(blocker / "sub" / "metadata.duckdb")
        with pytest.raises(StateStoreError):
            backend.get("ns", "k")


class TestSeenFileStore:
    def test_mark_and_check(self):
        store = SeenFileStore(SimpleMetadataBackend(), "test")
        assert not store.is_seen("/in/a.txt")
        store.mark_seen("/in/a.txt")
        assert store.is_seen("/in/a.txt")

    def test_mark_seen_is_idempotent(self):
        store = SeenFileStore(SimpleMetadataBackend(), "test")
        store.mark_seen("/in/a.txt")
        first = store.get_record("/in/a.txt")
        store.mark_seen("/in/a.txt")
        assert store.get_record("/in/a.txt") == first
        assert len(store) == 1

    def test_mark_if_absent(self):
        store = SeenFileStore(SimpleMetadataBackend(), "test")
        assert store.mark_if_absent("/in/a.txt") is True
        assert store.mark_if_absent("/in/a.txt") is False

    def test_record_has_first_seen_timestamp(self):
        store = SeenFileStore(SimpleMetadataBackend(), "test")
        store.mark_seen("/in/a.txt")
        record = store.get_record("/in/a.txt")
        assert record.key == "/in/a.txt"
        assert isinstance(record.first_seen_at, datetime)
        assert record.first_seen_at.tzinfo is not None

    def test_no_remove_operation(self):
        store = SeenFileStore(SimpleMetadataBackend(), "test")
        assert not hasattr(store, "remove")
        assert not hasattr(store, "unmark")

    def test_survives_restart(self, tmp_path):
        """A key recorded before a restart is still seen afterwards."""
        path = tmp_path / "state" / "metadata.duckdb"

        store = SeenFileStore(DuckDBMetadataBackend(path), "sftpSource")
        assert store.mark_if_absent("/in/a.txt")
        store.close()

        reopened = SeenFileStore(DuckDBMetadataBackend(path), "sftpSource")
        try:
            assert reopened.is_seen("/in/a.txt")
            assert reopened.mark_if_absent("/in/a.txt") is False
            assert [r.key for r in reopened.records()] == ["/in/a.txt"]
        finally:
            reopened.close()


class TestBuildMetadataBackend:
    def test_memory(self):
        assert isinstance(build_metadata_backend({"metadata": {"backend": "memory"}}), SimpleMetadataBackend)

    def test_duckdb_relative_path_resolves_against_project(self, tmp_path):
        backend = build_metadata_backend({"metadata": {"path": "state/meta.duckdb"}}, project_dir=tmp_path)
        assert isinstance(backend, DuckDBMetadataBackend)
        assert backend.path == str(tmp_path / "state" / "meta.duckdb")

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            build_metadata_backend({"metadata": {"backend": "redis"}})
