"""
Pseudo-transaction around message delivery.

A CommitHandle is resolved exactly once, to COMMITTED, ROLLED_BACK or UNKNOWN,
and runs the callbacks registered for that outcome. There is no two-phase
guarantee: a post-commit side effect that fails does not undo the delivery.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

from sftpsource.source.types import DispatchEnvelope, PollConfig, RemoteSession, RemoteStreamHandle
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.commit")

Callback = Callable[["CommitHandle"], None]


class CommitOutcome(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    UNKNOWN = "unknown"


class CommitHandle:
    """Completion callbacks for one dispatched envelope."""

    def __init__(self, envelope: DispatchEnvelope):
        self.envelope = envelope
        self.outcome = CommitOutcome.PENDING
        self.cleanup_errors: list[BaseException] = []
        self._on_commit: list[Callback] = []
        self._on_rollback: list[Callback] = []

    @property
    def resolved(self) -> bool:
        return self.outcome is not CommitOutcome.PENDING

    def on_commit(self, fn: Callback) -> CommitHandle:
        self._on_commit.append(fn)
        return self

    def on_rollback(self, fn: Callback) -> CommitHandle:
        self._on_rollback.append(fn)
        return self

    def commit(self) -> None:
        self.resolve(CommitOutcome.COMMITTED)

    def rollback(self) -> None:
        self.resolve(CommitOutcome.ROLLED_BACK)

    def resolve(self, outcome: CommitOutcome) -> None:
        """
        Settle the boundary and run the matching callbacks.

        UNKNOWN runs neither list. Callback failures are collected in
        ``cleanup_errors``; they never change the outcome.
        """
        if outcome is CommitOutcome.PENDING:
            raise ValueError("Cannot resolve a commit handle to PENDING")
        if self.resolved:
            raise RuntimeError(
                f"Commit handle for {self.envelope.source_entry.full_path} already resolved ({self.outcome.value})"
            )
        self.outcome = outcome

        callbacks: list[Callback] = []
        if outcome is CommitOutcome.COMMITTED:
            callbacks = self._on_commit
        elif outcome is CommitOutcome.ROLLED_BACK:
            callbacks = self._on_rollback
        self._on_commit, self._on_rollback = [], []

        for fn in callbacks:
            try:
                fn(self)
            except Exception as e:
                self.cleanup_errors.append(e)
                logger.error(
                    f"{outcome.value} callback failed for {self.envelope.source_entry.full_path}: {e}"
                )

        payload = self.envelope.payload
        if isinstance(payload, RemoteStreamHandle):
            try:
                payload.close()
            except Exception as e:
                logger.warning(f"Error closing remote stream {payload.path}: {e}")

    def __repr__(self) -> str:
        return f"CommitHandle(path='{self.envelope.source_entry.full_path}', outcome={self.outcome.value})"


class CommitCoordinator:
    """
    Opens commit boundaries and attaches the remote-delete side effect.

    Delete-after-commit is only registered for streamed payloads, where the
    remote path is still the thing being delivered. Copy mode deletes right
    after download instead (see ``delete_after_download``).
    """

    def __init__(self, session: RemoteSession, config: PollConfig):
        self.session = session
        self.config = config

    def begin(self, envelope: DispatchEnvelope) -> CommitHandle:
        handle = CommitHandle(envelope)
        if self.config.delete_after_commit and envelope.is_stream:
            handle.on_commit(self._delete_remote)
        return handle

    def delete_after_download(self, envelope: DispatchEnvelope) -> None:
        """Copy-mode cleanup: delete the remote file once the local copy exists."""
        if self.config.delete_remote_files and not self.config.stream:
            path = envelope.source_entry.full_path
            try:
                self.session.delete(path)
            except Exception as e:
                # The local copy is complete; the next cycle's dedup filter rejects the leftover.
                logger.error(f"Failed to delete remote file {path} after download: {e}")
            else:
                logger.info(f"Deleted remote file {path} after download")

    def _delete_remote(self, handle: CommitHandle) -> None:
        path = handle.envelope.source_entry.full_path
        self.session.delete(path)
        logger.info(f"Deleted remote file {path} after commit")
