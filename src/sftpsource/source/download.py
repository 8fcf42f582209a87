"""
Download strategies: turn an accepted remote entry into a payload.

CopyToLocal writes a complete local copy (temp name, then rename);
StreamRemote hands out a read handle on the live session.
"""

from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path

from sftpsource.exceptions import ConfigurationError, StagingError
from sftpsource.source.types import LocalFileHandle, PollConfig, RemoteEntry, RemoteSession, RemoteStreamHandle
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.download")

COPY_CHUNK_SIZE = 1024 * 1024


class DownloadStrategy(ABC):
    """Chosen once at startup from ``PollConfig.stream``."""

    def __init__(self, session: RemoteSession):
        self.session = session

    @abstractmethod
    def materialize(self, entry: RemoteEntry) -> LocalFileHandle | RemoteStreamHandle: ...


class CopyToLocal(DownloadStrategy):
    """
    Download into ``local_dir`` so the final name only ever holds a complete file.

    Bytes go to ``<name><tmp_suffix>``, are flushed and fsynced, then the temp
    file is renamed over the final name.
    """

    def __init__(
        self,
        session: RemoteSession,
        local_dir: Path,
        *,
        tmp_suffix: str = ".tmp",
        auto_create_local_dir: bool = True,
        preserve_timestamp: bool = True,
    ):
        super().__init__(session)
        if not tmp_suffix:
            raise ConfigurationError("tmp_suffix must not be empty")
        self.local_dir = Path(local_dir)
        self.tmp_suffix = tmp_suffix
        self.preserve_timestamp = preserve_timestamp
        self._prepare_local_dir(auto_create_local_dir)

    def _prepare_local_dir(self, auto_create: bool) -> None:
        if self.local_dir.is_dir():
            return
        if self.local_dir.exists():
            raise ConfigurationError(f"local_dir is not a directory: {self.local_dir}")
        if not auto_create:
            raise ConfigurationError(
                f"local_dir does not exist: {self.local_dir}\n"
                f"  Suggestion: create it or set auto_create_local_dir: true"
            )
        try:
            self.local_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot create local_dir {self.local_dir}: {e}") from e
        logger.info(f"Created local directory {self.local_dir}")

    def materialize(self, entry: RemoteEntry) -> LocalFileHandle:
        """
        Raises:
            TransportError: the remote file could not be opened or read
            StagingError: writing, renaming or stamping the local file failed
        """
        final_path = self.local_dir / entry.name
        tmp_path = self.local_dir / f"{entry.name}{self.tmp_suffix}"

        try:
            try:
                with self.session.open(entry.full_path) as src, open(tmp_path, "wb") as dst:
                    shutil.copyfileobj(src, dst, COPY_CHUNK_SIZE)
                    dst.flush()
                    os.fsync(dst.fileno())
                # os.replace keeps the mtime
                if self.preserve_timestamp:
                    mtime = entry.modified_time.timestamp()
                    os.utime(tmp_path, (mtime, mtime))
                os.replace(tmp_path, final_path)
            except OSError as e:
                raise StagingError(
                    f"Failed to stage {entry.full_path} at {final_path}: {e}", local_path=str(final_path)
                ) from e
        except BaseException:
            _remove_quietly(tmp_path)
            raise

        logger.debug(f"Downloaded {entry.full_path} -> {final_path} ({entry.size} bytes)")
        return LocalFileHandle(path=final_path, entry=entry)


class StreamRemote(DownloadStrategy):
    """Open the remote file without local staging."""

    def materialize(self, entry: RemoteEntry) -> RemoteStreamHandle:
        """
        Raises:
            TransportError: the remote open failed
        """
        file_obj = self.session.open(entry.full_path)
        return RemoteStreamHandle(file_obj, entry)


def build_download_strategy(session: RemoteSession, config: PollConfig) -> DownloadStrategy:
    if config.stream:
        return StreamRemote(session)
    return CopyToLocal(
        session,
        config.local_dir,
        tmp_suffix=config.tmp_file_suffix,
        auto_create_local_dir=config.auto_create_local_dir,
        preserve_timestamp=config.preserve_timestamp,
    )


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove temp file {path}: {e}")
