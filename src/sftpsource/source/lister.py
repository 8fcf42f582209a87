"""
Remote directory listing.
"""

from __future__ import annotations

from dataclasses import replace

from sftpsource.exceptions import ProtocolError
from sftpsource.source.types import RemoteEntry, RemoteSession, join_remote_path
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.lister")

_PSEUDO_ENTRIES = {".", ".."}


class DirectoryLister:
    """
    Lists plain files of one remote directory, in server order.

    Full paths are rebuilt with the configured remote separator so the dedup
    key matches what the server calls the file.
    """

    def __init__(self, session: RemoteSession, separator: str = "/"):
        self.session = session
        self.separator = separator

    def list(self, remote_dir: str) -> list[RemoteEntry]:
        """
        Raises:
            TransportError: session unavailable, directory missing or unreadable
            ProtocolError: an entry without a usable name or with a negative size
        """
        entries = self.session.list(remote_dir)
        files: list[RemoteEntry] = []
        for entry in entries:
            name = entry.name
            if not name:
                raise ProtocolError(f"Listing of '{remote_dir}' returned an entry without a name")
            if name in _PSEUDO_ENTRIES or entry.is_directory:
                continue
            if self.separator in name:
                raise ProtocolError(
                    f"Listing of '{remote_dir}' returned '{name}', which contains the separator '{self.separator}'",
                    details={"remote_dir": remote_dir, "name": name},
                )
            if entry.size < 0:
                raise ProtocolError(
                    f"Listing of '{remote_dir}' returned negative size for '{name}'",
                    details={"remote_dir": remote_dir, "name": name},
                )
            files.append(replace(entry, full_path=join_remote_path(remote_dir, name, self.separator)))

        logger.debug(f"Listed {len(files)} file(s) in {remote_dir} ({len(entries) - len(files)} skipped)")
        return files
