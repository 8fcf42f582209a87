"""
sftpsource exception hierarchy.

All domain-specific exceptions inherit from SftpSourceError, so callers can
catch any source failure with a single base class while the poller still
tells listing failures apart from per-entry failures.

Hierarchy::

    SftpSourceError
    ├── ConfigurationError        - config loading, parsing, validation
    │   └── FilterConfigError     - conflicting or invalid filename filters
    ├── TransportError            - session/network failure, missing remote dir
    ├── ProtocolError             - malformed remote listing or reply
    ├── StagingError (OSError)    - local download/rename/timestamp failure
    ├── DeliveryError             - outbound channel refused a message
    └── StateStoreError           - metadata backend read/write
"""

from __future__ import annotations


class SftpSourceError(Exception):
    """Base exception for all sftpsource errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(SftpSourceError):
    """Raised when configuration loading, parsing, or validation fails."""


class FilterConfigError(ConfigurationError):
    """Raised at startup when the filename filters cannot be built.

    Both ``filename_pattern`` and ``filename_regex`` set, or a regex that
    does not compile.
    """


# --- Remote side -------------------------------------------------------------


class TransportError(SftpSourceError):
    """Raised when the remote session fails or a remote path is unavailable."""

    def __init__(self, message: str, *, path: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message, details={"path": path})
        self.path = path
        if cause is not None:
            self.__cause__ = cause


class ProtocolError(SftpSourceError):
    """Raised when the server returns a listing entry we cannot interpret."""


# --- Local staging -----------------------------------------------------------


class StagingError(SftpSourceError, OSError):
    """Raised when a downloaded file cannot be written, renamed or stamped locally."""

    def __init__(self, message: str, *, local_path: str | None = None) -> None:
        super().__init__(message, details={"local_path": local_path})
        self.local_path = local_path


# --- Outbound ----------------------------------------------------------------


class DeliveryError(SftpSourceError):
    """Raised when the outbound channel does not accept a message."""


# --- State store -------------------------------------------------------------


class StateStoreError(SftpSourceError):
    """Raised when the metadata backend cannot be read or written."""
