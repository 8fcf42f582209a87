"""
sftpsource - poll a remote SFTP directory and turn each new file into one
message, delivered at most once.
"""

__version__ = "0.1.0"

from sftpsource.exceptions import (
    ConfigurationError,
    DeliveryError,
    FilterConfigError,
    ProtocolError,
    SftpSourceError,
    StagingError,
    StateStoreError,
    TransportError,
)
from sftpsource.source import (
    CommitOutcome,
    CycleResult,
    PollConfig,
    Poller,
    RemoteEntry,
    SeenFileStore,
    build_poller,
)
from sftpsource.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    "__version__",
    "CommitOutcome",
    "CycleResult",
    "PollConfig",
    "Poller",
    "RemoteEntry",
    "SeenFileStore",
    "build_poller",
    "SftpSourceError",
    "ConfigurationError",
    "FilterConfigError",
    "TransportError",
    "ProtocolError",
    "StagingError",
    "DeliveryError",
    "StateStoreError",
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
]
