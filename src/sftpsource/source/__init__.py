"""
Polling source: list a remote directory, filter, materialize and dispatch
each new file once.
"""

from sftpsource.source.commit import CommitCoordinator, CommitHandle, CommitOutcome
from sftpsource.source.dispatcher import Dispatcher
from sftpsource.source.download import CopyToLocal, DownloadStrategy, StreamRemote, build_download_strategy
from sftpsource.source.filters import (
    AcceptOnceFilter,
    FilterChain,
    Predicate,
    RegexPatternFilter,
    SimplePatternFilter,
    build_filter_chain,
)
from sftpsource.source.lister import DirectoryLister
from sftpsource.source.poller import CycleResult, Poller, PollerState, build_poller
from sftpsource.source.seen_store import (
    DuckDBMetadataBackend,
    MetadataBackend,
    SeenFileStore,
    SimpleMetadataBackend,
    build_metadata_backend,
)
from sftpsource.source.types import (
    DispatchEnvelope,
    LocalFileHandle,
    PollConfig,
    RemoteEntry,
    RemoteSession,
    RemoteStreamHandle,
    SeenRecord,
    entry_key,
)

__all__ = [
    "AcceptOnceFilter",
    "CommitCoordinator",
    "CommitHandle",
    "CommitOutcome",
    "CopyToLocal",
    "CycleResult",
    "DirectoryLister",
    "DispatchEnvelope",
    "Dispatcher",
    "DownloadStrategy",
    "DuckDBMetadataBackend",
    "FilterChain",
    "LocalFileHandle",
    "MetadataBackend",
    "PollConfig",
    "Poller",
    "PollerState",
    "Predicate",
    "RegexPatternFilter",
    "RemoteEntry",
    "RemoteSession",
    "RemoteStreamHandle",
    "SeenFileStore",
    "SeenRecord",
    "SimpleMetadataBackend",
    "SimplePatternFilter",
    "StreamRemote",
    "build_download_strategy",
    "build_filter_chain",
    "build_metadata_backend",
    "build_poller",
    "entry_key",
]
