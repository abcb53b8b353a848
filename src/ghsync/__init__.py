"""ghsync — keep one local file replicated to a path in a GitHub repository."""

from ghsync._version import __version__
from ghsync.api.events import SyncEvent
from ghsync.api.replica import FileReplica
from ghsync.config import SyncConfig
from ghsync.core.types import PushResult, PushStage, ReconcileResult, SyncOutcome
from ghsync.errors import (
    ConfigurationError,
    RemoteStoreError,
    SyncError,
    TransientRemoteError,
    VersionConflictError,
)
from ghsync.net.github import GitHubStore
from ghsync.net.memory import MemoryStore

__all__ = [
    "__version__",
    "ConfigurationError",
    "FileReplica",
    "GitHubStore",
    "MemoryStore",
    "PushResult",
    "PushStage",
    "ReconcileResult",
    "RemoteStoreError",
    "SyncConfig",
    "SyncError",
    "SyncEvent",
    "SyncOutcome",
    "TransientRemoteError",
    "VersionConflictError",
]
