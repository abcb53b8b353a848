"""Exception taxonomy for replication failures."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all ghsync errors."""


class ConfigurationError(SyncError):
    """Missing settings, or a repository/branch/permission problem on the remote.

    Fatal to initialization; never retried.
    """


class RemoteStoreError(SyncError):
    """A remote store call failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class VersionConflictError(RemoteStoreError):
    """A conditional write was rejected: the version tag was stale or missing."""


class TransientRemoteError(RemoteStoreError):
    """Network or service failure; the next flush trigger will try again."""
