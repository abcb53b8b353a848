"""Type definitions for the ghsync core module."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto


VersionTag = str
BlobRef = str
TreeRef = str
CommitRef = str


class SyncOutcome(Enum):
    """What startup reconciliation did."""

    PULLED = auto()
    SEEDED = auto()
    SEED_DEFERRED = auto()
    CREATED_EMPTY_LOCAL = auto()
    LOCAL_EMPTY = auto()


class PushStage(Enum):
    """The write stage that produced a push result."""

    CONDITIONAL_WRITE = auto()
    RETRY_WRITE = auto()
    CREATE = auto()
    BLOB_COMMIT = auto()
    EMPTY_GUARD = auto()
    LOCAL_MISSING = auto()


class SchedulerState(Enum):
    IDLE = auto()
    PENDING_FLUSH = auto()
    FLUSHING = auto()


@dataclass(frozen=True)
class RemoteObject:
    """Content and version tag of the remote object as last fetched."""

    content: bytes
    version: VersionTag


@dataclass(frozen=True)
class TreeEntry:
    path: str
    blob: BlobRef
    mode: str = "100644"


@dataclass(frozen=True)
class PushResult:
    stage: PushStage
    version: VersionTag | None = None
    attempts: int = 0

    @property
    def wrote(self) -> bool:
        """True if the remote object was changed."""
        return self.stage not in (PushStage.EMPTY_GUARD, PushStage.LOCAL_MISSING)


@dataclass(frozen=True)
class ReconcileResult:
    outcome: SyncOutcome
    version: VersionTag | None = None
