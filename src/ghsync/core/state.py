"""VersionTracker + SyncState — the mutable replication state of one engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import RLock

from ghsync.core.types import VersionTag

logger = logging.getLogger(__name__)


class VersionTracker:
    """Holds the last observed remote version tag.

    Not persisted: rebuilt from the remote on every start.
    """

    def __init__(self, version: VersionTag | None = None) -> None:
        self._version = version
        self._observations = 0
        self._lock = RLock()

    @property
    def version(self) -> VersionTag | None:
        with self._lock:
            return self._version

    @property
    def known(self) -> bool:
        with self._lock:
            return self._version is not None

    @property
    def observations(self) -> int:
        """Number of times a remote version has been recorded."""
        with self._lock:
            return self._observations

    def observe(self, version: VersionTag | None) -> None:
        """Record a version seen on a successful read or write."""
        with self._lock:
            if version != self._version:
                logger.debug("remote version %s -> %s", self._version, version)
            self._version = version
            self._observations += 1

    def forget(self) -> None:
        """Mark the remote version as unknown (remote object absent)."""
        with self._lock:
            self._version = None


@dataclass
class SyncState:
    """Dirty flag, change generation and version tracker for one replica.

    ``generation`` counts change signals; a push clears ``dirty`` only if no
    signal arrived after the buffer it wrote was read.
    """

    dirty: bool = False
    generation: int = 0
    tracker: VersionTracker = field(default_factory=VersionTracker)
    _lock: RLock = field(default_factory=RLock, repr=False, compare=False)

    def mark_dirty(self) -> int:
        with self._lock:
            self.dirty = True
            self.generation += 1
            return self.generation

    def snapshot(self) -> int:
        """Return the current generation, to be passed to ``mark_clean`` later."""
        with self._lock:
            return self.generation

    def mark_clean(self, generation: int) -> bool:
        """Clear ``dirty`` if nothing changed since ``generation``; return whether it was cleared."""
        with self._lock:
            if self.generation != generation:
                return False
            self.dirty = False
            return True
