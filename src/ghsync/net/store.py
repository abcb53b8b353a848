"""RemoteStore ABC — the versioned store the replica writes to."""

from __future__ import annotations

import abc
from typing import Sequence

from ghsync.core.types import (
    BlobRef,
    CommitRef,
    RemoteObject,
    TreeEntry,
    TreeRef,
    VersionTag,
)


class RemoteStore(abc.ABC):
    """Abstract path-addressed versioned store with a low-level commit API.

    "Not found" is returned as ``None``, never raised.
    """

    @abc.abstractmethod
    async def get_version(self, path: str) -> VersionTag | None: ...

    @abc.abstractmethod
    async def get_content(self, path: str) -> RemoteObject | None: ...

    @abc.abstractmethod
    async def put_content(
        self,
        path: str,
        data: bytes,
        message: str,
        expected_version: VersionTag | None = None,
    ) -> VersionTag:
        """Create or conditionally update ``path``; return the new version tag.

        Raises VersionConflictError when ``expected_version`` is stale, or omitted
        while the object already exists.
        """

    @abc.abstractmethod
    async def create_blob(self, data: bytes) -> BlobRef: ...

    @abc.abstractmethod
    async def get_branch_head(self) -> CommitRef: ...

    @abc.abstractmethod
    async def get_commit_tree(self, commit: CommitRef) -> TreeRef: ...

    @abc.abstractmethod
    async def create_tree(self, base_tree: TreeRef, entries: Sequence[TreeEntry]) -> TreeRef: ...

    @abc.abstractmethod
    async def create_commit(self, tree: TreeRef, parent: CommitRef, message: str) -> CommitRef: ...

    @abc.abstractmethod
    async def update_branch_head(self, commit: CommitRef) -> None:
        """Advance the branch to ``commit``; must fail if the head moved meanwhile."""

    async def close(self) -> None:
        """Release transport resources."""
