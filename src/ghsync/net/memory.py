"""MemoryStore — in-process git-like RemoteStore for local runs and tests."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Sequence

from ghsync._util.encoding import git_object_id
from ghsync.core.types import (
    BlobRef,
    CommitRef,
    RemoteObject,
    TreeEntry,
    TreeRef,
    VersionTag,
)
from ghsync.errors import RemoteStoreError, VersionConflictError
from ghsync.net.store import RemoteStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Commit:
    tree: TreeRef
    parent: CommitRef | None
    message: str


@dataclass
class JournalEntry:
    operation: str
    path: str | None = None
    detail: dict[str, object] = field(default_factory=dict)


class MemoryStore(RemoteStore):
    """A single-branch repository held in memory.

    Blob ids are git blob SHA-1s, so a path's version tag is its blob id, as on
    GitHub. Every call is appended to ``journal``.
    """

    WRITE_OPERATIONS = frozenset({"put_content", "update_branch_head"})

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self._lock = RLock()
        self._blobs: dict[BlobRef, bytes] = {}
        self._trees: dict[TreeRef, dict[str, BlobRef]] = {}
        self._commits: dict[CommitRef, _Commit] = {}
        self.journal: list[JournalEntry] = []
        root_tree = self._store_tree({})
        self._head = self._store_commit(_Commit(tree=root_tree, parent=None, message="root"))
        for path, data in (files or {}).items():
            self._commit_files({path: self._store_blob(data)}, f"add {path}")
        self.journal.clear()

    # -- inspection helpers -------------------------------------------------

    @property
    def head(self) -> CommitRef:
        with self._lock:
            return self._head

    def files(self) -> dict[str, bytes]:
        """Return the content of every path at the branch head."""
        with self._lock:
            tree = self._trees[self._commits[self._head].tree]
            return {path: self._blobs[blob] for path, blob in tree.items()}

    def read(self, path: str) -> bytes | None:
        return self.files().get(path)

    def writes(self) -> list[JournalEntry]:
        """Journal entries for calls that changed (or tried to change) the branch."""
        return [e for e in self.journal if e.operation in self.WRITE_OPERATIONS]

    def commit_messages(self) -> list[str]:
        with self._lock:
            messages = []
            commit: CommitRef | None = self._head
            while commit is not None:
                messages.append(self._commits[commit].message)
                commit = self._commits[commit].parent
            return messages

    # -- internals ------------------------------------------------------------

    def _record(self, operation: str, path: str | None = None, **detail: object) -> None:
        self.journal.append(JournalEntry(operation=operation, path=path, detail=dict(detail)))

    def _store_blob(self, data: bytes) -> BlobRef:
        blob = git_object_id("blob", data)
        self._blobs[blob] = bytes(data)
        return blob

    def _store_tree(self, entries: dict[str, BlobRef]) -> TreeRef:
        listing = "\n".join(f"{path} {blob}" for path, blob in sorted(entries.items()))
        tree = git_object_id("tree", listing.encode())
        self._trees[tree] = dict(entries)
        return tree

    def _store_commit(self, commit: _Commit) -> CommitRef:
        body = f"tree {commit.tree}\nparent {commit.parent}\n{commit.message}\n{len(self._commits)}"
        ref = git_object_id("commit", body.encode())
        self._commits[ref] = commit
        return ref

    def _commit_files(self, changes: dict[str, BlobRef], message: str) -> CommitRef:
        base = self._trees[self._commits[self._head].tree]
        tree = self._store_tree({**base, **changes})
        self._head = self._store_commit(_Commit(tree=tree, parent=self._head, message=message))
        return self._head

    def _current_blob(self, path: str) -> BlobRef | None:
        return self._trees[self._commits[self._head].tree].get(path)

    # -- RemoteStore ------------------------------------------------------------

    async def get_version(self, path: str) -> VersionTag | None:
        with self._lock:
            self._record("get_version", path)
            return self._current_blob(path)

    async def get_content(self, path: str) -> RemoteObject | None:
        with self._lock:
            self._record("get_content", path)
            blob = self._current_blob(path)
            if blob is None:
                return None
            return RemoteObject(content=self._blobs[blob], version=blob)

    async def put_content(
        self,
        path: str,
        data: bytes,
        message: str,
        expected_version: VersionTag | None = None,
    ) -> VersionTag:
        with self._lock:
            self._record("put_content", path, expected_version=expected_version, size=len(data))
            current = self._current_blob(path)
            if current is not None and expected_version is None:
                raise VersionConflictError(f'"sha" wasn\'t supplied for {path}', status=422)
            if expected_version is not None and expected_version != current:
                raise VersionConflictError(
                    f"{path} is at {current}, not {expected_version}", status=409
                )
            blob = self._store_blob(data)
            self._commit_files({path: blob}, message)
            return blob

    async def create_blob(self, data: bytes) -> BlobRef:
        with self._lock:
            self._record("create_blob", size=len(data))
            return self._store_blob(data)

    async def get_branch_head(self) -> CommitRef:
        with self._lock:
            self._record("get_branch_head")
            return self._head

    async def get_commit_tree(self, commit: CommitRef) -> TreeRef:
        with self._lock:
            self._record("get_commit_tree", commit=commit)
            try:
                return self._commits[commit].tree
            except KeyError:
                raise RemoteStoreError(f"no such commit: {commit}", status=404) from None

    async def create_tree(self, base_tree: TreeRef, entries: Sequence[TreeEntry]) -> TreeRef:
        with self._lock:
            self._record("create_tree", base_tree=base_tree, paths=[e.path for e in entries])
            if base_tree not in self._trees:
                raise RemoteStoreError(f"no such tree: {base_tree}", status=404)
            for entry in entries:
                if entry.blob not in self._blobs:
                    raise RemoteStoreError(f"no such blob: {entry.blob}", status=422)
            changes = {entry.path: entry.blob for entry in entries}
            return self._store_tree({**self._trees[base_tree], **changes})

    async def create_commit(self, tree: TreeRef, parent: CommitRef, message: str) -> CommitRef:
        with self._lock:
            self._record("create_commit", tree=tree, parent=parent)
            if tree not in self._trees or parent not in self._commits:
                raise RemoteStoreError("commit refers to unknown tree or parent", status=422)
            return self._store_commit(_Commit(tree=tree, parent=parent, message=message))

    async def update_branch_head(self, commit: CommitRef) -> None:
        with self._lock:
            self._record("update_branch_head", commit=commit)
            target = self._commits.get(commit)
            if target is None:
                raise RemoteStoreError(f"no such commit: {commit}", status=422)
            if target.parent != self._head:
                raise VersionConflictError("update is not a fast forward", status=422)
            self._head = commit
