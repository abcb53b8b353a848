"""WriteProtocol — pushes a buffer to the remote path.

Stages, in order:
    fetch_version      re-read the current version tag (never cached)
    conditional_write  contents API write guarded by that tag (create if absent)
    retry              on a version conflict: fetch_version + conditional_write once more
    blob_commit        blob -> tree -> commit -> fast-forward branch head

Payloads above the large-object threshold go straight to ``blob_commit``.
"""

from __future__ import annotations

import logging

from ghsync.config import DEFAULT_LARGE_OBJECT_THRESHOLD
from ghsync.core.state import VersionTracker
from ghsync.core.types import PushResult, PushStage, TreeEntry, VersionTag
from ghsync.errors import RemoteStoreError, VersionConflictError
from ghsync.net.store import RemoteStore

logger = logging.getLogger(__name__)


class WriteProtocol:
    """Write path for a single remote object.

    Callers must not run two pushes at once; see FlushScheduler.
    """

    def __init__(
        self,
        store: RemoteStore,
        remote_path: str,
        tracker: VersionTracker | None = None,
        *,
        large_object_threshold: int = DEFAULT_LARGE_OBJECT_THRESHOLD,
    ) -> None:
        self._store = store
        self._remote_path = remote_path
        self._tracker = tracker or VersionTracker()
        self._large_object_threshold = large_object_threshold

    @property
    def tracker(self) -> VersionTracker:
        return self._tracker

    async def fetch_version(self) -> VersionTag | None:
        version = await self._store.get_version(self._remote_path)
        if version is None:
            self._tracker.forget()
        else:
            self._tracker.observe(version)
        return version

    async def conditional_write(
        self, data: bytes, message: str, version: VersionTag | None
    ) -> VersionTag:
        return await self._store.put_content(
            self._remote_path, data, message, expected_version=version
        )

    async def blob_commit(self, data: bytes, message: str) -> VersionTag | None:
        """Write ``data`` through the git data API.

        Any failing step aborts before the branch head moves, and the error
        propagates without retry.
        """
        blob = await self._store.create_blob(data)
        head = await self._store.get_branch_head()
        base_tree = await self._store.get_commit_tree(head)
        tree = await self._store.create_tree(
            base_tree, [TreeEntry(path=self._remote_path, blob=blob)]
        )
        commit = await self._store.create_commit(tree, head, message)
        await self._store.update_branch_head(commit)
        logger.info("committed %s as blob %s (commit=%s)", self._remote_path, blob, commit)
        return await self._store.get_version(self._remote_path)

    def _refuse_empty(self) -> PushResult:
        logger.warning(
            "remote %s is absent and local content is empty; refusing to push blank content",
            self._remote_path,
        )
        return PushResult(stage=PushStage.EMPTY_GUARD)

    def _confirm(self, stage: PushStage, version: VersionTag | None, attempts: int) -> PushResult:
        self._tracker.observe(version)
        logger.info(
            "pushed %s via %s (version=%s, attempts=%s)",
            self._remote_path,
            stage.name.lower(),
            version,
            attempts,
        )
        return PushResult(stage=stage, version=version, attempts=attempts)

    async def push(self, data: bytes, message: str) -> PushResult:
        version = await self.fetch_version()
        if version is None and not data:
            return self._refuse_empty()

        attempts = 0
        if len(data) > self._large_object_threshold:
            logger.info(
                "payload of %d bytes exceeds %d; using blob commit",
                len(data),
                self._large_object_threshold,
            )
        else:
            stage = PushStage.CONDITIONAL_WRITE if version else PushStage.CREATE
            try:
                attempts += 1
                new_version = await self.conditional_write(data, message, version)
                return self._confirm(stage, new_version, attempts)
            except VersionConflictError as exc:
                logger.info("conditional write rejected, re-fetching version: %s", exc)
                try:
                    version = await self.fetch_version()
                    if version is None and not data:
                        return self._refuse_empty()
                    attempts += 1
                    new_version = await self.conditional_write(data, message, version)
                    return self._confirm(PushStage.RETRY_WRITE, new_version, attempts)
                except RemoteStoreError as retry_exc:
                    logger.warning(
                        "retry after version conflict failed, attempting blob commit: %s",
                        retry_exc,
                    )
            except RemoteStoreError as exc:
                logger.warning("contents API write failed, attempting blob commit: %s", exc)

        attempts += 1
        new_version = await self.blob_commit(data, message)
        return self._confirm(PushStage.BLOB_COMMIT, new_version, attempts)
