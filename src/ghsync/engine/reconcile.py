"""Startup reconciliation between the local file and the remote object."""

from __future__ import annotations

import logging

from ghsync.config import SyncConfig
from ghsync.core.files import LocalFiles
from ghsync.core.state import SyncState
from ghsync.core.types import PushStage, ReconcileResult, SyncOutcome
from ghsync.engine.protocol import WriteProtocol
from ghsync.errors import ConfigurationError, RemoteStoreError
from ghsync.net.store import RemoteStore

logger = logging.getLogger(__name__)


async def reconcile(
    config: SyncConfig,
    store: RemoteStore,
    files: LocalFiles,
    protocol: WriteProtocol,
    state: SyncState,
) -> ReconcileResult:
    """Bring the local file and the remote object into agreement once, at startup.

    Remote wins whenever it exists: the local file is overwritten and nothing is
    written remotely. Only when the remote object is absent and the local file
    has content is the remote created from it. An absent or empty local file is
    never pushed, so a freshly provisioned host cannot blank a populated remote.
    """
    local_path = config.local_path
    files.ensure_dir(local_path.parent)

    # Anything other than "not found" propagates: without knowing the remote
    # state it is unsafe to continue.
    remote = await store.get_content(config.remote_path)

    if remote is not None:
        files.write(local_path, remote.content)
        state.tracker.observe(remote.version)
        logger.info("pulled %s from remote (version=%s)", config.remote_path, remote.version)
        return ReconcileResult(SyncOutcome.PULLED, remote.version)

    state.tracker.forget()
    if files.exists(local_path) and files.size(local_path) > 0:
        data = files.read(local_path)
        generation = state.snapshot()
        try:
            result = await protocol.push(data, config.seed_message or "")
        except RemoteStoreError as exc:
            if exc.status == 404:
                raise ConfigurationError(
                    f"failed to create remote {config.remote_path}: repository/branch "
                    "not found or token lacking permission"
                ) from exc
            state.mark_dirty()
            logger.warning("could not create remote %s yet, will retry: %s", config.remote_path, exc)
            return ReconcileResult(SyncOutcome.SEED_DEFERRED)
        if result.stage is PushStage.EMPTY_GUARD:
            return ReconcileResult(SyncOutcome.LOCAL_EMPTY)
        state.mark_clean(generation)
        logger.info("created remote %s from local (version=%s)", config.remote_path, result.version)
        return ReconcileResult(SyncOutcome.SEEDED, result.version)

    if not files.exists(local_path):
        files.write(local_path, b"")
        logger.info(
            "created empty local %s (remote not present); not pushing blank content", local_path
        )
        return ReconcileResult(SyncOutcome.CREATED_EMPTY_LOCAL)

    logger.info(
        "remote %s missing and local %s empty; not creating remote", config.remote_path, local_path
    )
    return ReconcileResult(SyncOutcome.LOCAL_EMPTY)
