"""FileReplica — primary user-facing class composing reconciliation, the write
protocol and the flush scheduler for one local file."""

from __future__ import annotations

import logging
import signal
from contextlib import AsyncExitStack
from typing import Any

import anyio
import anyio.abc

from ghsync.api.events import EventHooks, SyncEvent
from ghsync.config import SyncConfig
from ghsync.core.files import DiskFiles, LocalFiles
from ghsync.core.state import SyncState
from ghsync.core.types import PushResult, PushStage, ReconcileResult, VersionTag
from ghsync.engine.protocol import WriteProtocol
from ghsync.engine.reconcile import reconcile
from ghsync.engine.scheduler import FlushScheduler
from ghsync.net.store import RemoteStore

logger = logging.getLogger(__name__)


class FileReplica:
    """Keeps ``config.local_path`` replicated to ``config.remote_path`` in ``store``.

    Usage::

        async with FileReplica(store, SyncConfig.from_env()) as replica:
            ...
            replica.mark_dirty()

    The store is owned by the caller and is not closed here.
    """

    def __init__(
        self,
        store: RemoteStore,
        config: SyncConfig | None = None,
        *,
        files: LocalFiles | None = None,
        state: SyncState | None = None,
    ) -> None:
        self._config = config or SyncConfig()
        self._store = store
        self._files = files or DiskFiles()
        self._state = state or SyncState()
        self._hooks = EventHooks()
        self._protocol = WriteProtocol(
            store,
            self._config.remote_path,
            self._state.tracker,
            large_object_threshold=self._config.large_object_threshold,
        )
        self._scheduler = FlushScheduler(
            self._flush,
            self._state,
            debounce_delay=self._config.debounce_delay,
            periodic_interval=self._config.periodic_interval,
            shutdown_timeout=self._config.shutdown_timeout,
        )
        self._reconciled: ReconcileResult | None = None
        self._exit_stack: AsyncExitStack | None = None
        self._closed = False

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def scheduler(self) -> FlushScheduler:
        return self._scheduler

    @property
    def hooks(self) -> EventHooks:
        return self._hooks

    @property
    def dirty(self) -> bool:
        return self._state.dirty

    @property
    def version(self) -> VersionTag | None:
        """Last remote version tag observed by this replica."""
        return self._state.tracker.version

    @property
    def is_initialized(self) -> bool:
        return self._reconciled is not None

    def on(self, event: SyncEvent, hook: Any) -> None:
        self._hooks.on(event, hook)

    async def initialize(self, task_group: anyio.abc.TaskGroup | None = None) -> ReconcileResult:
        """Reconcile with the remote, then start the scheduler in ``task_group``.

        Without a task group only reconciliation runs: flush_now() and close()
        still push, but nothing flushes in the background. ``async with
        replica`` supplies a task group of its own.

        ConfigurationError and failures to read the remote propagate and leave
        the scheduler stopped.
        """
        first = self._reconciled is None
        if first:
            self._reconciled = await reconcile(
                self._config, self._store, self._files, self._protocol, self._state
            )
            self._closed = False
        if task_group is not None:
            await self._scheduler.start(task_group)
        if first:
            await self._hooks.fire(SyncEvent.AFTER_RECONCILE, self, self._reconciled)
        return self._reconciled

    def mark_dirty(self) -> None:
        """Signal that the local file changed; a push follows after the debounce delay."""
        self._scheduler.mark_dirty()

    async def flush_now(self, force: bool = False) -> PushResult | None:
        """Push immediately. Returns None when not dirty and not forced."""
        return await self._scheduler.flush_now(force)

    async def pull(self) -> VersionTag | None:
        """Overwrite the local file with the remote copy, if there is one."""
        remote = await self._store.get_content(self._config.remote_path)
        if remote is None:
            logger.warning("remote %s not present; local file left untouched", self._config.remote_path)
            return None
        self._files.ensure_dir(self._config.local_path.parent)
        self._files.write(self._config.local_path, remote.content)
        self._state.tracker.observe(remote.version)
        logger.info("pulled %s from remote (version=%s)", self._config.remote_path, remote.version)
        return remote.version

    async def close(self) -> None:
        """Stop background flushing and make one last attempt to push pending changes.

        May be awaited under a caller's deadline; the final flush itself is
        bounded by ``shutdown_timeout``. Later calls are no-ops.
        """
        if self._closed:
            return
        self._closed = True
        await self._hooks.fire(SyncEvent.BEFORE_SHUTDOWN, self)
        await self._scheduler.stop()
        await self._hooks.fire(SyncEvent.AFTER_SHUTDOWN, self)

    async def run_until_signalled(
        self, signals: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)
    ) -> None:
        """Initialize if needed, wait for a termination signal, then close."""
        async with self:
            with anyio.open_signal_receiver(*signals) as received:
                async for signum in received:
                    logger.info("received %s; flushing before exit", signal.Signals(signum).name)
                    break

    async def __aenter__(self) -> FileReplica:
        stack = AsyncExitStack()
        task_group = await stack.enter_async_context(anyio.create_task_group())
        try:
            await self.initialize(task_group)
        except BaseException:
            await stack.aclose()
            raise
        self._exit_stack = stack
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        try:
            await self.close()
        finally:
            stack, self._exit_stack = self._exit_stack, None
            if stack is not None:
                await stack.aclose()

    async def _flush(self, force: bool) -> PushResult | None:
        if not force and not self._state.dirty:
            return None
        path = self._config.local_path
        generation = self._state.snapshot()
        try:
            data = self._files.read(path) if self._files.exists(path) else None
        except FileNotFoundError:
            data = None
        if data is None:
            logger.warning("local %s missing; skipping sync", path)
            self._state.mark_clean(generation)
            return PushResult(stage=PushStage.LOCAL_MISSING)

        try:
            result = await self._protocol.push(data, self._config.commit_message or "")
        except Exception as exc:
            await self._hooks.fire(SyncEvent.PUSH_FAILED, self, exc)
            raise
        self._state.mark_clean(generation)
        await self._hooks.fire(SyncEvent.AFTER_PUSH, self, result)
        return result
