"""FlushScheduler — debounced, periodic and shutdown flushes, run one at a time."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable

import anyio
import anyio.abc

from ghsync.core.state import SyncState
from ghsync.core.types import PushResult, SchedulerState
from ghsync.errors import SyncError

logger = logging.getLogger(__name__)

FlushFn = Callable[[bool], Awaitable["PushResult | None"]]


class FlushScheduler:
    """Decides when to flush; the flush itself is delegated to ``flush(force)``.

    States move IDLE -> PENDING_FLUSH (debounce timer armed) -> FLUSHING -> IDLE.
    The debounce timer and the periodic tick only queue requests; one serving
    task turns them into flushes. Every path (queued request, flush_now,
    shutdown) goes through one lock, so at most one push is in flight. A push
    that has started is never cancelled; stop() lets it finish before the
    final flush.

    The scheduler runs as a task of a caller-owned task group::

        async with anyio.create_task_group() as tg:
            await scheduler.start(tg)
            ...
            await scheduler.stop()

    or, owning its own task group, as ``async with scheduler: ...``.
    """

    def __init__(
        self,
        flush: FlushFn,
        state: SyncState,
        *,
        debounce_delay: float = 3.0,
        periodic_interval: float = 60.0,
        shutdown_timeout: float = 30.0,
    ) -> None:
        self._flush = flush
        self._sync_state = state
        self._debounce_delay = debounce_delay
        self._periodic_interval = periodic_interval
        self._shutdown_timeout = shutdown_timeout
        self._gate = anyio.Lock()
        self._phase = SchedulerState.IDLE
        self._timer_scope: anyio.CancelScope | None = None
        self._task_group: anyio.abc.TaskGroup | None = None
        self._requests: anyio.abc.ObjectSendStream[str] | None = None
        self._stop_requested: anyio.Event | None = None
        self._stopped: anyio.Event | None = None
        self._exit_stack: AsyncExitStack | None = None
        self._closing = False

    @property
    def phase(self) -> SchedulerState:
        return self._phase

    @property
    def is_running(self) -> bool:
        return self._task_group is not None

    async def start(self, task_group: anyio.abc.TaskGroup) -> None:
        """Start the scheduler task in ``task_group``; returns once it accepts signals."""
        if self.is_running:
            return
        await task_group.start(self.run)

    async def run(self, task_status: anyio.abc.TaskStatus = anyio.TASK_STATUS_IGNORED) -> None:
        """Serve flush requests until stop() is called, then flush once more if dirty."""
        self._closing = False
        self._stop_requested = anyio.Event()
        self._stopped = anyio.Event()
        send, receive = anyio.create_memory_object_stream[str](64)
        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg
                self._requests = send
                tg.start_soon(self._serve, receive)
                tg.start_soon(self._periodic_loop)
                if self._sync_state.dirty:
                    self._arm()
                logger.debug(
                    "flush scheduler started (debounce=%.2fs, interval=%.2fs)",
                    self._debounce_delay,
                    self._periodic_interval,
                )
                task_status.started()
                await self._stop_requested.wait()
                tg.cancel_scope.cancel()
        finally:
            self._closing = True
            self._task_group = None
            self._requests = None
            self._timer_scope = None
            send.close()
            with anyio.CancelScope(shield=True):
                await self._final_flush()
                self._stopped.set()

    async def stop(self) -> None:
        """Stop timers and the periodic tick, then flush once more if dirty.

        A push already in flight is allowed to finish and is not counted
        against ``shutdown_timeout``; only the final flush that follows is
        bounded by it. Safe to call from inside any cancel scope; the work
        itself runs in the scheduler task.
        """
        if self._stopped is None or self._stopped.is_set():
            # Not running: no scheduler task to hand off to, flush here.
            self._closing = True
            with anyio.CancelScope(shield=True):
                await self._final_flush()
            return
        self._closing = True
        if self._stop_requested is not None:
            self._stop_requested.set()
        await self._stopped.wait()

    async def __aenter__(self) -> FlushScheduler:
        stack = AsyncExitStack()
        task_group = await stack.enter_async_context(anyio.create_task_group())
        try:
            await self.start(task_group)
        except BaseException:
            await stack.aclose()
            raise
        self._exit_stack = stack
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        try:
            await self.stop()
        finally:
            stack, self._exit_stack = self._exit_stack, None
            if stack is not None:
                await stack.aclose()

    def mark_dirty(self) -> None:
        """Record a change and arm the debounce timer unless one is already pending."""
        self._sync_state.mark_dirty()
        if self._phase is SchedulerState.IDLE:
            self._arm()

    async def flush_now(self, force: bool = False) -> PushResult | None:
        """Flush immediately, skipping any pending debounce; errors propagate."""
        self._cancel_timer()
        return await self._run(force)

    def _arm(self) -> None:
        if self._task_group is None or self._closing:
            logger.debug("scheduler not running; change will be flushed later")
            return
        if self._timer_scope is not None:
            return
        self._timer_scope = anyio.CancelScope()
        if self._phase is SchedulerState.IDLE:
            self._phase = SchedulerState.PENDING_FLUSH
        self._task_group.start_soon(self._debounced_flush, self._timer_scope)

    def _cancel_timer(self) -> None:
        if self._timer_scope is not None:
            self._timer_scope.cancel()
            self._timer_scope = None
            if self._phase is SchedulerState.PENDING_FLUSH:
                self._phase = SchedulerState.IDLE

    def _request(self, reason: str) -> None:
        if self._requests is None:
            return
        try:
            self._requests.send_nowait(reason)
        except anyio.WouldBlock:
            logger.debug("flush request queue full; dropping %s request", reason)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("ignoring %s request because the scheduler is stopping", reason)

    async def _debounced_flush(self, scope: anyio.CancelScope) -> None:
        with scope:
            await anyio.sleep(self._debounce_delay)
        if scope.cancel_called:
            return
        if self._timer_scope is scope:
            self._timer_scope = None
        self._request("debounced")

    async def _periodic_loop(self) -> None:
        while True:
            await anyio.sleep(self._periodic_interval)
            if self._sync_state.dirty and self._phase is SchedulerState.IDLE:
                self._request("periodic")

    async def _serve(self, requests: anyio.abc.ObjectReceiveStream[str]) -> None:
        async with requests:
            async for reason in requests:
                await self._flush_logged(reason)

    async def _flush_logged(self, reason: str) -> None:
        try:
            await self._run(False)
        except SyncError as exc:
            logger.warning("%s flush failed, will retry on next trigger: %s", reason, exc)
        except Exception:
            logger.exception("%s flush failed", reason)

    async def _final_flush(self) -> None:
        self._phase = SchedulerState.IDLE
        if self._sync_state.dirty:
            try:
                await self._run(True, timeout=self._shutdown_timeout)
            except Exception:
                logger.exception("final flush failed")
        logger.debug("flush scheduler stopped")

    async def _run(self, force: bool, timeout: float | None = None) -> PushResult | None:
        async with self._gate:
            generation = self._sync_state.snapshot()
            self._phase = SchedulerState.FLUSHING
            try:
                with anyio.move_on_after(timeout, shield=True):
                    return await self._flush(force)
                raise TimeoutError(f"flush did not finish within {timeout}s")
            finally:
                self._phase = (
                    SchedulerState.PENDING_FLUSH
                    if self._timer_scope is not None
                    else SchedulerState.IDLE
                )
                if self._sync_state.dirty and self._sync_state.snapshot() != generation:
                    # Changed while pushing: schedule another round.
                    self._arm()
