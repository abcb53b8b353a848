"""Tests for engine module: write protocol, reconciliation, flush scheduler."""

import anyio
import pytest

from conftest import REMOTE_PATH, FlakyStore
from ghsync._util.encoding import git_object_id
from ghsync.core.files import DiskFiles
from ghsync.core.state import SyncState
from ghsync.core.types import PushStage, SchedulerState, SyncOutcome
from ghsync.engine.protocol import WriteProtocol
from ghsync.engine.reconcile import reconcile
from ghsync.engine.scheduler import FlushScheduler
from ghsync.errors import (
    ConfigurationError,
    RemoteStoreError,
    TransientRemoteError,
    VersionConflictError,
)
from ghsync.net.memory import MemoryStore


class TestWriteProtocol:
    @pytest.mark.anyio
    async def test_create_when_absent(self):
        store = MemoryStore()
        protocol = WriteProtocol(store, REMOTE_PATH)
        result = await protocol.push(b"ABC", "create")

        assert result.stage is PushStage.CREATE
        assert result.version == git_object_id("blob", b"ABC")
        assert result.attempts == 1
        assert protocol.tracker.version == result.version
        assert store.read(REMOTE_PATH) == b"ABC"

    @pytest.mark.anyio
    async def test_conditional_update_uses_current_version(self):
        store = MemoryStore({REMOTE_PATH: b"ABC"})
        protocol = WriteProtocol(store, REMOTE_PATH)
        result = await protocol.push(b"ABC123", "sync")

        assert result.stage is PushStage.CONDITIONAL_WRITE
        (put,) = store.writes()
        assert put.detail["expected_version"] == git_object_id("blob", b"ABC")
        assert store.read(REMOTE_PATH) == b"ABC123"

    @pytest.mark.anyio
    async def test_refuses_empty_buffer_when_remote_absent(self):
        store = MemoryStore()
        protocol = WriteProtocol(store, REMOTE_PATH)
        result = await protocol.push(b"", "sync")

        assert result.stage is PushStage.EMPTY_GUARD
        assert not result.wrote
        assert store.writes() == []
        assert store.read(REMOTE_PATH) is None

    @pytest.mark.anyio
    async def test_empty_buffer_updates_existing_remote(self):
        store = MemoryStore({REMOTE_PATH: b"ABC"})
        result = await WriteProtocol(store, REMOTE_PATH).push(b"", "truncate")
        assert result.stage is PushStage.CONDITIONAL_WRITE
        assert store.read(REMOTE_PATH) == b""

    @pytest.mark.anyio
    async def test_conflict_retried_once(self):
        store = FlakyStore({REMOTE_PATH: b"ABC"})
        store.fail("put_content", VersionConflictError("stale", status=409))
        result = await WriteProtocol(store, REMOTE_PATH).push(b"ABC123", "sync")

        assert result.stage is PushStage.RETRY_WRITE
        assert result.attempts == 2
        assert store.attempts["put_content"] == 2
        assert store.attempts["get_version"] == 2
        assert store.attempts["create_blob"] == 0
        assert store.read(REMOTE_PATH) == b"ABC123"

    @pytest.mark.anyio
    async def test_second_conflict_falls_back_to_blob_commit(self):
        store = FlakyStore({REMOTE_PATH: b"ABC"})
        store.fail(
            "put_content",
            VersionConflictError("stale", status=409),
            VersionConflictError("stale again", status=409),
        )
        result = await WriteProtocol(store, REMOTE_PATH).push(b"ABC123", "sync")

        assert result.stage is PushStage.BLOB_COMMIT
        assert result.attempts == 3
        assert result.version == git_object_id("blob", b"ABC123")
        assert store.attempts["put_content"] == 2
        assert store.attempts["update_branch_head"] == 1
        assert store.read(REMOTE_PATH) == b"ABC123"

    @pytest.mark.anyio
    async def test_other_failure_falls_back_without_retry(self):
        store = FlakyStore({REMOTE_PATH: b"ABC"})
        store.fail("put_content", TransientRemoteError("bad gateway", status=502))
        result = await WriteProtocol(store, REMOTE_PATH).push(b"ABC123", "sync")

        assert result.stage is PushStage.BLOB_COMMIT
        assert store.attempts["put_content"] == 1
        assert store.read(REMOTE_PATH) == b"ABC123"

    @pytest.mark.anyio
    async def test_create_path_conflict_is_retried_too(self):
        store = FlakyStore()
        store.fail("put_content", VersionConflictError("sha wasn't supplied", status=422))
        result = await WriteProtocol(store, REMOTE_PATH).push(b"ABC", "create")

        assert result.stage is PushStage.RETRY_WRITE
        assert store.read(REMOTE_PATH) == b"ABC"

    @pytest.mark.anyio
    async def test_large_payload_goes_straight_to_blob_commit(self):
        store = MemoryStore({REMOTE_PATH: b"ABC"})
        protocol = WriteProtocol(store, REMOTE_PATH, large_object_threshold=4)
        result = await protocol.push(b"0123456789", "big")

        assert result.stage is PushStage.BLOB_COMMIT
        assert [e.operation for e in store.writes()] == ["update_branch_head"]
        assert store.read(REMOTE_PATH) == b"0123456789"
        assert store.commit_messages()[0] == "big"

    @pytest.mark.anyio
    async def test_large_payload_creates_absent_object(self):
        store = MemoryStore()
        protocol = WriteProtocol(store, REMOTE_PATH, large_object_threshold=0)
        result = await protocol.push(b"X", "big")
        assert result.stage is PushStage.BLOB_COMMIT
        assert store.read(REMOTE_PATH) == b"X"

    @pytest.mark.anyio
    async def test_blob_commit_failure_leaves_branch_untouched(self):
        store = FlakyStore({REMOTE_PATH: b"ABC"})
        head = store.head
        store.fail("put_content", TransientRemoteError("down"))
        store.fail("update_branch_head", TransientRemoteError("still down"))

        with pytest.raises(TransientRemoteError):
            await WriteProtocol(store, REMOTE_PATH).push(b"ABC123", "sync")
        assert store.head == head
        assert store.read(REMOTE_PATH) == b"ABC"

    @pytest.mark.anyio
    async def test_configuration_error_is_not_masked_by_fallback(self):
        store = FlakyStore({REMOTE_PATH: b"ABC"})
        store.fail("put_content", ConfigurationError("token lacks permission"))

        with pytest.raises(ConfigurationError):
            await WriteProtocol(store, REMOTE_PATH).push(b"ABC123", "sync")
        assert store.attempts["create_blob"] == 0

    @pytest.mark.anyio
    async def test_version_always_refetched(self):
        store = MemoryStore({REMOTE_PATH: b"ABC"})
        protocol = WriteProtocol(store, REMOTE_PATH)
        protocol.tracker.observe("stale-version-from-earlier")
        result = await protocol.push(b"ABC123", "sync")
        assert result.stage is PushStage.CONDITIONAL_WRITE


class TestReconcile:
    async def _reconcile(self, config, store, state=None):
        state = state or SyncState()
        protocol = WriteProtocol(store, config.remote_path, state.tracker)
        result = await reconcile(config, store, DiskFiles(), protocol, state)
        return result, state

    @pytest.mark.anyio
    async def test_remote_wins(self, config, local_path):
        local_path.parent.mkdir(parents=True)
        local_path.write_bytes(b"ABC")
        store = MemoryStore({REMOTE_PATH: b"XYZ"})

        result, state = await self._reconcile(config, store)

        assert result.outcome is SyncOutcome.PULLED
        assert local_path.read_bytes() == b"XYZ"
        assert state.tracker.version == git_object_id("blob", b"XYZ")
        assert store.writes() == []

    @pytest.mark.anyio
    async def test_remote_wins_even_when_remote_is_empty(self, config, local_path):
        local_path.parent.mkdir(parents=True)
        local_path.write_bytes(b"ABC")
        store = MemoryStore({REMOTE_PATH: b""})

        result, _ = await self._reconcile(config, store)
        assert result.outcome is SyncOutcome.PULLED
        assert local_path.read_bytes() == b""

    @pytest.mark.anyio
    async def test_nothing_anywhere_creates_empty_local(self, config, local_path):
        store = MemoryStore()
        result, state = await self._reconcile(config, store)

        assert result.outcome is SyncOutcome.CREATED_EMPTY_LOCAL
        assert local_path.exists()
        assert local_path.read_bytes() == b""
        assert store.read(REMOTE_PATH) is None
        assert store.writes() == []
        assert state.tracker.version is None

    @pytest.mark.anyio
    async def test_empty_local_is_not_pushed(self, config, local_path):
        local_path.parent.mkdir(parents=True)
        local_path.write_bytes(b"")
        store = MemoryStore()

        result, _ = await self._reconcile(config, store)
        assert result.outcome is SyncOutcome.LOCAL_EMPTY
        assert store.writes() == []
        assert store.read(REMOTE_PATH) is None

    @pytest.mark.anyio
    async def test_seed_from_local(self, config, local_path):
        local_path.parent.mkdir(parents=True)
        local_path.write_bytes(b"ABC")
        store = MemoryStore()

        result, state = await self._reconcile(config, store)

        assert result.outcome is SyncOutcome.SEEDED
        assert result.version is not None
        assert state.tracker.version == result.version
        assert [e.operation for e in store.writes()] == ["put_content"]
        assert store.read(REMOTE_PATH) == b"ABC"
        assert local_path.read_bytes() == b"ABC"
        assert store.commit_messages()[0] == "Initialize data/app.db from local"
        assert not state.dirty

    @pytest.mark.anyio
    async def test_seed_configuration_error_is_fatal(self, config, local_path):
        local_path.parent.mkdir(parents=True)
        local_path.write_bytes(b"ABC")
        store = FlakyStore()
        store.fail("put_content", ConfigurationError("branch not found"))

        with pytest.raises(ConfigurationError):
            await self._reconcile(config, store)

    @pytest.mark.anyio
    async def test_seed_not_found_becomes_configuration_error(self, config, local_path):
        local_path.parent.mkdir(parents=True)
        local_path.write_bytes(b"ABC")
        store = FlakyStore()
        store.fail("put_content", TransientRemoteError("flaky"))
        store.fail("create_blob", RemoteStoreError("Not Found", status=404))

        with pytest.raises(ConfigurationError):
            await self._reconcile(config, store)

    @pytest.mark.anyio
    async def test_seed_transient_failure_is_deferred(self, config, local_path):
        local_path.parent.mkdir(parents=True)
        local_path.write_bytes(b"ABC")
        store = FlakyStore()
        store.fail("put_content", TransientRemoteError("flaky"))
        store.fail("create_blob", TransientRemoteError("still flaky"))

        result, state = await self._reconcile(config, store)
        assert result.outcome is SyncOutcome.SEED_DEFERRED
        assert state.dirty
        assert store.read(REMOTE_PATH) is None

    @pytest.mark.anyio
    async def test_remote_read_failure_propagates(self, config, local_path):
        store = FlakyStore()
        store.fail("get_content", TransientRemoteError("service unavailable", status=503))

        with pytest.raises(TransientRemoteError):
            await self._reconcile(config, store)
        assert not local_path.exists()


class _Recorder:
    """Flush function for scheduler tests; clears the dirty flag like a real push."""

    def __init__(self, state, delay=0.0, error=None):
        self.state = state
        self.delay = delay
        self.error = error
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, force):
        generation = self.state.snapshot()
        self.calls.append(force)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await anyio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            self.state.mark_clean(generation)
        finally:
            self.active -= 1


async def _wait_for(predicate, timeout=2.0):
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.01)


class TestFlushScheduler:
    @pytest.mark.anyio
    async def test_debounce_coalesces_signals(self):
        state = SyncState()
        recorder = _Recorder(state)
        async with FlushScheduler(recorder, state, debounce_delay=0.05, periodic_interval=30) as scheduler:
            for _ in range(5):
                scheduler.mark_dirty()
            assert scheduler.phase is SchedulerState.PENDING_FLUSH
            await _wait_for(lambda: recorder.calls)
            await anyio.sleep(0.15)
            assert recorder.calls == [False]
            assert scheduler.phase is SchedulerState.IDLE
            assert not state.dirty

    @pytest.mark.anyio
    async def test_flush_now_skips_debounce(self):
        state = SyncState()
        recorder = _Recorder(state)
        async with FlushScheduler(recorder, state, debounce_delay=10, periodic_interval=30) as scheduler:
            scheduler.mark_dirty()
            with anyio.fail_after(1):
                await scheduler.flush_now()
            assert recorder.calls == [False]
            assert scheduler.phase is SchedulerState.IDLE
        assert recorder.calls == [False]

    @pytest.mark.anyio
    async def test_flush_now_without_start(self):
        state = SyncState()
        recorder = _Recorder(state)
        scheduler = FlushScheduler(recorder, state)
        scheduler.mark_dirty()
        assert scheduler.phase is SchedulerState.IDLE
        await scheduler.flush_now(force=True)
        assert recorder.calls == [True]

    @pytest.mark.anyio
    async def test_start_in_caller_task_group(self):
        state = SyncState()
        recorder = _Recorder(state)
        scheduler = FlushScheduler(recorder, state, debounce_delay=0.02, periodic_interval=30)
        async with anyio.create_task_group() as tg:
            await scheduler.start(tg)
            assert scheduler.is_running
            await scheduler.start(tg)
            scheduler.mark_dirty()
            await _wait_for(lambda: recorder.calls)
            await scheduler.stop()
            assert not scheduler.is_running
        assert recorder.calls == [False]

    @pytest.mark.anyio
    async def test_periodic_tick_flushes_dirty_state(self):
        state = SyncState()
        recorder = _Recorder(state)
        async with FlushScheduler(recorder, state, debounce_delay=10, periodic_interval=0.05):
            state.mark_dirty()
            await _wait_for(lambda: recorder.calls)
            assert not state.dirty

    @pytest.mark.anyio
    async def test_periodic_tick_ignores_clean_state(self):
        state = SyncState()
        recorder = _Recorder(state)
        async with FlushScheduler(recorder, state, periodic_interval=0.02):
            await anyio.sleep(0.1)
        assert recorder.calls == []

    @pytest.mark.anyio
    async def test_one_push_in_flight(self):
        state = SyncState()
        recorder = _Recorder(state, delay=0.05)
        async with FlushScheduler(recorder, state, debounce_delay=0.01, periodic_interval=0.02) as scheduler:
            async with anyio.create_task_group() as tg:
                for _ in range(3):
                    tg.start_soon(scheduler.flush_now, True)
                scheduler.mark_dirty()
            await _wait_for(lambda: not state.dirty)
        assert len(recorder.calls) >= 3
        assert recorder.max_active == 1

    @pytest.mark.anyio
    async def test_background_failure_keeps_dirty_and_is_not_raised(self):
        state = SyncState()
        recorder = _Recorder(state, error=TransientRemoteError("down"))
        async with FlushScheduler(recorder, state, debounce_delay=0.02, periodic_interval=30) as scheduler:
            scheduler.mark_dirty()
            await _wait_for(lambda: recorder.calls)
            await _wait_for(lambda: scheduler.phase is SchedulerState.IDLE)
            assert state.dirty
            assert len(recorder.calls) == 1

            recorder.error = None
            scheduler.mark_dirty()
            await _wait_for(lambda: not state.dirty)

    @pytest.mark.anyio
    async def test_flush_now_propagates_errors(self):
        state = SyncState()
        recorder = _Recorder(state, error=TransientRemoteError("down"))
        scheduler = FlushScheduler(recorder, state)
        with pytest.raises(TransientRemoteError):
            await scheduler.flush_now(force=True)
        assert scheduler.phase is SchedulerState.IDLE

    @pytest.mark.anyio
    async def test_change_during_flush_schedules_another(self):
        state = SyncState()
        recorder = _Recorder(state, delay=0.1)
        async with FlushScheduler(recorder, state, debounce_delay=0.02, periodic_interval=30) as scheduler:
            scheduler.mark_dirty()
            await _wait_for(lambda: recorder.active == 1)
            assert scheduler.phase is SchedulerState.FLUSHING
            scheduler.mark_dirty()
            await _wait_for(lambda: len(recorder.calls) == 2)
            await _wait_for(lambda: not state.dirty)

    @pytest.mark.anyio
    async def test_stop_under_deadline_flushes_pending_change(self):
        state = SyncState()
        recorder = _Recorder(state)
        scheduler = FlushScheduler(recorder, state, debounce_delay=10, periodic_interval=30)
        async with anyio.create_task_group() as tg:
            await scheduler.start(tg)
            scheduler.mark_dirty()
            with anyio.fail_after(1):
                await scheduler.stop()
            assert recorder.calls == [True]
            assert not state.dirty
            assert not scheduler.is_running

    @pytest.mark.anyio
    async def test_stop_inside_context_under_move_on_after(self):
        state = SyncState()
        recorder = _Recorder(state)
        async with FlushScheduler(recorder, state, debounce_delay=10, periodic_interval=30) as scheduler:
            scheduler.mark_dirty()
            with anyio.move_on_after(1) as scope:
                await scheduler.stop()
            assert not scope.cancelled_caught
        assert recorder.calls == [True]
        assert not state.dirty

    @pytest.mark.anyio
    async def test_stop_without_start_flushes_once(self):
        state = SyncState()
        recorder = _Recorder(state)
        scheduler = FlushScheduler(recorder, state)
        scheduler.mark_dirty()
        with anyio.fail_after(1):
            await scheduler.stop()
        assert recorder.calls == [True]
        assert not state.dirty

    @pytest.mark.anyio
    async def test_stop_when_clean_does_not_flush(self):
        state = SyncState()
        recorder = _Recorder(state)
        async with FlushScheduler(recorder, state):
            pass
        assert recorder.calls == []

    @pytest.mark.anyio
    async def test_stop_waits_for_in_flight_push(self):
        state = SyncState()
        recorder = _Recorder(state, delay=0.1)
        async with anyio.create_task_group() as tg:
            scheduler = FlushScheduler(recorder, state, debounce_delay=0.01, periodic_interval=30)
            await scheduler.start(tg)
            scheduler.mark_dirty()
            await _wait_for(lambda: recorder.active == 1)
            await scheduler.stop()
            assert recorder.active == 0
        assert recorder.calls == [False]
        assert not state.dirty

    @pytest.mark.anyio
    async def test_final_flush_is_bounded(self):
        state = SyncState()
        recorder = _Recorder(state, delay=10)
        scheduler = FlushScheduler(recorder, state, shutdown_timeout=0.1)
        async with anyio.create_task_group() as tg:
            await scheduler.start(tg)
            state.mark_dirty()
            with anyio.fail_after(2):
                await scheduler.stop()
        assert recorder.calls == [True]
        assert state.dirty

    @pytest.mark.anyio
    async def test_dirty_before_start_is_flushed_after_start(self):
        state = SyncState()
        state.mark_dirty()
        recorder = _Recorder(state)
        async with FlushScheduler(recorder, state, debounce_delay=0.02, periodic_interval=30):
            await _wait_for(lambda: recorder.calls)
        assert recorder.calls == [False]
