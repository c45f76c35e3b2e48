"""Tests for the workspace state sync queue."""

import asyncio
import threading

import pytest

from comms_kernel.models.config import SyncQueueConfig
from comms_kernel.sync import queue as queue_module
from comms_kernel.sync.queue import (
    WorkspaceStateSyncQueue,
    clear_workspace_state_snapshot,
    configure_workspace_state_queue,
    enqueue_workspace_state_save,
    flush_all_workspace_state_saves,
    list_workspace_state_snapshots,
    load_workspace_state_snapshot,
)
from comms_kernel.sync.scheduler import AsyncioScheduler, ThreadingScheduler
from comms_kernel.sync.store import InMemorySnapshotStore


class RecordingStore(InMemorySnapshotStore):
    def __init__(self):
        super().__init__()
        self.saved_keys = []

    def save(self, namespace, scope_key, schema_version, state, persisted_at=None):
        self.saved_keys.append(f"{namespace}:{scope_key}")
        return super().save(namespace, scope_key, schema_version, state, persisted_at)


class FailingStore(InMemorySnapshotStore):
    def save(self, namespace, scope_key, schema_version, state, persisted_at=None):
        raise RuntimeError("remote unavailable")


class AsyncStore(InMemorySnapshotStore):
    async def _save_async(self, namespace, scope_key, schema_version, state):
        return InMemorySnapshotStore.save(self, namespace, scope_key, schema_version, state)

    def save(self, namespace, scope_key, schema_version, state, persisted_at=None):
        return self._save_async(namespace, scope_key, schema_version, state)


class FailingReadStore(InMemorySnapshotStore):
    def load(self, namespace, scope_key):
        raise RuntimeError("remote unavailable")

    def clear(self, namespace, scope_key):
        raise RuntimeError("remote unavailable")

    def list_snapshots(self, namespace=None, limit=25):
        raise RuntimeError("remote unavailable")


class AsyncReadStore(InMemorySnapshotStore):
    async def _run(self, method, *args):
        return method(self, *args)

    def load(self, namespace, scope_key):
        return self._run(InMemorySnapshotStore.load, namespace, scope_key)

    def clear(self, namespace, scope_key):
        return self._run(InMemorySnapshotStore.clear, namespace, scope_key)

    def list_snapshots(self, namespace=None, limit=25):
        return self._run(InMemorySnapshotStore.list_snapshots, namespace, limit)


class UnavailableStore(InMemorySnapshotStore):
    @property
    def available(self):
        return False


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def sync_queue(store, fake_scheduler):
    return WorkspaceStateSyncQueue(store=store, scheduler=fake_scheduler, clock=lambda: 1000)


class TestDebounce:
    def test_write_lands_after_debounce(self, sync_queue, store, fake_scheduler):
        assert sync_queue.enqueue("map", "op-1", 1, {"zoom": 3}) is True
        fake_scheduler.advance(0.5)
        assert store.load("map", "op-1") is None
        fake_scheduler.advance(0.5)
        assert store.load("map", "op-1").state == {"zoom": 3}
        assert sync_queue.pending_keys() == []

    def test_coalesces_to_latest_payload(self, sync_queue, store, fake_scheduler):
        sync_queue.enqueue("map", "op-1", 1, {"zoom": 1})
        sync_queue.enqueue("map", "op-1", 1, {"zoom": 2})
        sync_queue.enqueue("map", "op-1", 1, {"zoom": 3})
        fake_scheduler.advance(1)
        assert store.saved_keys == ["map:op-1"]
        assert store.load("map", "op-1").state == {"zoom": 3}

    def test_reenqueue_restarts_timer(self, sync_queue, store, fake_scheduler):
        sync_queue.enqueue("map", "op-1", 1, {"v": 1}, debounce_ms=900)
        fake_scheduler.advance(0.6)
        sync_queue.enqueue("map", "op-1", 1, {"v": 2}, debounce_ms=900)
        fake_scheduler.advance(0.6)
        assert store.saved_keys == []
        fake_scheduler.advance(0.4)
        assert store.saved_keys == ["map:op-1"]
        assert len(fake_scheduler.live_timers) == 0

    def test_one_timer_per_key(self, sync_queue, fake_scheduler):
        for i in range(5):
            sync_queue.enqueue("map", "op-1", 1, {"v": i})
        sync_queue.enqueue("map", "op-2", 1, {"v": 0})
        assert len(fake_scheduler.live_timers) == 2

    def test_reenqueue_keeps_insertion_slot(self, sync_queue):
        sync_queue.enqueue("map", "a", 1, {})
        sync_queue.enqueue("map", "b", 1, {})
        sync_queue.enqueue("map", "a", 1, {"changed": True})
        assert sync_queue.pending_keys() == ["map:a", "map:b"]

    @pytest.mark.parametrize("requested,expected", [(None, 900), (10, 200), (99_999, 5000), (1500, 1500)])
    def test_debounce_is_clamped(self, sync_queue, requested, expected):
        sync_queue.enqueue("map", "k", 1, {}, debounce_ms=requested)
        assert sync_queue.pending_entry("map", "k").debounce_ms == expected


class TestRefusals:
    def test_oversized_state_is_dropped(self, store, fake_scheduler):
        q = WorkspaceStateSyncQueue(store=store, config=SyncQueueConfig(max_state_bytes=100), scheduler=fake_scheduler)
        assert q.enqueue("map", "k", 1, {"blob": "x" * 200}) is False
        assert q.pending_keys() == []

    def test_unserialisable_state_is_dropped(self, sync_queue):
        assert sync_queue.enqueue("map", "k", 1, {"handle": object()}) is False
        assert sync_queue.enqueue("map", "k", 1, {"value": float("nan")}) is False
        assert sync_queue.pending_keys() == []

    def test_no_store_is_a_noop(self, fake_scheduler):
        q = WorkspaceStateSyncQueue(scheduler=fake_scheduler)
        assert q.enqueue("map", "k", 1, {}) is False
        assert q.load("map", "k") is None
        assert fake_scheduler.timers == []

    def test_unavailable_store_is_a_noop(self, fake_scheduler):
        q = WorkspaceStateSyncQueue(store=UnavailableStore(), scheduler=fake_scheduler)
        assert q.enqueue("map", "k", 1, {}) is False
        assert q.load("map", "k") is None


class TestEviction:
    def test_oldest_key_evicted_when_full(self, sync_queue, store, fake_scheduler):
        for i in range(50):
            sync_queue.enqueue("map", f"scope-{i}", 1, {"i": i})
        keys = sync_queue.pending_keys()
        assert len(keys) == 48
        assert "map:scope-0" not in keys
        assert "map:scope-1" not in keys
        assert keys[0] == "map:scope-2"

        fake_scheduler.advance(5)
        assert len(store.saved_keys) == 48
        assert store.load("map", "scope-0") is None

    def test_pending_never_exceeds_limit(self, store, fake_scheduler):
        q = WorkspaceStateSyncQueue(
            store=store, config=SyncQueueConfig(max_pending_keys=3), scheduler=fake_scheduler,
        )
        for i in range(10):
            q.enqueue("ns", str(i % 5), 1, {"i": i})
            assert len(q.pending_keys()) <= 3


class TestFlush:
    def test_flush_delivers_in_insertion_order(self, sync_queue, store, fake_scheduler):
        for scope in ("c", "a", "b"):
            sync_queue.enqueue("map", scope, 1, {"scope": scope})
        assert sync_queue.flush_all() == 3
        assert store.saved_keys == ["map:c", "map:a", "map:b"]
        assert sync_queue.pending_keys() == []
        fake_scheduler.advance(10)
        assert len(store.saved_keys) == 3

    def test_flush_empty_queue(self, sync_queue):
        assert sync_queue.flush_all() == 0

    def test_store_failures_are_swallowed(self, fake_scheduler):
        q = WorkspaceStateSyncQueue(store=FailingStore(), scheduler=fake_scheduler)
        q.enqueue("map", "k", 1, {"a": 1})
        assert q.flush_all() == 1
        q.enqueue("map", "k", 1, {"a": 2})
        fake_scheduler.advance(1)

    def test_async_store_without_running_loop(self, fake_scheduler):
        store = AsyncStore()
        q = WorkspaceStateSyncQueue(store=store, scheduler=fake_scheduler)
        q.enqueue("map", "k", 1, {"a": 1})
        q.flush_all()
        assert InMemorySnapshotStore.load(store, "map", "k").state == {"a": 1}

    def test_cancel_all_drops_pending(self, sync_queue, store, fake_scheduler):
        sync_queue.enqueue("map", "k", 1, {})
        assert sync_queue.cancel_all() == 1
        fake_scheduler.advance(10)
        assert store.saved_keys == []


class TestNormalization:
    def test_keys_and_schema_version(self, sync_queue):
        sync_queue.enqueue("Tactical Map!!", "op 7/alpha", 500, {})
        entry = sync_queue.pending_entry("tactical_map_", "op_7_alpha")
        assert entry is not None
        assert entry.namespace == "tactical_map_"
        assert entry.scope_key == "op_7_alpha"
        assert entry.schema_version == 99
        assert entry.enqueued_at_ms == 1000

    def test_defaults(self, sync_queue):
        sync_queue.enqueue("", "", 0, None)
        entry = sync_queue.pending_entry("workspace_state", "default")
        assert entry.schema_version == 1
        assert entry.state == {}

    def test_state_is_cloned(self, sync_queue, store):
        state = {"layers": ["a"]}
        sync_queue.enqueue("map", "k", 1, state)
        state["layers"].append("b")
        sync_queue.flush_all()
        assert store.load("map", "k").state == {"layers": ["a"]}

    def test_load_proxies_store(self, sync_queue):
        sync_queue.enqueue("Map", "k", 2, {"x": 1})
        sync_queue.flush_all()
        snapshot = sync_queue.load("MAP", "k")
        assert snapshot.schema_version == 2
        assert snapshot.state == {"x": 1}


class TestClearAndList:
    def test_clear_cancels_pending_write_and_deletes(self, sync_queue, store, fake_scheduler):
        sync_queue.enqueue("map", "k", 1, {"v": 1})
        sync_queue.flush_all()
        sync_queue.enqueue("map", "k", 1, {"v": 2})

        assert sync_queue.clear("MAP", "k") == 1
        assert sync_queue.pending_keys() == []
        assert fake_scheduler.live_timers == []
        fake_scheduler.advance(10)
        assert store.saved_keys == ["map:k"]
        assert store.load("map", "k") is None

    def test_clear_only_touches_its_key(self, sync_queue, store, fake_scheduler):
        sync_queue.enqueue("map", "a", 1, {})
        sync_queue.enqueue("map", "b", 1, {})
        assert sync_queue.clear("map", "a") == 0
        assert sync_queue.pending_keys() == ["map:b"]
        fake_scheduler.advance(1)
        assert store.saved_keys == ["map:b"]

    def test_list_snapshots(self, sync_queue):
        for namespace, scope in (("map", "a"), ("map", "b"), ("layout", "c")):
            sync_queue.enqueue(namespace, scope, 1, {"scope": scope})
        sync_queue.flush_all()
        assert {s.scope_key for s in sync_queue.list_snapshots()} == {"a", "b", "c"}
        assert {s.scope_key for s in sync_queue.list_snapshots("Map")} == {"a", "b"}
        assert len(sync_queue.list_snapshots(limit=1)) == 1

    def test_no_store_is_a_noop(self, fake_scheduler):
        q = WorkspaceStateSyncQueue(scheduler=fake_scheduler)
        assert q.clear("map", "k") == 0
        assert q.list_snapshots() == []


class TestStoreReads:
    def test_read_failures_give_empty_results(self, fake_scheduler):
        q = WorkspaceStateSyncQueue(store=FailingReadStore(), scheduler=fake_scheduler)
        assert q.load("map", "k") is None
        assert q.clear("map", "k") == 0
        assert q.list_snapshots() == []

    def test_async_reads_without_running_loop(self, fake_scheduler):
        store = AsyncReadStore()
        InMemorySnapshotStore.save(store, "map", "k", 3, {"a": 1})
        q = WorkspaceStateSyncQueue(store=store, scheduler=fake_scheduler)
        assert q.load("map", "k").state == {"a": 1}
        assert [s.schema_version for s in q.list_snapshots()] == [3]
        assert q.clear("map", "k") == 1
        assert q.load("map", "k") is None

    def test_async_reads_inside_running_loop_are_skipped(self, fake_scheduler):
        store = AsyncReadStore()
        InMemorySnapshotStore.save(store, "map", "k", 1, {"a": 1})
        q = WorkspaceStateSyncQueue(store=store, scheduler=fake_scheduler)

        async def scenario():
            return q.load("map", "k"), q.list_snapshots()

        assert asyncio.run(scenario()) == (None, [])

    def test_async_save_tasks_are_held_until_done(self):
        store = AsyncStore()

        async def scenario():
            q = WorkspaceStateSyncQueue(store=store, scheduler=AsyncioScheduler())
            q.enqueue("map", "k", 1, {"a": 1})
            q.flush_all()
            held = len(q._tasks)
            await asyncio.gather(*list(q._tasks))
            await asyncio.sleep(0)
            return held, len(q._tasks)

        assert asyncio.run(scenario()) == (1, 0)
        assert InMemorySnapshotStore.load(store, "map", "k").state == {"a": 1}


class TestDefaultQueue:
    def teardown_method(self):
        configure_workspace_state_queue()

    def test_module_functions_use_default_queue(self, fake_scheduler):
        store = InMemorySnapshotStore()
        configure_workspace_state_queue(store=store, scheduler=fake_scheduler)
        assert enqueue_workspace_state_save("map", "k", 1, {"a": 1}) is True
        assert flush_all_workspace_state_saves() == 1
        assert load_workspace_state_snapshot("map", "k").state == {"a": 1}
        assert [s.scope_key for s in list_workspace_state_snapshots("map")] == ["k"]
        assert clear_workspace_state_snapshot("map", "k") == 1
        assert load_workspace_state_snapshot("map", "k") is None

    def test_default_queue_without_store_is_inert(self):
        configure_workspace_state_queue()
        assert enqueue_workspace_state_save("map", "k", 1, {}) is False
        assert load_workspace_state_snapshot("map", "k") is None
        assert queue_module.get_workspace_state_queue().pending_keys() == []


def test_threading_scheduler_delivers():
    delivered = threading.Event()

    class SignallingStore(InMemorySnapshotStore):
        def save(self, *args, **kwargs):
            result = super().save(*args, **kwargs)
            delivered.set()
            return result

    store = SignallingStore()
    q = WorkspaceStateSyncQueue(store=store, scheduler=ThreadingScheduler())
    q.enqueue("map", "k", 1, {"a": 1}, debounce_ms=200)
    assert delivered.wait(timeout=5)
    assert store.load("map", "k").state == {"a": 1}


def test_asyncio_scheduler_delivers_on_running_loop():
    store = InMemorySnapshotStore()

    async def scenario():
        q = WorkspaceStateSyncQueue(store=store, scheduler=AsyncioScheduler())
        q.enqueue("map", "k", 1, {"a": 1}, debounce_ms=200)
        q.enqueue("map", "k", 1, {"a": 2}, debounce_ms=200)
        await asyncio.sleep(0.4)
        return q.pending_keys()

    assert asyncio.run(scenario()) == []
    assert store.load("map", "k").state == {"a": 2}
    assert store.save_count == 1
