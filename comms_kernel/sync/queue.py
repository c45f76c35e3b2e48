"""
Workspace State Sync Queue — debounced, coalescing write-behind for UI state.

Persistence is best effort. Writes may be dropped silently:
- state that cannot be JSON-serialised or exceeds max_state_bytes is refused
  at enqueue (enqueue returns False);
- when max_pending_keys keys are already waiting, the oldest pending key is
  evicted and its write is lost;
- store failures during delivery are logged and swallowed, never retried.
Callers must not rely on a save having landed. A missing or unavailable store
turns enqueue, load, clear and list_snapshots into no-ops; a failing store
makes reads return their empty value.

Behavioral Contract:
- At most one pending entry per namespace:scope_key. Re-enqueueing a key
  replaces its payload and restarts its debounce timer; the key keeps its
  original insertion slot.
- The enqueued state is deep-cloned through a JSON round trip, so later
  mutation by the caller does not leak into the queued write.
- flush_all() cancels every timer and delivers all pending entries
  immediately, in insertion order.
- A timer that fires after its entry was replaced, evicted or flushed does
  nothing.
- clear() cancels the pending write for its key, then deletes the stored
  snapshot.
"""

import asyncio
import inspect
import json
import logging
import threading
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from comms_kernel.clock import clamp, now_ms
from comms_kernel.models.config import SyncQueueConfig
from comms_kernel.models.workspace import (
    WorkspaceStateQueueEntry,
    WorkspaceStateSnapshot,
    WorkspaceStateSummary,
)
from comms_kernel.sync.scheduler import Scheduler, ThreadingScheduler, TimerHandle
from comms_kernel.sync.store import (
    DEFAULT_LIST_LIMIT,
    SnapshotStore,
    normalize_namespace,
    normalize_schema_version,
    normalize_scope_key,
    serialize_state,
)

logger = logging.getLogger(__name__)


async def _resolve(result: Awaitable) -> Any:
    return await result


async def _await_quietly(result: Awaitable, key: str) -> None:
    try:
        await result
    except Exception as e:
        logger.warning("Workspace state save failed for %s: %s", key, e)


class WorkspaceStateSyncQueue:
    """Per-key debounced writer in front of a SnapshotStore."""

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        config: Optional[SyncQueueConfig] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.config = config or SyncQueueConfig()
        self.scheduler = scheduler or ThreadingScheduler()
        self._clock = clock or now_ms
        self._lock = threading.RLock()
        self._pending: "OrderedDict[str, WorkspaceStateQueueEntry]" = OrderedDict()
        self._timers: Dict[str, TimerHandle] = {}
        self._generation: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def store_available(self) -> bool:
        return self.store is not None and bool(getattr(self.store, "available", True))

    def pending_keys(self) -> List[str]:
        with self._lock:
            return list(self._pending.keys())

    def pending_entry(self, namespace: str, scope_key: str) -> Optional[WorkspaceStateQueueEntry]:
        key = f"{normalize_namespace(namespace)}:{normalize_scope_key(scope_key)}"
        with self._lock:
            entry = self._pending.get(key)
            return entry.model_copy(deep=True) if entry else None

    def _clamp_debounce(self, debounce_ms: Optional[float]) -> int:
        cfg = self.config
        try:
            value = float(debounce_ms) if debounce_ms is not None else float(cfg.default_debounce_ms)
        except (TypeError, ValueError):
            value = float(cfg.default_debounce_ms)
        if value != value:  # NaN
            value = float(cfg.default_debounce_ms)
        return int(clamp(value, cfg.min_debounce_ms, cfg.max_debounce_ms))

    def enqueue(
        self,
        namespace: str,
        scope_key: str,
        schema_version: int,
        state: Any,
        debounce_ms: Optional[float] = None,
    ) -> bool:
        """Queue a save. Returns False when the write was refused."""
        if not self.store_available:
            return False

        try:
            state_json, size = serialize_state(state)
        except (TypeError, ValueError) as e:
            logger.debug("Dropping unserialisable workspace state for %s:%s: %s", namespace, scope_key, e)
            return False
        if size > self.config.max_state_bytes:
            logger.debug("Dropping oversized workspace state (%d bytes) for %s:%s", size, namespace, scope_key)
            return False

        entry = WorkspaceStateQueueEntry(
            namespace=normalize_namespace(namespace),
            scope_key=normalize_scope_key(scope_key),
            schema_version=normalize_schema_version(schema_version),
            state=json.loads(state_json),
            debounce_ms=self._clamp_debounce(debounce_ms),
            enqueued_at_ms=self._clock(),
        )
        key = entry.key

        with self._lock:
            if key in self._pending:
                self._cancel_timer(key)
            else:
                while len(self._pending) >= self.config.max_pending_keys:
                    self._evict_oldest()
            # Assigning an existing OrderedDict key keeps its position.
            self._pending[key] = entry
            generation = self._generation.get(key, 0) + 1
            self._generation[key] = generation
            self._timers[key] = self.scheduler.call_later(
                entry.debounce_ms / 1000.0,
                lambda: self._fire(key, generation),
            )
        return True

    def _cancel_timer(self, key: str) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _drop_pending(self, key: str) -> bool:
        entry = self._pending.pop(key, None)
        self._cancel_timer(key)
        self._generation.pop(key, None)
        return entry is not None

    def _evict_oldest(self) -> None:
        key = next(iter(self._pending))
        self._drop_pending(key)
        logger.info("Workspace state queue full; dropped pending write for %s", key)

    def _fire(self, key: str, generation: int) -> None:
        with self._lock:
            if self._generation.get(key) != generation or key not in self._pending:
                return
            entry = self._pending.pop(key)
            self._timers.pop(key, None)
            self._generation.pop(key, None)
        self._deliver(entry)

    def flush_all(self) -> int:
        """Deliver every pending entry now. Returns how many were delivered."""
        with self._lock:
            entries = list(self._pending.values())
            for key in list(self._timers):
                self._cancel_timer(key)
            self._pending.clear()
            self._generation.clear()
        for entry in entries:
            self._deliver(entry)
        return len(entries)

    def cancel_all(self) -> int:
        """Drop every pending entry without delivering it."""
        with self._lock:
            dropped = len(self._pending)
            for key in list(self._timers):
                self._cancel_timer(key)
            self._pending.clear()
            self._generation.clear()
        return dropped

    def _deliver(self, entry: WorkspaceStateQueueEntry) -> None:
        """Hand one entry to the store. Failures are logged, never raised."""
        store = self.store
        if store is None:
            return
        try:
            result = store.save(entry.namespace, entry.scope_key, entry.schema_version, entry.state)
        except Exception as e:
            logger.warning("Workspace state save failed for %s: %s", entry.key, e)
            return
        if inspect.isawaitable(result):
            self._drain(result, entry.key)

    def _drain(self, result: Awaitable, key: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(_await_quietly(result, key))
            return
        task = loop.create_task(_await_quietly(result, key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _call_store(self, operation: str, key: str, call: Callable[[], Any], default: Any) -> Any:
        """
        Run one synchronous-looking store call. Failures are logged and give
        default. An awaitable result is run to completion when no event loop
        is running; inside a running loop it cannot be waited on here, so it
        is discarded and default is returned.
        """
        try:
            result = call()
            if inspect.isawaitable(result):
                try:
                    asyncio.get_running_loop()
                except RuntimeError:
                    return asyncio.run(_resolve(result))
                if inspect.iscoroutine(result):
                    result.close()
                logger.warning("Workspace state %s for %s needs an awaiting caller; skipped", operation, key)
                return default
            return result
        except Exception as e:
            logger.warning("Workspace state %s failed for %s: %s", operation, key, e)
            return default

    def load(self, namespace: str, scope_key: str) -> Optional[WorkspaceStateSnapshot]:
        """Read the persisted snapshot; None when nothing is stored, no store is set or the read failed."""
        if not self.store_available:
            return None
        ns, scope = normalize_namespace(namespace), normalize_scope_key(scope_key)
        return self._call_store("load", f"{ns}:{scope}", lambda: self.store.load(ns, scope), None)

    def clear(self, namespace: str, scope_key: str) -> int:
        """
        Drop any pending write for the key and delete its persisted snapshot.
        Returns how many stored rows were removed.
        """
        ns, scope = normalize_namespace(namespace), normalize_scope_key(scope_key)
        key = f"{ns}:{scope}"
        with self._lock:
            if self._drop_pending(key):
                logger.debug("Cancelled pending workspace state write for %s", key)
        if not self.store_available:
            return 0
        return self._call_store("clear", key, lambda: self.store.clear(ns, scope), 0) or 0

    def list_snapshots(
        self, namespace: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[WorkspaceStateSummary]:
        if not self.store_available:
            return []
        label = normalize_namespace(namespace) if namespace is not None else "*"
        return self._call_store(
            "list", label, lambda: self.store.list_snapshots(namespace, limit), [],
        ) or []


_default_queue = WorkspaceStateSyncQueue()


def get_workspace_state_queue() -> WorkspaceStateSyncQueue:
    return _default_queue


def configure_workspace_state_queue(
    store: Optional[SnapshotStore] = None,
    config: Optional[SyncQueueConfig] = None,
    scheduler: Optional[Scheduler] = None,
    clock: Optional[Callable[[], int]] = None,
) -> WorkspaceStateSyncQueue:
    """Replace the process default queue. Pending writes on the old queue are dropped."""
    global _default_queue
    _default_queue.cancel_all()
    _default_queue = WorkspaceStateSyncQueue(store=store, config=config, scheduler=scheduler, clock=clock)
    return _default_queue


def enqueue_workspace_state_save(
    namespace: str,
    scope_key: str,
    schema_version: int,
    state: Any,
    debounce_ms: Optional[float] = None,
) -> bool:
    return _default_queue.enqueue(namespace, scope_key, schema_version, state, debounce_ms)


def flush_all_workspace_state_saves() -> int:
    return _default_queue.flush_all()


def load_workspace_state_snapshot(namespace: str, scope_key: str) -> Optional[WorkspaceStateSnapshot]:
    return _default_queue.load(namespace, scope_key)


def clear_workspace_state_snapshot(namespace: str, scope_key: str) -> int:
    return _default_queue.clear(namespace, scope_key)


def list_workspace_state_snapshots(
    namespace: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT,
) -> List[WorkspaceStateSummary]:
    return _default_queue.list_snapshots(namespace, limit)
