"""
Workspace State Store — latest persisted snapshot per namespace and scope.

Behavioral Contract:
- One row per namespace:scope_key. A save replaces the row unless the stored
  snapshot is newer than the incoming one (newer persisted_at wins).
- Namespace and scope keys are normalised the same way the sync queue
  normalises them, so a queued write and a later load address the same row.
- State larger than max_state_bytes (serialised JSON, UTF-8) is rejected with
  ValueError. Unserialisable state is rejected the same way.
- load() returns None when nothing has been persisted for the key.
- clear() deletes the row for one key and returns how many rows went.
- list_snapshots() summarises the newest rows first, optionally within one
  namespace, at most 60 at a time (25 by default).
- persisted_at is stored in UTC; naive datetimes are taken as UTC.
"""

import json
import re
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from comms_kernel.models.workspace import WorkspaceStateSnapshot, WorkspaceStateSummary

MAX_STORED_STATE_BYTES = 240_000
MAX_NAMESPACE_LENGTH = 80
MAX_SCOPE_LENGTH = 140
DEFAULT_NAMESPACE = "workspace_state"
DEFAULT_SCOPE = "default"
DEFAULT_LIST_LIMIT = 25
MAX_LIST_LIMIT = 60

_NAMESPACE_INVALID = re.compile(r"[^a-z0-9._:-]+")
_SCOPE_INVALID = re.compile(r"[^a-zA-Z0-9._:-]+")


def normalize_namespace(value: Any) -> str:
    token = str(value or "").strip().lower()
    token = _NAMESPACE_INVALID.sub("_", token)[:MAX_NAMESPACE_LENGTH]
    return token or DEFAULT_NAMESPACE


def normalize_scope_key(value: Any) -> str:
    token = str(value or "").strip() or DEFAULT_SCOPE
    token = _SCOPE_INVALID.sub("_", token)[:MAX_SCOPE_LENGTH]
    return token or DEFAULT_SCOPE


def normalize_schema_version(value: Any) -> int:
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        parsed = 1
    return max(1, min(parsed, 99))


def clamp_list_limit(value: Any) -> int:
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        parsed = DEFAULT_LIST_LIMIT
    return max(1, min(parsed, MAX_LIST_LIMIT))


def to_utc(value: Optional[datetime]) -> datetime:
    """Wall clock when value is None; naive datetimes are taken as UTC."""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def summarize(snapshot: WorkspaceStateSnapshot) -> WorkspaceStateSummary:
    return WorkspaceStateSummary(
        namespace=snapshot.namespace,
        scope_key=snapshot.scope_key,
        schema_version=snapshot.schema_version,
        persisted_at=snapshot.persisted_at,
        bytes=snapshot.bytes,
    )


def serialize_state(state: Any) -> Tuple[str, int]:
    """JSON-encode state (None becomes {}) and measure it in UTF-8 bytes."""
    state_json = json.dumps({} if state is None else state, allow_nan=False)
    return state_json, len(state_json.encode("utf-8"))


class SnapshotStore(Protocol):
    """Persistence backend for the workspace state queue."""

    @property
    def available(self) -> bool: ...

    def save(self, namespace: str, scope_key: str, schema_version: int, state: Any) -> WorkspaceStateSnapshot: ...

    def load(self, namespace: str, scope_key: str) -> Optional[WorkspaceStateSnapshot]: ...

    def clear(self, namespace: str, scope_key: str) -> int: ...

    def list_snapshots(
        self, namespace: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[WorkspaceStateSummary]: ...


def _encode_for_save(state: Any, max_state_bytes: int) -> Tuple[str, int]:
    try:
        state_json, size = serialize_state(state)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Workspace state is not JSON serialisable: {e}") from e
    if size > max_state_bytes:
        raise ValueError(f"Workspace state is {size} bytes; limit is {max_state_bytes}")
    return state_json, size


class InMemorySnapshotStore:
    """Process-local store. Used by tests and as the API default."""

    def __init__(self, max_state_bytes: int = MAX_STORED_STATE_BYTES):
        self.max_state_bytes = max_state_bytes
        self._rows: Dict[str, WorkspaceStateSnapshot] = {}
        self._lock = threading.Lock()
        self.save_count = 0

    @property
    def available(self) -> bool:
        return True

    def save(
        self,
        namespace: str,
        scope_key: str,
        schema_version: int,
        state: Any,
        persisted_at: Optional[datetime] = None,
    ) -> WorkspaceStateSnapshot:
        state_json, size = _encode_for_save(state, self.max_state_bytes)
        snapshot = WorkspaceStateSnapshot(
            namespace=normalize_namespace(namespace),
            scope_key=normalize_scope_key(scope_key),
            schema_version=normalize_schema_version(schema_version),
            state=json.loads(state_json),
            persisted_at=to_utc(persisted_at),
            bytes=size,
        )
        key = f"{snapshot.namespace}:{snapshot.scope_key}"
        with self._lock:
            self.save_count += 1
            existing = self._rows.get(key)
            if existing is not None and existing.persisted_at > snapshot.persisted_at:
                return existing
            self._rows[key] = snapshot
        return snapshot

    def load(self, namespace: str, scope_key: str) -> Optional[WorkspaceStateSnapshot]:
        key = f"{normalize_namespace(namespace)}:{normalize_scope_key(scope_key)}"
        with self._lock:
            snapshot = self._rows.get(key)
        return snapshot.model_copy(deep=True) if snapshot else None

    def clear(self, namespace: str, scope_key: str) -> int:
        key = f"{normalize_namespace(namespace)}:{normalize_scope_key(scope_key)}"
        with self._lock:
            return 1 if self._rows.pop(key, None) is not None else 0

    def list_snapshots(
        self, namespace: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[WorkspaceStateSummary]:
        """Newest first; ties ordered by namespace then scope key."""
        wanted = normalize_namespace(namespace) if namespace is not None else None
        with self._lock:
            rows = [s for s in self._rows.values() if wanted is None or s.namespace == wanted]
        rows.sort(key=lambda s: (s.namespace, s.scope_key))
        rows.sort(key=lambda s: s.persisted_at, reverse=True)
        return [summarize(s) for s in rows[:clamp_list_limit(limit)]]


class SqliteSnapshotStore:
    """
    SQLite-backed snapshot store.
    Prototype: SQLite. Production: a shared database behind the same protocol.
    """

    def __init__(self, db_path: str = ":memory:", max_state_bytes: int = MAX_STORED_STATE_BYTES):
        self.db_path = db_path
        self.max_state_bytes = max_state_bytes
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the workspace_state table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS workspace_state (
                namespace TEXT NOT NULL,
                scope_key TEXT NOT NULL,
                schema_version INTEGER NOT NULL,
                state_json TEXT NOT NULL,
                bytes INTEGER NOT NULL,
                persisted_at TEXT NOT NULL,
                PRIMARY KEY (namespace, scope_key)
            )
        """)
        self._conn.commit()

    @property
    def available(self) -> bool:
        return not self._closed

    def save(
        self,
        namespace: str,
        scope_key: str,
        schema_version: int,
        state: Any,
        persisted_at: Optional[datetime] = None,
    ) -> WorkspaceStateSnapshot:
        state_json, size = _encode_for_save(state, self.max_state_bytes)
        persisted = to_utc(persisted_at)
        ns = normalize_namespace(namespace)
        scope = normalize_scope_key(scope_key)
        version = normalize_schema_version(schema_version)

        with self._lock:
            existing = self._fetch(ns, scope)
            if existing is not None and existing.persisted_at > persisted:
                return existing
            self._conn.execute(
                """
                INSERT OR REPLACE INTO workspace_state (
                    namespace, scope_key, schema_version, state_json, bytes, persisted_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (ns, scope, version, state_json, size, persisted.isoformat(timespec="microseconds")),
            )
            self._conn.commit()
        return WorkspaceStateSnapshot(
            namespace=ns,
            scope_key=scope,
            schema_version=version,
            state=json.loads(state_json),
            persisted_at=persisted,
            bytes=size,
        )

    def _fetch(self, namespace: str, scope_key: str) -> Optional[WorkspaceStateSnapshot]:
        row = self._conn.execute(
            "SELECT * FROM workspace_state WHERE namespace = ? AND scope_key = ?",
            (namespace, scope_key),
        ).fetchone()
        return self._deserialize(row) if row else None

    def _deserialize(self, row: sqlite3.Row) -> WorkspaceStateSnapshot:
        """Deserialize a row back into a WorkspaceStateSnapshot."""
        return WorkspaceStateSnapshot(
            namespace=row["namespace"],
            scope_key=row["scope_key"],
            schema_version=row["schema_version"],
            state=json.loads(row["state_json"]),
            persisted_at=datetime.fromisoformat(row["persisted_at"]),
            bytes=row["bytes"],
        )

    def load(self, namespace: str, scope_key: str) -> Optional[WorkspaceStateSnapshot]:
        with self._lock:
            return self._fetch(normalize_namespace(namespace), normalize_scope_key(scope_key))

    def clear(self, namespace: str, scope_key: str) -> int:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM workspace_state WHERE namespace = ? AND scope_key = ?",
                (normalize_namespace(namespace), normalize_scope_key(scope_key)),
            )
            self._conn.commit()
        return cursor.rowcount

    def list_snapshots(
        self, namespace: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[WorkspaceStateSummary]:
        query = "SELECT * FROM workspace_state"
        params: list = []
        if namespace is not None:
            query += " WHERE namespace = ?"
            params.append(normalize_namespace(namespace))
        query += " ORDER BY persisted_at DESC, namespace, scope_key LIMIT ?"
        params.append(clamp_list_limit(limit))
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [summarize(self._deserialize(row)) for row in rows]

    def count(self) -> int:
        """Total number of persisted snapshots."""
        row = self._conn.execute("SELECT COUNT(*) as cnt FROM workspace_state").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._closed = True
        self._conn.close()
