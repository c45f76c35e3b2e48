"""Tests for the workspace state snapshot stores."""

from datetime import datetime, timedelta, timezone

import pytest

from comms_kernel.sync.store import (
    InMemorySnapshotStore,
    SqliteSnapshotStore,
    normalize_namespace,
    clamp_list_limit,
    normalize_schema_version,
    normalize_scope_key,
)


@pytest.fixture(params=["memory", "sqlite"])
def snapshot_store(request):
    if request.param == "memory":
        yield InMemorySnapshotStore()
    else:
        store = SqliteSnapshotStore(db_path=":memory:")
        yield store
        store.close()


class TestSnapshotStore:
    def test_save_and_load(self, snapshot_store):
        saved = snapshot_store.save("map", "op-1", 3, {"zoom": 4, "layers": ["intel"]})
        loaded = snapshot_store.load("map", "op-1")
        assert loaded.state == {"zoom": 4, "layers": ["intel"]}
        assert loaded.schema_version == 3
        assert loaded.bytes == saved.bytes > 0
        assert loaded.persisted_at.tzinfo is not None

    def test_missing_key(self, snapshot_store):
        assert snapshot_store.load("map", "nothing") is None

    def test_latest_save_replaces(self, snapshot_store):
        snapshot_store.save("map", "op-1", 1, {"v": 1})
        snapshot_store.save("map", "op-1", 1, {"v": 2})
        assert snapshot_store.load("map", "op-1").state == {"v": 2}

    def test_older_snapshot_does_not_overwrite_newer(self, snapshot_store):
        newer = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
        snapshot_store.save("map", "op-1", 1, {"v": "new"}, persisted_at=newer)
        result = snapshot_store.save("map", "op-1", 1, {"v": "old"}, persisted_at=newer - timedelta(minutes=5))
        assert result.state == {"v": "new"}
        assert snapshot_store.load("map", "op-1").state == {"v": "new"}

    def test_keys_are_normalised(self, snapshot_store):
        snapshot_store.save("Tactical Map", "op 7", 1, {"a": 1})
        loaded = snapshot_store.load("tactical_map", "op_7")
        assert loaded.namespace == "tactical_map"
        assert loaded.scope_key == "op_7"

    def test_oversized_state_rejected(self):
        store = InMemorySnapshotStore(max_state_bytes=50)
        with pytest.raises(ValueError):
            store.save("map", "k", 1, {"blob": "x" * 100})
        assert store.load("map", "k") is None

    def test_sqlite_oversized_state_rejected(self):
        store = SqliteSnapshotStore(max_state_bytes=50)
        with pytest.raises(ValueError):
            store.save("map", "k", 1, {"blob": "x" * 100})
        assert store.count() == 0

    def test_unserialisable_state_rejected(self, snapshot_store):
        with pytest.raises(ValueError):
            snapshot_store.save("map", "k", 1, {"handle": object()})

    def test_naive_persisted_at_is_utc(self, snapshot_store):
        snapshot_store.save("map", "k", 1, {"v": "new"}, persisted_at=datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc))
        older = snapshot_store.save("map", "k", 1, {"v": "old"}, persisted_at=datetime(2026, 5, 1, 11, 0))
        assert older.state == {"v": "new"}
        newest = snapshot_store.save("map", "k", 1, {"v": "newest"}, persisted_at=datetime(2026, 5, 1, 13, 0))
        assert newest.persisted_at == datetime(2026, 5, 1, 13, 0, tzinfo=timezone.utc)
        assert snapshot_store.load("map", "k").state == {"v": "newest"}

    def test_clear(self, snapshot_store):
        snapshot_store.save("map", "op-1", 1, {"v": 1})
        snapshot_store.save("map", "op-2", 1, {"v": 2})
        assert snapshot_store.clear("Map", "op-1") == 1
        assert snapshot_store.load("map", "op-1") is None
        assert snapshot_store.load("map", "op-2").state == {"v": 2}
        assert snapshot_store.clear("map", "op-1") == 0

    def test_list_newest_first(self, snapshot_store):
        base = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
        snapshot_store.save("map", "a", 1, {}, persisted_at=base)
        snapshot_store.save("map", "b", 2, {"x": 1}, persisted_at=base + timedelta(minutes=2))
        snapshot_store.save("layout", "c", 1, {}, persisted_at=base + timedelta(minutes=1))

        listed = snapshot_store.list_snapshots()
        assert [(s.namespace, s.scope_key) for s in listed] == [("map", "b"), ("layout", "c"), ("map", "a")]
        assert listed[0].schema_version == 2
        assert listed[0].bytes > 0
        assert listed[0].persisted_at == base + timedelta(minutes=2)
        assert [s.scope_key for s in snapshot_store.list_snapshots("MAP")] == ["b", "a"]
        assert [s.scope_key for s in snapshot_store.list_snapshots(limit=1)] == ["b"]
        assert snapshot_store.list_snapshots("unknown") == []

    def test_list_limit_is_clamped(self, snapshot_store):
        base = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
        for i in range(70):
            snapshot_store.save("map", f"k{i}", 1, {}, persisted_at=base + timedelta(seconds=i))
        assert len(snapshot_store.list_snapshots()) == 25
        assert len(snapshot_store.list_snapshots(limit=500)) == 60
        assert [s.scope_key for s in snapshot_store.list_snapshots(limit=0)] == ["k69"]

    def test_loaded_snapshot_is_a_copy(self):
        store = InMemorySnapshotStore()
        store.save("map", "k", 1, {"layers": ["a"]})
        store.load("map", "k").state["layers"].append("b")
        assert store.load("map", "k").state == {"layers": ["a"]}


class TestSqliteStore:
    def test_persists_across_connections(self, tmp_path):
        db_path = str(tmp_path / "workspace.db")
        store = SqliteSnapshotStore(db_path=db_path)
        store.save("map", "op-1", 2, {"zoom": 5})
        store.close()
        assert store.available is False

        reopened = SqliteSnapshotStore(db_path=db_path)
        snapshot = reopened.load("map", "op-1")
        assert snapshot.state == {"zoom": 5}
        assert snapshot.schema_version == 2
        assert reopened.count() == 1
        reopened.close()


class TestNormalizers:
    def test_namespace(self):
        assert normalize_namespace("Ops.Map:v2") == "ops.map:v2"
        assert normalize_namespace("a b  c") == "a_b_c"
        assert normalize_namespace(None) == "workspace_state"
        assert len(normalize_namespace("x" * 200)) == 80

    def test_scope_key(self):
        assert normalize_scope_key("Op-7.Alpha") == "Op-7.Alpha"
        assert normalize_scope_key("   ") == "default"
        assert len(normalize_scope_key("y" * 300)) == 140

    def test_schema_version(self):
        assert normalize_schema_version("7") == 7
        assert normalize_schema_version(3.9) == 3
        assert normalize_schema_version("junk") == 1
        assert normalize_schema_version(-4) == 1
        assert normalize_schema_version(1000) == 99

    @pytest.mark.parametrize("requested,expected", [(None, 25), ("junk", 25), (0, 1), (-3, 1), (10, 10), (61, 60), ("7", 7)])
    def test_list_limit(self, requested, expected):
        assert clamp_list_limit(requested) == expected
