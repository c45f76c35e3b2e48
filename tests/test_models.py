"""Tests for data models and their tolerant coercion."""

from datetime import datetime, timezone

from comms_kernel.clock import event_ms, js_round, parse_timestamp_ms, resolve_now_ms
from comms_kernel.models import (
    CommsCallout,
    CommsEvent,
    CommsNet,
    DirectiveDispatchRecord,
    EngineConfig,
    IncidentCandidate,
    IncidentRecord,
    IncidentStatus,
    SyncQueueConfig,
    WorkspaceStateQueueEntry,
)
from comms_kernel.models.coerce import coerce_records, finite_float
from comms_kernel.models.inference import EvidenceSource


class TestCommsEvent:
    def test_tolerant_fields(self):
        event = CommsEvent.model_validate({
            "id": 17,
            "channel_id": None,
            "event_type": " hold ",
            "payload": "not a dict",
            "confidence": "n/a",
            "ttl_seconds": "soon",
            "created_at": 12345,
        })
        assert event.id == "17"
        assert event.channel_id == ""
        assert event.event_type == "HOLD"
        assert event.payload == {}
        assert event.confidence == 0.0
        assert event.ttl_seconds == 0
        assert event.created_at is None


class TestInferenceInputs:
    def test_net_quality_defaults_to_clear(self):
        assert CommsNet(id="n1", quality=None).quality == "CLEAR"
        assert CommsNet(id="n1", quality="contested").quality == "CONTESTED"

    def test_callout_coercion(self):
        callout = CommsCallout(priority="urgent", evidence_source=EvidenceSource.CQB_EVENT)
        assert callout.priority == "STANDARD"
        assert callout.evidence_source == "CQB_EVENT"
        assert CommsCallout(evidence_source="").evidence_source is None


class TestCoerceRecords:
    def test_mixed_rows(self):
        candidate = IncidentCandidate(id="event:e1")
        rows = [candidate, {"id": "event:e2", "status": "ACKED"}, {"title": "no id"}, "junk"]
        records = coerce_records(rows, IncidentRecord)
        assert [r.id for r in records] == ["event:e1", "event:e2"]
        assert records[0].status == IncidentStatus.NEW
        assert records[1].status == IncidentStatus.ACKED

    def test_finite_float(self):
        assert finite_float("2.5") == 2.5
        assert finite_float("1e999") == 0.0
        assert finite_float(float("-inf"), default=-1.0) == -1.0
        assert finite_float(10 ** 400) == 0.0
        assert finite_float(None) == 0.0

    def test_none_is_empty(self):
        assert coerce_records(None, DirectiveDispatchRecord) == []


class TestConfig:
    def test_engine_defaults(self):
        config = EngineConfig()
        assert config.incident_window_ms == 6 * 60_000
        assert config.alert_window_ms == 12 * 60_000
        assert config.stale_incident_ms == 10 * 60_000
        assert (config.max_lanes, config.max_dispatches, config.max_alerts) == (18, 12, 6)

    def test_sync_defaults(self):
        config = SyncQueueConfig()
        assert config.default_debounce_ms == 900
        assert (config.min_debounce_ms, config.max_debounce_ms) == (200, 5000)
        assert config.max_state_bytes == 220_000
        assert config.max_pending_keys == 48

    def test_queue_entry_key(self):
        entry = WorkspaceStateQueueEntry(
            namespace="map", scope_key="op-7", debounce_ms=900, enqueued_at_ms=0,
        )
        assert entry.key == "map:op-7"


class TestClock:
    def test_js_round_half_up(self):
        assert js_round(2.5) == 3
        assert js_round(-2.5) == -2
        assert js_round(58.24) == 58

    def test_js_round_non_finite(self):
        assert js_round(float("nan")) == 0
        assert js_round(float("inf")) > 10 ** 300
        assert js_round(float("-inf")) < -10 ** 300

    def test_parse_timestamps(self):
        assert parse_timestamp_ms("2023-11-14T22:13:20Z") == 1_700_000_000_000
        assert parse_timestamp_ms("2023-11-14T22:13:20") == 1_700_000_000_000
        assert parse_timestamp_ms(datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)) == 1_700_000_000_000
        assert parse_timestamp_ms("yesterday") is None
        assert parse_timestamp_ms("") is None

    def test_event_ms_fallback(self):
        assert event_ms(None, 42) == 42
        assert event_ms("garbage", 42) == 42

    def test_resolve_now_ms(self):
        assert resolve_now_ms(1234) == 1234
        assert resolve_now_ms(float("nan")) > 1_600_000_000_000
        assert resolve_now_ms(True) > 1_600_000_000_000
