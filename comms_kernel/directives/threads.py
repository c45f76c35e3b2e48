"""
Directive Threads & Discipline Alerts.

Lanes aggregate channel health, incident records and directive traffic per
channel. Discipline alerts are cross-channel warnings computed over the same
event window. Both are pure functions of their inputs.

Next-action resolution and alert detection are ordered rule tables so the
precedence order can be read, and tested, one rule at a time.
"""

from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from comms_kernel.clock import event_ms, js_round, resolve_now_ms
from comms_kernel.health.model import UNSCOPED_CHANNEL, lane_label
from comms_kernel.models.channel import ChannelHealth
from comms_kernel.models.coerce import coerce_records, finite_float
from comms_kernel.models.directive import (
    AlertSeverity,
    DirectiveThreadLane,
    DisciplineAlert,
    LaneAction,
)
from comms_kernel.models.events import CommsEvent
from comms_kernel.models.incident import IncidentPriority, IncidentRecord, IncidentStatus

DIRECTIVE_EVENT_TYPES = frozenset(
    {"MOVE_OUT", "HOLD", "SELF_CHECK", "ROGER", "WILCO", "CLEAR_COMMS"}
)

DEFAULT_MAX_LANES = 18
DEFAULT_ALERT_WINDOW_MS = 12 * 60 * 1000
DEFAULT_STALE_INCIDENT_MS = 10 * 60 * 1000
DEFAULT_MAX_ALERTS = 6

INCIDENT_LANE_BASELINE_QUALITY = 68
EVENT_LANE_BASELINE_QUALITY = 70

ALERT_SEVERITY_RANK: Dict[AlertSeverity, int] = {
    AlertSeverity.CRITICAL: 3,
    AlertSeverity.WARNING: 2,
    AlertSeverity.INFO: 1,
}


def lane_id_for_channel(channel_id: str) -> str:
    return f"lane:{(channel_id or '').strip() or UNSCOPED_CHANNEL}"


def directive_token(event: CommsEvent) -> str:
    """payload.directive uppercased, else the event type."""
    payload_directive = str(event.payload.get("directive") or "").strip().upper()
    return payload_directive or event.event_type


# --- Lane next-action rules (first match wins) ---

NEXT_ACTION_RULES: List[Tuple[Callable[[DirectiveThreadLane], bool], LaneAction]] = [
    (lambda lane: lane.critical_count > 0, LaneAction.ACK),
    (lambda lane: lane.unresolved_count > 0, LaneAction.ASSIGN),
    (lambda lane: lane.quality_pct < 55, LaneAction.REROUTE),
    (lambda lane: lane.directive_volume >= 4, LaneAction.RESTRICT),
]


def resolve_next_action(lane: DirectiveThreadLane) -> LaneAction:
    for predicate, action in NEXT_ACTION_RULES:
        if predicate(lane):
            return action
    return LaneAction.CHECKIN


def _synthesized_lane(channel_id: str, quality_pct: int, activity_ms: int) -> DirectiveThreadLane:
    return DirectiveThreadLane(
        id=lane_id_for_channel(channel_id),
        channel_id=channel_id,
        label=lane_label(channel_id),
        quality_pct=quality_pct,
        last_activity_ms=activity_ms,
    )


def build_directive_threads(
    channel_health: Optional[Iterable[ChannelHealth]],
    incidents: Optional[Iterable] = None,
    events: Optional[Iterable] = None,
    now_ms: Optional[int] = None,
    max_lanes: int = DEFAULT_MAX_LANES,
) -> List[DirectiveThreadLane]:
    """
    Build one lane per channel seen in health, incidents or events.

    Channels that only appear in incidents or events get a neutral quality
    baseline so they stay visible.
    """
    now = resolve_now_ms(now_ms)
    max_lanes = max(1, int(max_lanes or DEFAULT_MAX_LANES))
    lanes: Dict[str, DirectiveThreadLane] = OrderedDict()

    for channel in channel_health or []:
        lane_id = lane_id_for_channel(channel.channel_id)
        if lane_id in lanes:
            continue
        lanes[lane_id] = DirectiveThreadLane(
            id=lane_id,
            channel_id=channel.channel_id,
            label=channel.label or lane_label(channel.channel_id),
            quality_pct=channel.quality_pct,
            last_activity_ms=now - js_round(channel.intensity * 10000),
        )

    for incident in coerce_records(incidents, IncidentRecord):
        channel_id = incident.channel_id or UNSCOPED_CHANNEL
        lane_id = lane_id_for_channel(channel_id)
        created = incident.created_at_ms or now
        lane = lanes.get(lane_id)
        if lane is None:
            lane = _synthesized_lane(channel_id, INCIDENT_LANE_BASELINE_QUALITY, created)
            lanes[lane_id] = lane
        if incident.status != IncidentStatus.RESOLVED:
            lane.unresolved_count += 1
            if incident.priority == IncidentPriority.CRITICAL:
                lane.critical_count += 1
        lane.last_activity_ms = max(lane.last_activity_ms, created)

    for event in coerce_records(events, CommsEvent):
        channel_id = event.channel_id or UNSCOPED_CHANNEL
        lane_id = lane_id_for_channel(channel_id)
        created = event_ms(event.created_at, now)
        lane = lanes.get(lane_id)
        if lane is None:
            lane = _synthesized_lane(channel_id, EVENT_LANE_BASELINE_QUALITY, created)
            lanes[lane_id] = lane
        if event.event_type in DIRECTIVE_EVENT_TYPES:
            lane.directive_volume += 1
        lane.last_activity_ms = max(lane.last_activity_ms, created)

    resolved = [
        lane.model_copy(update={"next_action": resolve_next_action(lane)})
        for lane in lanes.values()
    ]
    resolved.sort(
        key=lambda lane: (
            -lane.critical_count,
            -lane.unresolved_count,
            -lane.directive_volume,
            -lane.last_activity_ms,
        )
    )
    return resolved[:max_lanes]


# --- Discipline alert detectors ---

class AlertContext:
    """Window scan shared by the discipline alert detectors."""

    def __init__(
        self,
        events: List[CommsEvent],
        incidents: List[IncidentRecord],
        now_ms: int,
        window_ms: int,
        stale_incident_ms: int,
        active_speakers: int,
        degraded_channel_count: int,
    ):
        self.incidents = incidents
        self.now_ms = now_ms
        self.stale_incident_ms = stale_incident_ms
        self.active_speakers = active_speakers
        self.degraded_channel_count = degraded_channel_count
        self.duplicate_counts: Dict[Tuple[str, str], int] = OrderedDict()
        self.directives_by_channel: Dict[str, Set[str]] = OrderedDict()

        for event in events:
            if now_ms - event_ms(event.created_at, now_ms) > window_ms:
                continue
            channel_id = event.channel_id or UNSCOPED_CHANNEL
            token = directive_token(event)
            if not token:
                continue
            key = (channel_id, token)
            self.duplicate_counts[key] = self.duplicate_counts.get(key, 0) + 1
            self.directives_by_channel.setdefault(channel_id, set()).add(token)


def detect_duplicate_directives(ctx: AlertContext) -> List[DisciplineAlert]:
    alerts = []
    for (channel_id, token), count in ctx.duplicate_counts.items():
        if count < 2:
            continue
        alerts.append(DisciplineAlert(
            id=f"dup:{channel_id}:{token}",
            severity=AlertSeverity.CRITICAL if count >= 3 else AlertSeverity.WARNING,
            title="Duplicate Directive Pattern",
            detail=f"{token} repeated {count}x on {channel_id}.",
        ))
    return alerts


def detect_conflicting_orders(ctx: AlertContext) -> List[DisciplineAlert]:
    alerts = []
    for channel_id, tokens in ctx.directives_by_channel.items():
        if "REROUTE_TRAFFIC" in tokens and "RESTRICT_NON_ESSENTIAL" in tokens:
            alerts.append(DisciplineAlert(
                id=f"conflict:{channel_id}",
                severity=AlertSeverity.WARNING,
                title="Conflicting Lane Orders",
                detail=f"{channel_id} has simultaneous reroute and restrict directives.",
            ))
    return alerts


def detect_stale_incidents(ctx: AlertContext) -> List[DisciplineAlert]:
    stale = [
        incident for incident in ctx.incidents
        if incident.status != IncidentStatus.RESOLVED
        and ctx.now_ms - (incident.created_at_ms or ctx.now_ms) > ctx.stale_incident_ms
    ]
    if not stale:
        return []
    any_critical = any(i.priority == IncidentPriority.CRITICAL for i in stale)
    minutes = js_round(ctx.stale_incident_ms / 60000)
    return [DisciplineAlert(
        id="stale:incidents",
        severity=AlertSeverity.CRITICAL if any_critical else AlertSeverity.WARNING,
        title="Unacknowledged Incident Age",
        detail=f"{len(stale)} unresolved incidents exceed {minutes}m response window.",
    )]


def detect_voice_collision(ctx: AlertContext) -> List[DisciplineAlert]:
    if ctx.active_speakers >= 3 and ctx.degraded_channel_count > 0:
        return [DisciplineAlert(
            id="voice:collision",
            severity=AlertSeverity.WARNING,
            title="Voice Collision Risk",
            detail=(
                f"{ctx.active_speakers} active speakers with "
                f"{ctx.degraded_channel_count} degraded lanes."
            ),
        )]
    return []


DISCIPLINE_ALERT_RULES: List[Callable[[AlertContext], List[DisciplineAlert]]] = [
    detect_duplicate_directives,
    detect_conflicting_orders,
    detect_stale_incidents,
    detect_voice_collision,
]


def _safe_count(value) -> int:
    return max(0, int(finite_float(value)))


def build_discipline_alerts(
    events: Optional[Iterable] = None,
    incidents: Optional[Iterable] = None,
    now_ms: Optional[int] = None,
    active_speakers: int = 0,
    degraded_channel_count: int = 0,
    window_ms: int = DEFAULT_ALERT_WINDOW_MS,
    stale_incident_ms: int = DEFAULT_STALE_INCIDENT_MS,
    max_alerts: int = DEFAULT_MAX_ALERTS,
) -> List[DisciplineAlert]:
    """Run every detector; sort by severity desc then title; truncate."""
    ctx = AlertContext(
        events=coerce_records(events, CommsEvent),
        incidents=coerce_records(incidents, IncidentRecord),
        now_ms=resolve_now_ms(now_ms),
        window_ms=int(window_ms or DEFAULT_ALERT_WINDOW_MS),
        stale_incident_ms=int(stale_incident_ms or DEFAULT_STALE_INCIDENT_MS),
        active_speakers=_safe_count(active_speakers),
        degraded_channel_count=_safe_count(degraded_channel_count),
    )
    alerts: List[DisciplineAlert] = []
    for rule in DISCIPLINE_ALERT_RULES:
        alerts.extend(rule(ctx))
    alerts.sort(key=lambda a: (-ALERT_SEVERITY_RANK[a.severity], a.title))
    return alerts[:max(1, int(max_alerts))]
