"""
Incident Lifecycle — candidate derivation, status normalization and the
transition guard.

Behavioral Contract:
- Candidate ids are content-derived (health:<channelId>, event:<eventId>);
  deriving twice from the same snapshot yields identical ids and priorities.
- Priority is fixed at derivation. Status is the only mutable field and lives
  in a caller-owned map that is passed in and returned, never held here.
- The transition guard answers yes/no. It never raises; callers reject an
  illegal transition before touching their status map.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from comms_kernel.clock import event_ms, resolve_now_ms
from comms_kernel.health.model import UNSCOPED_CHANNEL, lane_label
from comms_kernel.models.channel import ChannelHealth, DisciplineTier
from comms_kernel.models.coerce import coerce_records
from comms_kernel.models.events import CommsEvent
from comms_kernel.models.incident import (
    IncidentCandidate,
    IncidentPriority,
    IncidentRecord,
    IncidentSource,
    IncidentStatus,
)

DEFAULT_INCIDENT_WINDOW_MS = 6 * 60 * 1000

HEALTH_QUALITY_THRESHOLD = 82
HEALTH_HIGH_QUALITY_THRESHOLD = 60

EVENT_SEVERITY: Dict[str, IncidentPriority] = {
    "DOWNED": IncidentPriority.CRITICAL,
    "EXTRACT": IncidentPriority.CRITICAL,
    "CONTACT": IncidentPriority.HIGH,
    "THREAT_UPDATE": IncidentPriority.HIGH,
    "REVIVE": IncidentPriority.HIGH,
    "HOLD": IncidentPriority.MED,
    "CLEAR_COMMS": IncidentPriority.MED,
}

_EVENT_ACTIONS: Dict[str, str] = {
    "DOWNED": "Acknowledge and dispatch medical response.",
    "EXTRACT": "Acknowledge and confirm extraction route.",
    "CONTACT": "Acknowledge contact and assign a responder.",
    "THREAT_UPDATE": "Verify threat update and brief affected lanes.",
    "REVIVE": "Confirm revive status and update roster.",
    "HOLD": "Confirm hold order is understood on lane.",
    "CLEAR_COMMS": "Confirm lane is clear for priority traffic.",
}

PRIORITY_RANK: Dict[IncidentPriority, int] = {
    IncidentPriority.CRITICAL: 3,
    IncidentPriority.HIGH: 2,
    IncidentPriority.MED: 1,
}

STATUS_RANK: Dict[IncidentStatus, int] = {
    IncidentStatus.NEW: 0,
    IncidentStatus.ACKED: 1,
    IncidentStatus.ASSIGNED: 2,
    IncidentStatus.RESOLVED: 3,
}

# Forward edges only. Identity transitions are handled by the guard.
ALLOWED_TRANSITIONS: Dict[IncidentStatus, Tuple[IncidentStatus, ...]] = {
    IncidentStatus.NEW: (IncidentStatus.ACKED,),
    IncidentStatus.ACKED: (IncidentStatus.ASSIGNED, IncidentStatus.RESOLVED),
    IncidentStatus.ASSIGNED: (IncidentStatus.RESOLVED,),
    IncidentStatus.RESOLVED: (),
}

_DIRECTIVE_BY_STATUS: Dict[IncidentStatus, str] = {
    IncidentStatus.ACKED: "INCIDENT_ACK",
    IncidentStatus.ASSIGNED: "INCIDENT_ASSIGN",
    IncidentStatus.RESOLVED: "INCIDENT_RESOLVE",
}


def _health_candidate(channel: ChannelHealth, now: int) -> Optional[IncidentCandidate]:
    if channel.discipline == DisciplineTier.CLEAR and channel.quality_pct >= HEALTH_QUALITY_THRESHOLD:
        return None
    high = (
        channel.discipline == DisciplineTier.SATURATED
        or channel.quality_pct < HEALTH_HIGH_QUALITY_THRESHOLD
    )
    return IncidentCandidate(
        id=f"health:{channel.channel_id}",
        channel_id=channel.channel_id,
        source=IncidentSource.HEALTH,
        title=f"{channel.label} {channel.discipline.value.lower()}",
        detail=(
            f"Quality {channel.quality_pct}%, latency {channel.latency_ms}ms, "
            f"{int(channel.membership_count)} members."
        ),
        priority=IncidentPriority.HIGH if high else IncidentPriority.MED,
        recommended_action=(
            "Reroute traffic and assign a lane monitor."
            if high
            else "Limit non-essential traffic on lane."
        ),
        created_at_ms=now,
    )


def _event_candidate(event: CommsEvent, now: int, window_ms: int) -> Optional[IncidentCandidate]:
    priority = EVENT_SEVERITY.get(event.event_type)
    if priority is None or not event.id:
        return None
    created = event_ms(event.created_at, now)
    if now - created > window_ms:
        return None
    channel_id = event.channel_id or UNSCOPED_CHANNEL
    summary = str(event.payload.get("summary") or event.payload.get("note") or "").strip()
    return IncidentCandidate(
        id=f"event:{event.id}",
        channel_id=channel_id,
        source=IncidentSource.EVENT,
        title=f"{event.event_type.replace('_', ' ').title()} on {lane_label(channel_id)}",
        detail=summary or f"Reported by {event.author_id or 'unknown'}.",
        priority=priority,
        recommended_action=_EVENT_ACTIONS.get(event.event_type, ""),
        created_at_ms=created,
    )


def build_incident_candidates(
    channel_health: Iterable[ChannelHealth],
    events: Optional[Iterable] = None,
    now_ms: Optional[int] = None,
    window_ms: int = DEFAULT_INCIDENT_WINDOW_MS,
) -> List[IncidentCandidate]:
    """
    Derive health- and event-driven incident candidates.

    Sorted by priority desc, then created_at desc, then id.
    """
    now = resolve_now_ms(now_ms)
    candidates: Dict[str, IncidentCandidate] = {}

    for channel in channel_health or []:
        candidate = _health_candidate(channel, now)
        if candidate and candidate.id not in candidates:
            candidates[candidate.id] = candidate

    for event in coerce_records(events, CommsEvent):
        candidate = _event_candidate(event, now, window_ms)
        if candidate and candidate.id not in candidates:
            candidates[candidate.id] = candidate

    return sorted(
        candidates.values(),
        key=lambda c: (-PRIORITY_RANK[c.priority], -c.created_at_ms, c.id),
    )


def normalize_incident_status_by_id(
    candidates: Iterable[IncidentCandidate],
    previous: Optional[Mapping[str, IncidentStatus]] = None,
) -> Dict[str, IncidentStatus]:
    """Keep exactly the current ids. New ids start NEW; stale ids are dropped."""
    previous = previous or {}
    normalized: Dict[str, IncidentStatus] = {}
    for candidate in candidates:
        prior = previous.get(candidate.id)
        try:
            normalized[candidate.id] = IncidentStatus(prior) if prior else IncidentStatus.NEW
        except ValueError:
            normalized[candidate.id] = IncidentStatus.NEW
    return normalized


def can_transition_incident_status(current, target) -> bool:
    """Guard table lookup. Identity is always legal; RESOLVED is terminal."""
    try:
        current = IncidentStatus(current)
        target = IncidentStatus(target)
    except ValueError:
        return False
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def apply_incident_transition(
    status_by_id: Mapping[str, IncidentStatus],
    incident_id: str,
    target: IncidentStatus,
) -> Tuple[Dict[str, IncidentStatus], bool]:
    """
    Return (new_map, applied). The input map is never mutated; an unknown id
    or an illegal transition yields an unchanged copy.
    """
    updated = dict(status_by_id)
    if incident_id not in updated:
        return updated, False
    if not can_transition_incident_status(updated[incident_id], target):
        return updated, False
    updated[incident_id] = IncidentStatus(target)
    return updated, True


def incident_directive_for_status(status: IncidentStatus) -> Optional[str]:
    """Directive token a console dispatches when moving an incident to status."""
    return _DIRECTIVE_BY_STATUS.get(IncidentStatus(status))


def sort_comms_incidents(
    candidates: Iterable[IncidentCandidate],
    status_by_id: Optional[Mapping[str, IncidentStatus]] = None,
) -> List[IncidentRecord]:
    """Unresolved work first, then priority desc, then newest first."""
    status_by_id = status_by_id or {}
    records = []
    for candidate in candidates:
        status = status_by_id.get(candidate.id, IncidentStatus.NEW)
        try:
            status = IncidentStatus(status)
        except ValueError:
            status = IncidentStatus.NEW
        records.append(IncidentRecord(**candidate.model_dump(exclude={"status"}), status=status))
    return sorted(
        records,
        key=lambda r: (
            STATUS_RANK[r.status],
            -PRIORITY_RANK[r.priority],
            -r.created_at_ms,
            r.id,
        ),
    )
