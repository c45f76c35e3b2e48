"""
Dispatch Reconciler — matches outbound directives against the event log.

Reconciliation is idempotent and replayable from whatever events are visible:
  QUEUED    -> PERSISTED  when an event carries payload.dispatchId
  PERSISTED -> ACKED      by directive-specific rules against the linked
                          incident, or an acknowledgement event on the
                          same channel when no incident is linked

Status is monotone. A record is never moved to a lower rank than it held
before the call, whatever the event stream currently shows.
"""

from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from comms_kernel.clock import event_ms, resolve_now_ms
from comms_kernel.directives.threads import lane_id_for_channel
from comms_kernel.health.model import UNSCOPED_CHANNEL
from comms_kernel.models.coerce import coerce_records
from comms_kernel.models.directive import DirectiveDispatchRecord, DispatchStatus
from comms_kernel.models.events import CommsEvent
from comms_kernel.models.incident import IncidentRecord, IncidentStatus

DEFAULT_MAX_DISPATCHES = 12

ACK_EVENT_TYPES = frozenset({"ROGER", "WILCO", "CLEAR_COMMS"})

DISPATCH_STATUS_RANK: Dict[DispatchStatus, int] = {
    DispatchStatus.QUEUED: 0,
    DispatchStatus.PERSISTED: 1,
    DispatchStatus.ACKED: 2,
}

# Incident statuses that confirm each incident directive was acted upon.
INCIDENT_ACK_RULES: Dict[str, frozenset] = {
    "INCIDENT_ACK": frozenset({IncidentStatus.ACKED, IncidentStatus.ASSIGNED, IncidentStatus.RESOLVED}),
    "INCIDENT_ASSIGN": frozenset({IncidentStatus.ASSIGNED, IncidentStatus.RESOLVED}),
    "INCIDENT_RESOLVE": frozenset({IncidentStatus.RESOLVED}),
}


def dispatch_status_rank(status) -> int:
    return DISPATCH_STATUS_RANK[DispatchStatus(status)]


def create_directive_dispatch_record(
    channel_id: str,
    directive: str,
    event_type: str,
    lane_id: Optional[str] = None,
    incident_id: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> DirectiveDispatchRecord:
    """Create a QUEUED dispatch for a directive about to be emitted."""
    now = resolve_now_ms(now_ms)
    channel = (channel_id or "").strip() or UNSCOPED_CHANNEL
    event_type = (event_type or "").strip().upper()
    return DirectiveDispatchRecord(
        dispatch_id=f"dispatch:{now}:{uuid4().hex[:5]}",
        channel_id=channel,
        lane_id=(lane_id or "").strip() or lane_id_for_channel(channel),
        directive=(directive or "").strip() or event_type or "DIRECTIVE",
        event_type=event_type,
        incident_id=(incident_id or "").strip(),
        issued_at_ms=now,
        status=DispatchStatus.QUEUED,
    )


def _payload_dispatch_id(event: CommsEvent) -> str:
    value = event.payload.get("dispatchId") or event.payload.get("dispatch_id")
    return str(value or "").strip()


def _latest_event_by_dispatch(events: List[CommsEvent], now: int) -> Dict[str, CommsEvent]:
    """Most recent event per dispatch id; created_at ties broken by event id."""
    latest: Dict[str, CommsEvent] = {}
    for event in events:
        dispatch_id = _payload_dispatch_id(event)
        if not dispatch_id:
            continue
        current = latest.get(dispatch_id)
        if current is None or (event_ms(event.created_at, now), event.id) > (
            event_ms(current.created_at, now), current.id
        ):
            latest[dispatch_id] = event
    return latest


def _channel_acknowledged(
    dispatch: DirectiveDispatchRecord, events: List[CommsEvent], now: int
) -> bool:
    for event in events:
        if event.event_type not in ACK_EVENT_TYPES:
            continue
        if event_ms(event.created_at, now) < dispatch.issued_at_ms:
            continue
        if event.channel_id == dispatch.channel_id:
            return True
    return False


def _is_acknowledged(
    dispatch: DirectiveDispatchRecord,
    incident: Optional[IncidentRecord],
    events: List[CommsEvent],
    now: int,
) -> bool:
    if not dispatch.incident_id:
        return _channel_acknowledged(dispatch, events, now)
    confirming = INCIDENT_ACK_RULES.get(dispatch.directive)
    if confirming is None or incident is None:
        return False
    return incident.status in confirming


def reconcile_dispatch(
    dispatch: DirectiveDispatchRecord,
    persisted_event: Optional[CommsEvent],
    incident: Optional[IncidentRecord],
    events: List[CommsEvent],
    now: int,
) -> DirectiveDispatchRecord:
    """Reconcile one dispatch. Never demotes."""
    previous = DispatchStatus(dispatch.status or DispatchStatus.QUEUED)
    observed = DispatchStatus.PERSISTED if persisted_event is not None else previous

    if observed == DispatchStatus.PERSISTED and _is_acknowledged(dispatch, incident, events, now):
        observed = DispatchStatus.ACKED

    status = max(previous, observed, key=dispatch_status_rank)
    return dispatch.model_copy(update={"status": status})


def reconcile_directive_dispatches(
    dispatches: Optional[Iterable],
    events: Optional[Iterable] = None,
    incidents: Optional[Iterable] = None,
    now_ms: Optional[int] = None,
    max_items: int = DEFAULT_MAX_DISPATCHES,
) -> List[DirectiveDispatchRecord]:
    """Reconcile every dispatch; newest issued first, capped."""
    now = resolve_now_ms(now_ms)
    event_list = coerce_records(events, CommsEvent)
    incident_by_id: Dict[str, IncidentRecord] = {}
    for incident in coerce_records(incidents, IncidentRecord):
        incident_by_id.setdefault(incident.id, incident)
    latest = _latest_event_by_dispatch(event_list, now)

    reconciled = [
        reconcile_dispatch(
            dispatch,
            latest.get(dispatch.dispatch_id),
            incident_by_id.get(dispatch.incident_id) if dispatch.incident_id else None,
            event_list,
            now,
        )
        for dispatch in coerce_records(dispatches, DirectiveDispatchRecord)
    ]
    reconciled.sort(key=lambda d: -d.issued_at_ms)
    return reconciled[:max(1, int(max_items or DEFAULT_MAX_DISPATCHES))]
