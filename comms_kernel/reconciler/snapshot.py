"""
Snapshot evaluation — one pass of the comms pipeline over a polled snapshot.

health -> incident candidates -> status map -> sorted incidents
       -> directive lanes, discipline alerts, reconciled dispatches

Pure: the caller owns the status map and the dispatch list, passes them in,
and stores whatever comes back.
"""

from typing import Iterable, Mapping, Optional, Union

from comms_kernel.clock import resolve_now_ms
from comms_kernel.directives.threads import build_directive_threads, build_discipline_alerts
from comms_kernel.health.model import build_channel_health, count_degraded_channels
from comms_kernel.incidents.lifecycle import (
    build_incident_candidates,
    normalize_incident_status_by_id,
    sort_comms_incidents,
)
from comms_kernel.models.config import EngineConfig
from comms_kernel.models.incident import IncidentPriority, IncidentStatus
from comms_kernel.models.snapshot import CommsSnapshot, CommsSnapshotEvaluation
from comms_kernel.reconciler.dispatch import reconcile_directive_dispatches


def evaluate_comms_snapshot(
    snapshot: Union[CommsSnapshot, dict, None],
    status_by_id: Optional[Mapping[str, IncidentStatus]] = None,
    dispatches: Optional[Iterable] = None,
    active_speakers: int = 0,
    now_ms: Optional[int] = None,
    config: Optional[EngineConfig] = None,
) -> CommsSnapshotEvaluation:
    """
    Run health, incidents, directives and dispatch reconciliation for one
    snapshot. Dispatches passed explicitly take precedence over any carried
    on the snapshot.
    """
    if not isinstance(snapshot, CommsSnapshot):
        snapshot = CommsSnapshot.model_validate(snapshot or {})
    config = config or EngineConfig()
    now = resolve_now_ms(now_ms)

    health = build_channel_health(snapshot.channels)
    degraded = count_degraded_channels(health)

    candidates = build_incident_candidates(
        health,
        snapshot.events,
        now_ms=now,
        window_ms=config.incident_window_ms,
    )
    statuses = normalize_incident_status_by_id(candidates, status_by_id)
    incidents = sort_comms_incidents(candidates, statuses)

    lanes = build_directive_threads(
        health,
        incidents,
        snapshot.events,
        now_ms=now,
        max_lanes=config.max_lanes,
    )
    alerts = build_discipline_alerts(
        snapshot.events,
        incidents,
        now_ms=now,
        active_speakers=active_speakers,
        degraded_channel_count=degraded,
        window_ms=config.alert_window_ms,
        stale_incident_ms=config.stale_incident_ms,
        max_alerts=config.max_alerts,
    )
    reconciled = reconcile_directive_dispatches(
        dispatches if dispatches is not None else snapshot.dispatches,
        snapshot.events,
        incidents,
        now_ms=now,
        max_items=config.max_dispatches,
    )

    unresolved = [i for i in incidents if i.status != IncidentStatus.RESOLVED]
    return CommsSnapshotEvaluation(
        channel_health=health,
        incidents=incidents,
        status_by_id=statuses,
        lanes=lanes,
        alerts=alerts,
        dispatches=reconciled,
        degraded_channel_count=degraded,
        unresolved_incident_count=len(unresolved),
        critical_incident_count=sum(1 for i in unresolved if i.priority == IncidentPriority.CRITICAL),
    )
