"""
Command Surface Aggregator — alerts and macro recommendations on top of
a map inference snapshot.

Each alert rule is thresholded independently. Macro recommendations are
derived from the prioritized actions first and the alerts second, and are
deduplicated by macro id with the first occurrence kept.
"""

from typing import Callable, Dict, List, Optional

from comms_kernel.clock import iso_from_ms, resolve_now_ms
from comms_kernel.inference.map_engine import coerce_comms_overlay
from comms_kernel.models.coerce import finite_float
from comms_kernel.models.command_surface import (
    CommandSurfaceAlert,
    MacroRecommendation,
    MapCommandSurface,
    SurfaceAlertLevel,
    TacticalMacroId,
)
from comms_kernel.models.inference import MapCommsOverlay, MapInferenceSnapshot

MAX_SURFACE_ALERTS = 10
MAX_RECOMMENDED_MACROS = 6

_LEVEL_RANK = {
    SurfaceAlertLevel.CRITICAL: 3,
    SurfaceAlertLevel.HIGH: 2,
    SurfaceAlertLevel.MED: 1,
}

MACRO_LABELS: Dict[TacticalMacroId, str] = {
    TacticalMacroId.ISSUE_CRITICAL_CALLOUT: "Issue critical callout",
    TacticalMacroId.REROUTE_DEGRADED_NETS: "Reroute degraded nets",
    TacticalMacroId.REQUEST_ZONE_RECON: "Request zone recon",
    TacticalMacroId.REVALIDATE_INTEL: "Revalidate intel",
    TacticalMacroId.GRANT_SPEAK_PRIORITY: "Grant speak priority",
    TacticalMacroId.PRESTAGE_OVERFLOW: "Pre-stage overflow",
    TacticalMacroId.REQUEST_SITREP: "Request SITREP",
}

MACRO_BY_ACTION: Dict[str, TacticalMacroId] = {
    "stabilize-speaking-lane": TacticalMacroId.ISSUE_CRITICAL_CALLOUT,
    "rebalance-bridges": TacticalMacroId.REROUTE_DEGRADED_NETS,
    "refresh-zone-recon": TacticalMacroId.REQUEST_ZONE_RECON,
    "revalidate-stale-intel": TacticalMacroId.REVALIDATE_INTEL,
    "prestage-command-overflow": TacticalMacroId.PRESTAGE_OVERFLOW,
    "maintain-cadence": TacticalMacroId.REQUEST_SITREP,
}

MACRO_BY_ALERT: Dict[str, TacticalMacroId] = {
    "critical-callouts": TacticalMacroId.ISSUE_CRITICAL_CALLOUT,
    "degraded-nets": TacticalMacroId.REROUTE_DEGRADED_NETS,
    "contested-zones": TacticalMacroId.REQUEST_ZONE_RECON,
    "stale-intel": TacticalMacroId.REVALIDATE_INTEL,
    "speak-requests": TacticalMacroId.GRANT_SPEAK_PRIORITY,
}

_ALERT_PRIORITY = {
    SurfaceAlertLevel.CRITICAL: "NOW",
    SurfaceAlertLevel.HIGH: "NOW",
    SurfaceAlertLevel.MED: "NEXT",
}


class SurfaceInputs:
    def __init__(self, inference: MapInferenceSnapshot, overlay: MapCommsOverlay, pending_speak_requests: int):
        self.inference = inference
        self.overlay = overlay
        self.pending_speak_requests = pending_speak_requests


def _critical_callout_alert(inputs: SurfaceInputs) -> Optional[CommandSurfaceAlert]:
    count = inputs.inference.critical_callout_count
    if count < 1:
        return None
    return CommandSurfaceAlert(
        id="critical-callouts",
        level=SurfaceAlertLevel.CRITICAL,
        title="Critical callouts active",
        detail=f"{count} trusted critical callouts awaiting command acknowledgement.",
    )


def _degraded_net_alert(inputs: SurfaceInputs) -> Optional[CommandSurfaceAlert]:
    count = inputs.inference.degraded_net_count
    if count < 1:
        return None
    degraded = [n.id for n in inputs.overlay.nets if n.quality != "CLEAR" and n.id]
    detail = f"{count} nets degraded or contested"
    if degraded:
        detail += f": {', '.join(degraded[:4])}"
    return CommandSurfaceAlert(
        id="degraded-nets",
        level=SurfaceAlertLevel.CRITICAL if count >= 3 else SurfaceAlertLevel.HIGH,
        title="Degraded comms nets",
        detail=detail + ".",
    )


def _contested_zone_alert(inputs: SurfaceInputs) -> Optional[CommandSurfaceAlert]:
    count = inputs.inference.contested_zone_count
    if count < 1:
        return None
    return CommandSurfaceAlert(
        id="contested-zones",
        level=SurfaceAlertLevel.HIGH if count >= 2 else SurfaceAlertLevel.MED,
        title="Contested control zones",
        detail=f"{count} control zones are contested.",
    )


def _stale_intel_alert(inputs: SurfaceInputs) -> Optional[CommandSurfaceAlert]:
    count = inputs.inference.stale_intel_count
    if count < 2:
        return None
    return CommandSurfaceAlert(
        id="stale-intel",
        level=SurfaceAlertLevel.MED,
        title="Stale intel backlog",
        detail=f"{count} intel records are past their freshness window.",
    )


def _speak_request_alert(inputs: SurfaceInputs) -> Optional[CommandSurfaceAlert]:
    count = inputs.pending_speak_requests
    if count < 3:
        return None
    return CommandSurfaceAlert(
        id="speak-requests",
        level=SurfaceAlertLevel.HIGH,
        title="Speak requests queued",
        detail=f"{count} operators are waiting for speaking authority.",
    )


SURFACE_ALERT_RULES: List[Callable[[SurfaceInputs], Optional[CommandSurfaceAlert]]] = [
    _critical_callout_alert,
    _degraded_net_alert,
    _contested_zone_alert,
    _stale_intel_alert,
    _speak_request_alert,
]


def build_surface_alerts(inputs: SurfaceInputs) -> List[CommandSurfaceAlert]:
    alerts = [alert for alert in (rule(inputs) for rule in SURFACE_ALERT_RULES) if alert]
    alerts.sort(key=lambda a: (-_LEVEL_RANK[a.level], a.id))
    return alerts[:MAX_SURFACE_ALERTS]


def build_macro_recommendations(
    inference: MapInferenceSnapshot,
    alerts: List[CommandSurfaceAlert],
) -> List[MacroRecommendation]:
    candidates: List[MacroRecommendation] = []
    for action in inference.prioritized_actions:
        macro_id = MACRO_BY_ACTION.get(action.id)
        if macro_id is None:
            continue
        candidates.append(MacroRecommendation(
            macro_id=macro_id,
            label=MACRO_LABELS[macro_id],
            rationale=action.rationale,
            priority=action.priority.value,
        ))
    for alert in alerts:
        macro_id = MACRO_BY_ALERT.get(alert.id)
        if macro_id is None:
            continue
        candidates.append(MacroRecommendation(
            macro_id=macro_id,
            label=MACRO_LABELS[macro_id],
            rationale=alert.detail,
            priority=_ALERT_PRIORITY[alert.level],
        ))

    seen = set()
    macros = []
    for macro in candidates:
        if macro.macro_id in seen:
            continue
        seen.add(macro.macro_id)
        macros.append(macro)
    return macros[:MAX_RECOMMENDED_MACROS]


def build_map_command_surface(
    inference: MapInferenceSnapshot,
    comms_overlay=None,
    pending_speak_requests: int = 0,
    now_ms: Optional[int] = None,
) -> MapCommandSurface:
    """Alerts and deduplicated macro recommendations for the map action queue."""
    pending = max(0, int(finite_float(pending_speak_requests)))
    inputs = SurfaceInputs(inference, coerce_comms_overlay(comms_overlay), pending)
    alerts = build_surface_alerts(inputs)
    return MapCommandSurface(
        generated_at=iso_from_ms(resolve_now_ms(now_ms)),
        alerts=alerts,
        recommended_macros=build_macro_recommendations(inference, alerts),
    )
