"""
Map Inference Engine — weighted command-risk and confidence estimate.

Combines control-zone signals, the comms overlay and intel freshness into
four clamped factors, an independent risk score, an evidence-driven
confidence score and a ranked action queue.

Evidence-trust gating: under strict compliance (the default for MANUAL_ONLY)
a callout only counts when its evidence source is admitted by the
acquisition policy for the current mode, and carries confirmed=True where
the policy requires confirmation. Everything excluded is reported in
compliance_diagnostics; the engine never substitutes missing evidence.

The numeric weights below are calibration constants. Keep them exact.
"""

import sys
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from comms_kernel.clock import clamp, iso_from_ms, js_round, resolve_now_ms
from comms_kernel.governance.acquisition import (
    DEFAULT_ACQUISITION_MODE,
    DEFAULT_ACQUISITION_POLICY,
    AcquisitionPolicy,
    coerce_acquisition_mode,
)
from comms_kernel.models.coerce import coerce_records
from comms_kernel.models.inference import (
    AcquisitionMode,
    ActionPriority,
    CommsCallout,
    CommsLink,
    CommsNet,
    ComplianceDiagnostics,
    ControlZone,
    EvidenceCounts,
    InferenceFactor,
    IntelObject,
    MapCommsOverlay,
    MapInferenceSnapshot,
    PrioritizedAction,
    ProjectedLoadBand,
)

CONTESTED_ZONE_LEVEL = 0.45
MAX_PRIORITIZED_ACTIONS = 5

FACTOR_WEIGHTS = {
    "zones": 0.30,
    "comms": 0.32,
    "intel": 0.18,
    "tempo": 0.20,
}

_CALLOUT_RANK = {"CRITICAL": 3, "HIGH": 2, "STANDARD": 1}


class InferenceCounts:
    """Raw counts every score, factor and rule is computed from."""

    def __init__(
        self,
        contested_zone_count: int = 0,
        degraded_net_count: int = 0,
        stale_intel_count: int = 0,
        critical_callout_count: int = 0,
        high_callout_count: int = 0,
        zone_signal_count: int = 0,
        comms_signal_count: int = 0,
        intel_signal_count: int = 0,
        projected_load_score: float = 0.0,
    ):
        self.contested_zone_count = contested_zone_count
        self.degraded_net_count = degraded_net_count
        self.stale_intel_count = stale_intel_count
        self.critical_callout_count = critical_callout_count
        self.high_callout_count = high_callout_count
        self.zone_signal_count = zone_signal_count
        self.comms_signal_count = comms_signal_count
        self.intel_signal_count = intel_signal_count
        self.projected_load_score = projected_load_score

    @property
    def evidence_total(self) -> int:
        return self.zone_signal_count + self.comms_signal_count + self.intel_signal_count

    @property
    def load_band(self) -> ProjectedLoadBand:
        return projected_load_band(self.projected_load_score)


def projected_load_band(score: float) -> ProjectedLoadBand:
    if score >= 70:
        return ProjectedLoadBand.HIGH
    if score >= 35:
        return ProjectedLoadBand.MED
    return ProjectedLoadBand.LOW


def is_trusted_callout(
    callout: CommsCallout,
    mode: AcquisitionMode,
    strict_compliance: bool,
    policy: AcquisitionPolicy = DEFAULT_ACQUISITION_POLICY,
    current_time: Optional[datetime] = None,
) -> bool:
    if not strict_compliance:
        return True
    if not callout.evidence_source:
        return False
    if not policy.is_source_allowed(mode, callout.evidence_source, current_time):
        return False
    if policy.requires_confirmation(mode, callout.evidence_source) and not callout.confirmed:
        return False
    return True


def compute_command_risk_score(counts: InferenceCounts) -> int:
    return int(clamp(
        counts.contested_zone_count * 18
        + counts.degraded_net_count * 14
        + counts.critical_callout_count * 22
        + counts.high_callout_count * 8
        + min(counts.stale_intel_count * 6, 22),
        0,
        100,
    ))


def compute_confidence_score(counts: InferenceCounts) -> int:
    return int(clamp(
        js_round(min(counts.evidence_total, 80) / 80 * 100)
        - counts.stale_intel_count * 5
        - max(0, counts.degraded_net_count - 1) * 4,
        8,
        96,
    ))


def build_factors(counts: InferenceCounts) -> List[InferenceFactor]:
    zones = clamp(js_round(counts.contested_zone_count * 28 + min(counts.zone_signal_count, 12) * 2), 0, 100)
    comms = clamp(js_round(
        counts.degraded_net_count * 24
        + counts.critical_callout_count * 22
        + counts.high_callout_count * 8
    ), 0, 100)
    intel = clamp(js_round(counts.stale_intel_count * 22 + min(counts.intel_signal_count, 8) * 2), 0, 100)
    tempo = clamp(js_round(min(counts.projected_load_score, 40) * 2.2), 0, 100)

    if counts.load_band == ProjectedLoadBand.HIGH:
        tempo_rationale = "Projected comms load is high and likely to reduce command bandwidth."
    elif counts.load_band == ProjectedLoadBand.MED:
        tempo_rationale = "Projected comms load is moderate and should be monitored."
    else:
        tempo_rationale = "Projected command tempo remains manageable."

    return [
        InferenceFactor(
            id="zones",
            score=int(zones),
            weight=FACTOR_WEIGHTS["zones"],
            rationale=(
                f"{counts.contested_zone_count} contested zones are currently affecting control confidence."
                if counts.contested_zone_count > 0
                else "No contested control zones detected in scoped records."
            ),
            evidence_refs=[f"zone-signals:{counts.zone_signal_count}"],
        ),
        InferenceFactor(
            id="comms",
            score=int(comms),
            weight=FACTOR_WEIGHTS["comms"],
            rationale=(
                f"Comms pressure is elevated with {counts.degraded_net_count} degraded nets "
                f"and {counts.critical_callout_count} critical callouts."
                if counts.degraded_net_count > 0 or counts.critical_callout_count > 0
                else "Comms network quality is nominal for scoped lanes."
            ),
            evidence_refs=[f"comms-signals:{counts.comms_signal_count}"],
        ),
        InferenceFactor(
            id="intel",
            score=int(intel),
            weight=FACTOR_WEIGHTS["intel"],
            rationale=(
                f"{counts.stale_intel_count} stale intel records reduce confidence in current assumptions."
                if counts.stale_intel_count > 0
                else "Intel freshness is within expected bounds."
            ),
            evidence_refs=[f"intel-signals:{counts.intel_signal_count}"],
        ),
        InferenceFactor(
            id="tempo",
            score=int(tempo),
            weight=FACTOR_WEIGHTS["tempo"],
            rationale=tempo_rationale,
            evidence_refs=[f"load-score:{js_round(counts.projected_load_score)}"],
        ),
    ]


# --- Recommendation and action rules (evaluated top to bottom) ---

RECOMMENDATION_RULES: List[Tuple[Callable[[InferenceCounts], bool], str]] = [
    (
        lambda c: c.critical_callout_count > 0,
        "Escalate command posture and enforce single authoritative speaking lane.",
    ),
    (
        lambda c: c.degraded_net_count > 0,
        "Shift cross-net relay to hardened bridge pairs and throttle non-essential traffic.",
    ),
    (
        lambda c: c.contested_zone_count > 0,
        "Queue immediate reconnaissance refresh for contested control zones before route commits.",
    ),
    (
        lambda c: c.stale_intel_count > 0,
        "Mark stale intel as advisory-only and require renewed confirmation before tasking.",
    ),
    (
        lambda c: c.load_band == ProjectedLoadBand.HIGH,
        "Pre-stage reserve command staff for overflow coordination and casualty response.",
    ),
]

DEFAULT_RECOMMENDATION = (
    "Maintain current command cadence and continue periodic intel/comms validation sweeps."
)

ACTION_RULES: List[Tuple[Callable[[InferenceCounts], bool], PrioritizedAction]] = [
    (
        lambda c: c.critical_callout_count > 0,
        PrioritizedAction(
            id="stabilize-speaking-lane",
            priority=ActionPriority.NOW,
            title="Stabilize speaking authority",
            rationale="Critical callouts are active and require command-lane discipline.",
            expected_impact="Reduces overlap and speeds command acknowledgement.",
        ),
    ),
    (
        lambda c: c.degraded_net_count > 0,
        PrioritizedAction(
            id="rebalance-bridges",
            priority=ActionPriority.NOW,
            title="Rebalance degraded nets",
            rationale="At least one net is degraded/contested and needs rerouting.",
            expected_impact="Improves relay clarity and lowers missed transmissions.",
        ),
    ),
    (
        lambda c: c.contested_zone_count > 0,
        PrioritizedAction(
            id="refresh-zone-recon",
            priority=ActionPriority.NEXT,
            title="Refresh contested zone recon",
            rationale="Control claims are contested and need updated evidence.",
            expected_impact="Increases confidence before movement commitments.",
        ),
    ),
    (
        lambda c: c.stale_intel_count > 0,
        PrioritizedAction(
            id="revalidate-stale-intel",
            priority=ActionPriority.NEXT,
            title="Revalidate stale intel",
            rationale="Stale intel should not drive primary tasking decisions.",
            expected_impact="Reduces probability of acting on expired assumptions.",
        ),
    ),
    (
        lambda c: c.load_band != ProjectedLoadBand.LOW,
        PrioritizedAction(
            id="prestage-command-overflow",
            priority=ActionPriority.WATCH,
            title="Pre-stage overflow coordination",
            rationale="Projected comms load may exceed current command capacity.",
            expected_impact="Protects command tempo during spike windows.",
        ),
    ),
]


def _callout_hint(callouts: List[CommsCallout]) -> Optional[str]:
    live = [c for c in callouts if not c.stale]
    if not live:
        return None
    highest = max(live, key=lambda c: _CALLOUT_RANK.get(c.priority, 1))
    lane = highest.lane or highest.net_id or "UNKNOWN"
    return f"Prioritize {highest.priority} comms lane {lane} and rebalance monitoring coverage."


def build_recommendations(counts: InferenceCounts, trusted_callouts: List[CommsCallout]) -> List[str]:
    recommendations = [text for predicate, text in RECOMMENDATION_RULES if predicate(counts)]
    hint = _callout_hint(trusted_callouts)
    if hint:
        recommendations.append(hint)
    if not recommendations:
        recommendations.append(DEFAULT_RECOMMENDATION)
    return recommendations


def build_prioritized_actions(counts: InferenceCounts, recommendations: List[str]) -> List[PrioritizedAction]:
    """Never empty: falls back to a single WATCH maintain-cadence action."""
    actions = [action.model_copy() for predicate, action in ACTION_RULES if predicate(counts)]
    if not actions:
        actions.append(PrioritizedAction(
            id="maintain-cadence",
            priority=ActionPriority.WATCH,
            title="Maintain current cadence",
            rationale=recommendations[0] if recommendations else "No immediate escalations detected.",
            expected_impact="Keeps operations steady while continuing periodic validation.",
        ))
    return actions[:MAX_PRIORITIZED_ACTIONS]


def projected_load(nets: Iterable[CommsNet]) -> float:
    """Summed net traffic, kept finite so the snapshot stays serialisable."""
    total = sum(net.traffic_score for net in nets)
    if total != total:  # opposing overflows
        return 0.0
    return clamp(total, -sys.float_info.max, sys.float_info.max)


def coerce_comms_overlay(overlay) -> MapCommsOverlay:
    if isinstance(overlay, MapCommsOverlay):
        return overlay
    if isinstance(overlay, dict):
        return MapCommsOverlay(
            nets=coerce_records(overlay.get("nets"), CommsNet),
            links=coerce_records(overlay.get("links"), CommsLink),
            callouts=coerce_records(overlay.get("callouts"), CommsCallout),
        )
    return MapCommsOverlay()


def compute_map_inference(
    control_zones: Optional[Iterable] = None,
    comms_overlay=None,
    intel_objects: Optional[Iterable] = None,
    focus_operation_id: str = "",
    acquisition_mode: Optional[AcquisitionMode] = None,
    strict_compliance: Optional[bool] = None,
    now_ms: Optional[int] = None,
    policy: AcquisitionPolicy = DEFAULT_ACQUISITION_POLICY,
) -> MapInferenceSnapshot:
    """Recompute the full inference snapshot. Stateless."""
    now = resolve_now_ms(now_ms)
    mode = coerce_acquisition_mode(acquisition_mode) or DEFAULT_ACQUISITION_MODE
    strict = strict_compliance if isinstance(strict_compliance, bool) else mode == AcquisitionMode.MANUAL_ONLY

    zones = coerce_records(control_zones, ControlZone)
    intel = coerce_records(intel_objects, IntelObject)
    overlay = coerce_comms_overlay(comms_overlay)
    callouts = overlay.callouts
    evaluated_at = iso_from_ms(now)

    trusted = [c for c in callouts if is_trusted_callout(c, mode, strict, policy, evaluated_at)]
    missing_metadata = sum(1 for c in callouts if not c.evidence_source)
    untrusted = sum(
        1 for c in callouts
        if c.evidence_source and not is_trusted_callout(c, mode, strict, policy, evaluated_at)
    )

    counts = InferenceCounts(
        contested_zone_count=sum(1 for z in zones if z.contestation_level >= CONTESTED_ZONE_LEVEL),
        degraded_net_count=sum(1 for n in overlay.nets if n.quality != "CLEAR"),
        stale_intel_count=sum(1 for i in intel if i.stale),
        critical_callout_count=sum(1 for c in trusted if not c.stale and c.priority == "CRITICAL"),
        high_callout_count=sum(1 for c in trusted if not c.stale and c.priority == "HIGH"),
        zone_signal_count=sum(len(z.signals) for z in zones),
        comms_signal_count=len(overlay.nets) + len(overlay.links) + len(trusted),
        intel_signal_count=len(intel),
        projected_load_score=projected_load(overlay.nets),
    )

    recommendations = build_recommendations(counts, trusted)

    return MapInferenceSnapshot(
        generated_at=evaluated_at,
        focus_operation_id=focus_operation_id or "",
        command_risk_score=compute_command_risk_score(counts),
        confidence_score=compute_confidence_score(counts),
        contested_zone_count=counts.contested_zone_count,
        degraded_net_count=counts.degraded_net_count,
        stale_intel_count=counts.stale_intel_count,
        critical_callout_count=counts.critical_callout_count,
        high_callout_count=counts.high_callout_count,
        projected_load_score=counts.projected_load_score,
        projected_load_band=counts.load_band,
        recommendations=recommendations,
        factors=build_factors(counts),
        prioritized_actions=build_prioritized_actions(counts, recommendations),
        evidence=EvidenceCounts(
            zone_signals=counts.zone_signal_count,
            comms_signals=counts.comms_signal_count,
            intel_signals=counts.intel_signal_count,
        ),
        compliance_diagnostics=ComplianceDiagnostics(
            mode=mode,
            strict_compliance=strict,
            total_callouts=len(callouts),
            included_callouts=len(trusted),
            dropped_callouts=max(0, len(callouts) - len(trusted)),
            missing_metadata_callouts=missing_metadata,
            untrusted_callouts=untrusted,
        ),
    )


def build_map_inference_brief(snapshot: MapInferenceSnapshot) -> str:
    """Plain-text command estimate that restates only recorded figures."""
    diagnostics = snapshot.compliance_diagnostics
    return "\n".join([
        "Provide a concise tactical command estimate using only provided records.",
        "Do not invent telemetry or external facts.",
        f"Risk score: {snapshot.command_risk_score}/100",
        f"Confidence score: {snapshot.confidence_score}/100",
        f"Contested zones: {snapshot.contested_zone_count}",
        f"Degraded nets: {snapshot.degraded_net_count}",
        f"Critical callouts: {snapshot.critical_callout_count}",
        f"Stale intel records: {snapshot.stale_intel_count}",
        f"Load band: {snapshot.projected_load_band.value}",
        (
            f"Compliance: mode={diagnostics.mode.value}, strict={str(diagnostics.strict_compliance).lower()}, "
            f"callouts included={diagnostics.included_callouts}/{diagnostics.total_callouts}"
        ),
        (
            f"Evidence counts - zone: {snapshot.evidence.zone_signals}, "
            f"comms: {snapshot.evidence.comms_signals}, intel: {snapshot.evidence.intel_signals}"
        ),
        "Prioritized actions: " + " | ".join(
            f"{a.priority.value}:{a.title}" for a in snapshot.prioritized_actions
        ),
        "Recommended actions: " + " | ".join(snapshot.recommendations),
    ])
