"""
Comms Kernel API — FastAPI endpoints.

Exposes the engine via a REST API for:
- Channel health and full snapshot evaluation
- Incident transitions and directive dispatch tracking
- Map inference and the command surface
- Acquisition policy checks
- Workspace state persistence
- Engine configuration
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from comms_kernel.governance.acquisition import (
    DEFAULT_ACQUISITION_POLICY,
    AcquisitionPolicy,
    AcquisitionPolicyError,
)
from comms_kernel.health.model import build_channel_health, count_degraded_channels
from comms_kernel.incidents.lifecycle import (
    apply_incident_transition,
    can_transition_incident_status,
    incident_directive_for_status,
)
from comms_kernel.inference.command_surface import build_map_command_surface
from comms_kernel.inference.map_engine import build_map_inference_brief, compute_map_inference
from comms_kernel.models.config import EngineConfig
from comms_kernel.models.incident import IncidentStatus
from comms_kernel.models.snapshot import CommsSnapshot
from comms_kernel.reconciler.dispatch import (
    create_directive_dispatch_record,
    reconcile_directive_dispatches,
)
from comms_kernel.reconciler.snapshot import evaluate_comms_snapshot
from comms_kernel.sync.queue import WorkspaceStateSyncQueue
from comms_kernel.sync.store import (
    DEFAULT_LIST_LIMIT,
    InMemorySnapshotStore,
    normalize_namespace,
    normalize_scope_key,
)

logger = logging.getLogger(__name__)


# --- Request/Response Models ---

class ChannelHealthRequest(BaseModel):
    channels: list = []


class EvaluateRequest(BaseModel):
    channels: list = []
    events: list = []
    dispatches: list = []
    status_by_id: Dict[str, str] = {}
    active_speakers: int = 0
    now_ms: Optional[int] = None


class IncidentTransitionRequest(BaseModel):
    status_by_id: Dict[str, str]
    incident_id: str
    target_status: str
    channel_id: str = ""
    now_ms: Optional[int] = None


class DispatchCreateRequest(BaseModel):
    channel_id: str
    directive: str = ""
    event_type: str
    lane_id: Optional[str] = None
    incident_id: Optional[str] = None
    now_ms: Optional[int] = None


class DispatchReconcileRequest(BaseModel):
    dispatches: list = []
    events: list = []
    incidents: list = []
    now_ms: Optional[int] = None


class MapInferenceRequest(BaseModel):
    control_zones: list = []
    comms_overlay: dict = {}
    intel_objects: list = []
    focus_operation_id: str = ""
    acquisition_mode: Optional[str] = None
    strict_compliance: Optional[bool] = None
    now_ms: Optional[int] = None


class CommandSurfaceRequest(MapInferenceRequest):
    pending_speak_requests: int = 0


class AcquisitionCheckRequest(BaseModel):
    mode: str
    source: str
    confirmed: bool = False


class WorkspaceStateSaveRequest(BaseModel):
    namespace: str = ""
    scope_key: str = ""
    schema_version: int = 1
    state: Any = None
    debounce_ms: Optional[int] = None


# --- Application Factory ---

def create_app(
    sync_queue: Optional[WorkspaceStateSyncQueue] = None,
    engine_config: Optional[EngineConfig] = None,
    policy: Optional[AcquisitionPolicy] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Comms Kernel API",
        description="Tactical comms intelligence engine",
        version="0.1.0-alpha",
    )

    queue = sync_queue or WorkspaceStateSyncQueue(store=InMemorySnapshotStore())
    acquisition_policy = policy or DEFAULT_ACQUISITION_POLICY

    app.state.sync_queue = queue
    app.state.engine_config = engine_config or EngineConfig()
    app.state.policy = acquisition_policy

    def _inference(req: MapInferenceRequest):
        return compute_map_inference(
            control_zones=req.control_zones,
            comms_overlay=req.comms_overlay,
            intel_objects=req.intel_objects,
            focus_operation_id=req.focus_operation_id,
            acquisition_mode=req.acquisition_mode,
            strict_compliance=req.strict_compliance,
            now_ms=req.now_ms,
            policy=acquisition_policy,
        )

    # === COMMS ===

    @app.post("/comms/channel-health")
    def channel_health(req: ChannelHealthRequest):
        """Score every channel in the request."""
        health = build_channel_health(req.channels)
        return {
            "channels": [h.model_dump(mode="json") for h in health],
            "degraded_channel_count": count_degraded_channels(health),
        }

    @app.post("/comms/evaluate")
    def evaluate(req: EvaluateRequest):
        """Run the full comms pipeline over one snapshot."""
        snapshot = CommsSnapshot(channels=req.channels, events=req.events, dispatches=req.dispatches)
        evaluation = evaluate_comms_snapshot(
            snapshot,
            status_by_id=req.status_by_id,
            active_speakers=req.active_speakers,
            now_ms=req.now_ms,
            config=app.state.engine_config,
        )
        return evaluation.model_dump(mode="json")

    @app.post("/comms/incidents/transition")
    def transition_incident(req: IncidentTransitionRequest):
        """Move one incident along the lifecycle; emits the matching directive dispatch."""
        if req.incident_id not in req.status_by_id:
            raise HTTPException(404, "Incident not found")
        try:
            target = IncidentStatus(req.target_status.strip().upper())
        except ValueError:
            raise HTTPException(409, f"Unknown incident status: {req.target_status}") from None
        current = req.status_by_id[req.incident_id]
        if not can_transition_incident_status(current, target):
            raise HTTPException(409, f"Illegal transition {current} -> {target.value}")

        updated, _ = apply_incident_transition(req.status_by_id, req.incident_id, target)
        dispatch = None
        directive = incident_directive_for_status(target)
        if directive and IncidentStatus(current) != target:
            dispatch = create_directive_dispatch_record(
                channel_id=req.channel_id,
                directive=directive,
                event_type=directive,
                incident_id=req.incident_id,
                now_ms=req.now_ms,
            )
        return {
            "status_by_id": updated,
            "dispatch": dispatch.model_dump(mode="json") if dispatch else None,
        }

    @app.post("/comms/dispatches")
    def create_dispatch(req: DispatchCreateRequest):
        """Record a directive about to be emitted."""
        record = create_directive_dispatch_record(
            channel_id=req.channel_id,
            directive=req.directive,
            event_type=req.event_type,
            lane_id=req.lane_id,
            incident_id=req.incident_id,
            now_ms=req.now_ms,
        )
        return record.model_dump(mode="json")

    @app.post("/comms/dispatches/reconcile")
    def reconcile_dispatches(req: DispatchReconcileRequest):
        """Advance dispatch statuses against visible events and incidents."""
        reconciled = reconcile_directive_dispatches(
            req.dispatches,
            req.events,
            req.incidents,
            now_ms=req.now_ms,
            max_items=app.state.engine_config.max_dispatches,
        )
        return [d.model_dump(mode="json") for d in reconciled]

    # === MAP ===

    @app.post("/map/inference")
    def map_inference(req: MapInferenceRequest):
        """Risk, confidence and ranked actions for the map overlay."""
        snapshot = _inference(req)
        return {
            "inference": snapshot.model_dump(mode="json"),
            "brief": build_map_inference_brief(snapshot),
        }

    @app.post("/map/command-surface")
    def command_surface(req: CommandSurfaceRequest):
        """Inference plus alerts and macro recommendations."""
        snapshot = _inference(req)
        surface = build_map_command_surface(
            snapshot,
            comms_overlay=req.comms_overlay,
            pending_speak_requests=req.pending_speak_requests,
            now_ms=req.now_ms,
        )
        return {
            "inference": snapshot.model_dump(mode="json"),
            "surface": surface.model_dump(mode="json"),
        }

    # === ACQUISITION POLICY ===

    @app.post("/acquisition/check")
    def check_acquisition(req: AcquisitionCheckRequest):
        """Reject evidence the mode does not admit (403 with the policy code)."""
        try:
            acquisition_policy.assert_source_allowed(req.mode, req.source, confirmed=req.confirmed)
        except AcquisitionPolicyError as e:
            logger.info("Acquisition rejected: %s", e)
            raise HTTPException(403, e.to_dict()) from e
        return {
            "allowed": True,
            "mode": req.mode.strip().upper(),
            "source": req.source.strip().upper(),
            "requires_confirmation": acquisition_policy.requires_confirmation(req.mode, req.source),
        }

    @app.get("/acquisition/sources/{mode}")
    def allowed_sources(mode: str):
        """Evidence sources admitted under a mode."""
        return [s.value for s in acquisition_policy.allowed_sources(mode)]

    # === WORKSPACE STATE ===

    @app.post("/workspace-state")
    def save_workspace_state(req: WorkspaceStateSaveRequest):
        """Queue a debounced save. queued=false means the write was refused."""
        queued = queue.enqueue(
            req.namespace,
            req.scope_key,
            req.schema_version,
            req.state,
            debounce_ms=req.debounce_ms,
        )
        return {"queued": queued, "pending_keys": len(queue.pending_keys())}

    @app.post("/workspace-state/flush")
    def flush_workspace_state():
        """Deliver every pending save now."""
        return {"delivered": queue.flush_all()}

    @app.get("/workspace-state/{namespace}/{scope_key}")
    def load_workspace_state(namespace: str, scope_key: str):
        """Latest persisted snapshot for a key."""
        snapshot = queue.load(namespace, scope_key)
        if snapshot is None:
            raise HTTPException(404, "Workspace state not found")
        return snapshot.model_dump(mode="json")

    @app.delete("/workspace-state/{namespace}/{scope_key}")
    def clear_workspace_state(namespace: str, scope_key: str):
        """Cancel any pending save for the key and delete its snapshot."""
        affected = queue.clear(namespace, scope_key)
        return {
            "namespace": normalize_namespace(namespace),
            "scope_key": normalize_scope_key(scope_key),
            "affected": affected,
        }

    @app.get("/workspace-state")
    def list_workspace_state(namespace: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT):
        """Newest persisted snapshots first, without their state."""
        return [s.model_dump(mode="json") for s in queue.list_snapshots(namespace, limit)]

    # === CONFIG ===

    @app.get("/config/engine")
    def get_engine_config():
        """Current engine configuration."""
        return app.state.engine_config.model_dump()

    @app.put("/config/engine")
    def update_engine_config(config: EngineConfig):
        """Update engine configuration."""
        app.state.engine_config = config
        return config.model_dump()

    return app


# Default application instance
app = create_app()
