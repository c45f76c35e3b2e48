"""Comms Kernel data models."""

from comms_kernel.models.channel import (
    ChannelDirective,
    ChannelHealth,
    ChannelInput,
    DisciplineTier,
)
from comms_kernel.models.command_surface import (
    CommandSurfaceAlert,
    MacroRecommendation,
    MapCommandSurface,
    SurfaceAlertLevel,
    TacticalMacroId,
)
from comms_kernel.models.config import EngineConfig, SyncQueueConfig
from comms_kernel.models.directive import (
    AlertSeverity,
    DirectiveDispatchRecord,
    DirectiveThreadLane,
    DisciplineAlert,
    DispatchStatus,
    LaneAction,
)
from comms_kernel.models.events import CommsEvent
from comms_kernel.models.incident import (
    IncidentCandidate,
    IncidentPriority,
    IncidentRecord,
    IncidentSource,
    IncidentStatus,
)
from comms_kernel.models.inference import (
    AcquisitionMode,
    ActionPriority,
    CommsCallout,
    CommsLink,
    CommsNet,
    ComplianceDiagnostics,
    ControlZone,
    EvidenceCounts,
    EvidenceSource,
    InferenceFactor,
    IntelObject,
    MapCommsOverlay,
    MapInferenceSnapshot,
    PrioritizedAction,
    ProjectedLoadBand,
)
from comms_kernel.models.snapshot import CommsSnapshot, CommsSnapshotEvaluation
from comms_kernel.models.workspace import (
    WorkspaceStateQueueEntry,
    WorkspaceStateSnapshot,
    WorkspaceStateSummary,
)

__all__ = [
    "AcquisitionMode",
    "ActionPriority",
    "AlertSeverity",
    "ChannelDirective",
    "ChannelHealth",
    "ChannelInput",
    "CommandSurfaceAlert",
    "CommsCallout",
    "CommsEvent",
    "CommsLink",
    "CommsNet",
    "CommsSnapshot",
    "CommsSnapshotEvaluation",
    "ComplianceDiagnostics",
    "ControlZone",
    "DirectiveDispatchRecord",
    "DirectiveThreadLane",
    "DisciplineAlert",
    "DisciplineTier",
    "DispatchStatus",
    "EngineConfig",
    "EvidenceCounts",
    "EvidenceSource",
    "IncidentCandidate",
    "IncidentPriority",
    "IncidentRecord",
    "IncidentSource",
    "IncidentStatus",
    "InferenceFactor",
    "IntelObject",
    "LaneAction",
    "MacroRecommendation",
    "MapCommandSurface",
    "MapCommsOverlay",
    "MapInferenceSnapshot",
    "PrioritizedAction",
    "ProjectedLoadBand",
    "SurfaceAlertLevel",
    "SyncQueueConfig",
    "TacticalMacroId",
    "WorkspaceStateQueueEntry",
    "WorkspaceStateSnapshot",
    "WorkspaceStateSummary",
]
