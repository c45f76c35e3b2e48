"""Map inference models — control zones, comms overlay, intel and the snapshot."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from comms_kernel.models.coerce import finite_float


def _upper_token(value) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value or "").strip().upper()


class AcquisitionMode(str, Enum):
    MANUAL_ONLY = "MANUAL_ONLY"
    PTT_CONFIRMED = "PTT_CONFIRMED"
    ASSISTED = "ASSISTED"


class EvidenceSource(str, Enum):
    OPERATOR_FORM = "OPERATOR_FORM"
    COMMAND_CONSOLE = "COMMAND_CONSOLE"
    CQB_EVENT = "CQB_EVENT"
    VOICE_PTT_CONFIRMED = "VOICE_PTT_CONFIRMED"
    VOICE_TRANSCRIPT = "VOICE_TRANSCRIPT"
    AI_INFERENCE = "AI_INFERENCE"


class ControlZone(BaseModel):
    id: str = ""
    contestation_level: float = 0.0        # 0-1
    signals: List[dict] = []

    @field_validator("contestation_level", mode="before")
    @classmethod
    def _coerce_level(cls, value):
        return finite_float(value)

    @field_validator("signals", mode="before")
    @classmethod
    def _coerce_signals(cls, value):
        return value if isinstance(value, list) else []


class CommsNet(BaseModel):
    id: str = ""
    quality: str = "CLEAR"                  # "CLEAR" | "DEGRADED" | "CONTESTED"
    traffic_score: float = 0.0

    @field_validator("quality", mode="before")
    @classmethod
    def _coerce_quality(cls, value):
        token = _upper_token(value)
        return token or "CLEAR"

    @field_validator("traffic_score", mode="before")
    @classmethod
    def _coerce_traffic(cls, value):
        return finite_float(value)


class CommsLink(BaseModel):
    source_net_id: str = ""
    target_net_id: str = ""


class CommsCallout(BaseModel):
    """A priority callout on a net; evidence metadata drives trust gating."""

    id: str = ""
    net_id: str = ""
    lane: str = ""
    priority: str = "STANDARD"              # "CRITICAL" | "HIGH" | "STANDARD"
    stale: bool = False
    evidence_source: Optional[str] = None
    confirmed: bool = False

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value):
        token = _upper_token(value)
        return token if token in ("CRITICAL", "HIGH", "STANDARD") else "STANDARD"

    @field_validator("evidence_source", mode="before")
    @classmethod
    def _coerce_source(cls, value):
        token = _upper_token(value)
        return token or None


class MapCommsOverlay(BaseModel):
    nets: List[CommsNet] = []
    links: List[CommsLink] = []
    callouts: List[CommsCallout] = []


class IntelObject(BaseModel):
    id: str = ""
    stale: bool = False


class ProjectedLoadBand(str, Enum):
    LOW = "LOW"
    MED = "MED"
    HIGH = "HIGH"


class InferenceFactor(BaseModel):
    id: str                                 # "zones" | "comms" | "intel" | "tempo"
    score: int = Field(ge=0, le=100)
    weight: float
    rationale: str
    evidence_refs: List[str] = []


class ActionPriority(str, Enum):
    NOW = "NOW"
    NEXT = "NEXT"
    WATCH = "WATCH"


class PrioritizedAction(BaseModel):
    id: str
    priority: ActionPriority
    title: str
    rationale: str
    expected_impact: str


class EvidenceCounts(BaseModel):
    zone_signals: int = 0
    comms_signals: int = 0
    intel_signals: int = 0


class ComplianceDiagnostics(BaseModel):
    """What the trust gate excluded, surfaced verbatim to operators."""

    mode: AcquisitionMode
    strict_compliance: bool
    total_callouts: int = 0
    included_callouts: int = 0
    dropped_callouts: int = 0
    missing_metadata_callouts: int = 0
    untrusted_callouts: int = 0


class MapInferenceSnapshot(BaseModel):
    """Stateless, fully recomputed per call."""

    generated_at: datetime
    focus_operation_id: str = ""
    command_risk_score: int = Field(ge=0, le=100)
    confidence_score: int = Field(ge=8, le=96)
    contested_zone_count: int = 0
    degraded_net_count: int = 0
    stale_intel_count: int = 0
    critical_callout_count: int = 0
    high_callout_count: int = 0
    projected_load_score: float = 0.0
    projected_load_band: ProjectedLoadBand = ProjectedLoadBand.LOW
    recommendations: List[str] = []
    factors: List[InferenceFactor] = []
    prioritized_actions: List[PrioritizedAction] = []
    evidence: EvidenceCounts = EvidenceCounts()
    compliance_diagnostics: ComplianceDiagnostics
