"""Command Surface — alerts and macro recommendations layered over inference."""

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel


class TacticalMacroId(str, Enum):
    ISSUE_CRITICAL_CALLOUT = "ISSUE_CRITICAL_CALLOUT"
    REROUTE_DEGRADED_NETS = "REROUTE_DEGRADED_NETS"
    REQUEST_ZONE_RECON = "REQUEST_ZONE_RECON"
    REVALIDATE_INTEL = "REVALIDATE_INTEL"
    GRANT_SPEAK_PRIORITY = "GRANT_SPEAK_PRIORITY"
    PRESTAGE_OVERFLOW = "PRESTAGE_OVERFLOW"
    REQUEST_SITREP = "REQUEST_SITREP"


class SurfaceAlertLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MED = "MED"


class CommandSurfaceAlert(BaseModel):
    id: str
    level: SurfaceAlertLevel
    title: str
    detail: str


class MacroRecommendation(BaseModel):
    macro_id: TacticalMacroId
    label: str
    rationale: str
    priority: str                           # "NOW" | "NEXT" | "WATCH"


class MapCommandSurface(BaseModel):
    generated_at: datetime
    alerts: List[CommandSurfaceAlert] = []
    recommended_macros: List[MacroRecommendation] = []
