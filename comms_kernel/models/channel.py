"""Channel models — raw channel stats and the derived health projection."""

from enum import Enum

from pydantic import BaseModel, field_validator

from comms_kernel.models.coerce import finite_float


class DisciplineTier(str, Enum):
    CLEAR = "CLEAR"
    BUSY = "BUSY"
    SATURATED = "SATURATED"


class ChannelDirective(str, Enum):
    NORMAL = "NORMAL"
    LIMIT_NON_ESSENTIAL = "LIMIT_NON_ESSENTIAL"
    REROUTE_MONITOR = "REROUTE_MONITOR"


class ChannelInput(BaseModel):
    """Channel stats as supplied by the data-access layer."""

    id: str = ""
    label: str = ""
    membership_count: float = 0             # Active members on the lane
    intensity: float = 0.0                  # Pre-computed 0-1 traffic figure

    @field_validator("id", "label", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("membership_count", mode="before")
    @classmethod
    def _coerce_membership(cls, value):
        parsed = finite_float(value)
        return parsed if parsed > 0 else 0

    @field_validator("intensity", mode="before")
    @classmethod
    def _coerce_intensity(cls, value):
        return max(0.0, min(1.0, finite_float(value)))


class ChannelHealth(BaseModel):
    """Derived per call; no identity across calls beyond channel_id."""

    channel_id: str
    label: str
    membership_count: float = 0
    intensity: float = 0.0
    quality_pct: int
    latency_ms: int
    discipline: DisciplineTier
    directive: ChannelDirective
