"""Engine and sync-queue configuration."""

from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Windows and caps for the comms scoring functions."""

    incident_window_minutes: float = Field(gt=0, default=6)
    alert_window_minutes: float = Field(gt=0, default=12)
    stale_incident_minutes: float = Field(gt=0, default=10)
    max_lanes: int = Field(ge=1, default=18)
    max_dispatches: int = Field(ge=1, default=12)
    max_alerts: int = Field(ge=1, default=6)

    @property
    def incident_window_ms(self) -> int:
        return int(self.incident_window_minutes * 60_000)

    @property
    def alert_window_ms(self) -> int:
        return int(self.alert_window_minutes * 60_000)

    @property
    def stale_incident_ms(self) -> int:
        return int(self.stale_incident_minutes * 60_000)


class SyncQueueConfig(BaseModel):
    """Bounds for the workspace state write-behind queue."""

    default_debounce_ms: int = 900
    min_debounce_ms: int = 200
    max_debounce_ms: int = 5000
    max_state_bytes: int = Field(ge=1, default=220_000)
    max_pending_keys: int = Field(ge=1, default=48)
