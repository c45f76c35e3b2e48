"""Comms Snapshot — the periodic input bundle and its evaluated result."""

from typing import Dict, List

from pydantic import BaseModel, field_validator

from comms_kernel.models.channel import ChannelHealth, ChannelInput
from comms_kernel.models.coerce import coerce_records
from comms_kernel.models.directive import (
    DirectiveDispatchRecord,
    DirectiveThreadLane,
    DisciplineAlert,
)
from comms_kernel.models.events import CommsEvent
from comms_kernel.models.incident import IncidentRecord, IncidentStatus


class CommsSnapshot(BaseModel):
    """What the external source supplies each poll. Any list may be empty."""

    channels: List[ChannelInput] = []
    events: List[CommsEvent] = []
    dispatches: List[DirectiveDispatchRecord] = []

    @field_validator("channels", mode="before")
    @classmethod
    def _coerce_channels(cls, value):
        return coerce_records(value if isinstance(value, list) else [], ChannelInput)

    @field_validator("events", mode="before")
    @classmethod
    def _coerce_events(cls, value):
        return coerce_records(value if isinstance(value, list) else [], CommsEvent)

    @field_validator("dispatches", mode="before")
    @classmethod
    def _coerce_dispatches(cls, value):
        return coerce_records(value if isinstance(value, list) else [], DirectiveDispatchRecord)


class CommsSnapshotEvaluation(BaseModel):
    channel_health: List[ChannelHealth]
    incidents: List[IncidentRecord]
    status_by_id: Dict[str, IncidentStatus]
    lanes: List[DirectiveThreadLane]
    alerts: List[DisciplineAlert]
    dispatches: List[DirectiveDispatchRecord]
    degraded_channel_count: int = 0
    unresolved_incident_count: int = 0
    critical_incident_count: int = 0
