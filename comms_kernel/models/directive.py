"""Directive models — thread lanes, discipline alerts and outbound dispatches."""

from enum import Enum

from pydantic import BaseModel


class LaneAction(str, Enum):
    ACK = "ACK"
    ASSIGN = "ASSIGN"
    RESTRICT = "RESTRICT"
    REROUTE = "REROUTE"
    CHECKIN = "CHECKIN"


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class DispatchStatus(str, Enum):
    QUEUED = "QUEUED"
    PERSISTED = "PERSISTED"
    ACKED = "ACKED"


class DirectiveThreadLane(BaseModel):
    """One lane per channel, aggregating incident and directive traffic."""

    id: str                                 # lane:<channelId>
    channel_id: str
    label: str
    quality_pct: int
    unresolved_count: int = 0
    critical_count: int = 0
    directive_volume: int = 0
    last_activity_ms: int
    next_action: LaneAction = LaneAction.CHECKIN


class DisciplineAlert(BaseModel):
    """Cross-channel warning; id is derived from the detected condition."""

    id: str
    severity: AlertSeverity
    title: str
    detail: str


class DirectiveDispatchRecord(BaseModel):
    """An outbound directive awaiting persistence and acknowledgement."""

    dispatch_id: str
    channel_id: str
    lane_id: str
    directive: str
    event_type: str
    incident_id: str = ""
    issued_at_ms: int
    status: DispatchStatus = DispatchStatus.QUEUED
