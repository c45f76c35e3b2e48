"""Incident models — derived candidates and their caller-owned status."""

from enum import Enum

from pydantic import BaseModel


class IncidentPriority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MED = "MED"


class IncidentStatus(str, Enum):
    NEW = "NEW"
    ACKED = "ACKED"
    ASSIGNED = "ASSIGNED"
    RESOLVED = "RESOLVED"


class IncidentSource(str, Enum):
    HEALTH = "health"
    EVENT = "event"


class IncidentCandidate(BaseModel):
    """
    A detected degraded condition or notable callout.

    The id is content-derived (health:<channelId> or event:<eventId>) so
    re-deriving from the same source data always yields the same id.
    """

    id: str
    channel_id: str = ""
    source: IncidentSource = IncidentSource.EVENT
    title: str = ""
    detail: str = ""
    priority: IncidentPriority = IncidentPriority.MED
    recommended_action: str = ""
    created_at_ms: int = 0


class IncidentRecord(IncidentCandidate):
    """A candidate joined with its current status."""

    status: IncidentStatus = IncidentStatus.NEW
