"""Workspace state models — pending queue entries and persisted snapshots."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class WorkspaceStateQueueEntry(BaseModel):
    """At most one pending entry per namespace:scope_key."""

    namespace: str
    scope_key: str
    schema_version: int = 1
    state: Any = None
    debounce_ms: int
    enqueued_at_ms: int

    @property
    def key(self) -> str:
        return f"{self.namespace}:{self.scope_key}"


class WorkspaceStateSnapshot(BaseModel):
    """What a snapshot store returns from load()."""

    namespace: str
    scope_key: str
    schema_version: int = 1
    state: Any = None
    persisted_at: datetime
    bytes: int = 0


class WorkspaceStateSummary(BaseModel):
    """One row of a snapshot listing; the state itself is not included."""

    namespace: str
    scope_key: str
    schema_version: int = 1
    persisted_at: datetime
    bytes: int = 0
