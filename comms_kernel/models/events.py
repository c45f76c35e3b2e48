"""Comms Event — one entry of the append-only tactical event stream."""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, field_validator

from comms_kernel.models.coerce import finite_float


def _text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


class CommsEvent(BaseModel):
    """
    An immutable record from the event source.

    The engine never mutates or deletes events. Ordering is by created_at,
    ties broken by id.
    """

    id: str = ""
    channel_id: str = ""
    event_type: str = ""                    # e.g. "HOLD", "ROGER", "DOWNED"
    author_id: str = ""
    payload: dict = {}                      # Opaque; may carry directive / dispatchId
    confidence: float = 0.0
    ttl_seconds: int = 0
    created_at: Optional[Union[datetime, str]] = None

    @field_validator("id", "channel_id", "author_id", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return _text(value)

    @field_validator("event_type", mode="before")
    @classmethod
    def _coerce_event_type(cls, value):
        return _text(value).upper()

    @field_validator("payload", mode="before")
    @classmethod
    def _coerce_payload(cls, value):
        return value if isinstance(value, dict) else {}

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value):
        return finite_float(value)

    @field_validator("ttl_seconds", mode="before")
    @classmethod
    def _coerce_ttl(cls, value):
        return int(finite_float(value))

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, value):
        if isinstance(value, (datetime, str)):
            return value
        return None
