"""Pydantic schemas for messages on the Frigate WebSocket event feed"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# The only topic whose frames can trigger an upload
EVENTS_TOPIC = "events"


class StreamMessage(BaseModel):
    """
    Envelope of every frame on the Frigate WebSocket.

    The payload is left untyped: it is a JSON-encoded string for the
    "events" topic but a number or object on others.
    """

    model_config = ConfigDict(extra="ignore")

    topic: str = ""
    payload: Any = None


class EventDetails(BaseModel):
    """State of a tracked object (the "after" snapshot of an event)"""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    has_clip: bool = False
    label: str = ""
    camera: str = ""
    end_time: Optional[float] = None  # null until the detector finalizes timing
    start_time: Optional[float] = None


class EventPayload(BaseModel):
    """Decoded body of an "events" frame"""

    model_config = ConfigDict(extra="ignore")

    type: str = ""  # new, update or end
    after: EventDetails = Field(default_factory=EventDetails)


@dataclass(frozen=True)
class UploadTask:
    """One clip to fetch from Frigate and store under object_key."""
    source_url: str
    object_key: str
    event_id: str
    camera: str
    event_time: datetime
