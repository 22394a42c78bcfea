"""Models for interaction events posted by the in-page recorder."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, Enum):
    """Interaction event types emitted by the recorder payload."""
    INIT = "INIT"
    CLICK = "CLICK"
    INPUT = "INPUT"
    FORM_SUBMIT = "FORM_SUBMIT"
    NAVIGATION = "NAVIGATION"
    RECORDER_CONTROL = "RECORDER_CONTROL"


class RecordedEvent(BaseModel):
    """One observed interaction, as posted to the ingestion endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra='allow')

    session_id: Optional[str] = Field(default=None, alias='sessionId', description="Owning session")
    type: Union[EventType, str] = Field(description="Event type")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the interaction happened"
    )
    url: Optional[str] = Field(default=None, description="Page URL")
    title: Optional[str] = Field(default=None, description="Page title")
    element_info: Optional[Dict[str, Any]] = Field(
        default=None,
        alias='elementInfo',
        description="Description of the target element"
    )
    value: Optional[Any] = Field(default=None, description="Captured value, masked for passwords")
    from_iframe: bool = Field(default=False, alias='fromIframe', description="Raised inside an iframe")

    @field_validator('timestamp', mode='before')
    @classmethod
    def parse_epoch_millis(cls, v):
        if isinstance(v, (int, float)):
            return datetime.fromtimestamp(v / 1000.0, tz=timezone.utc)
        return v

    @field_validator('type', mode='before')
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str) and v.upper() in EventType._value2member_map_:
            return EventType(v.upper())
        return v
