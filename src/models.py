from pydantic import BaseModel, Field, HttpUrl, field_validator
from typing import List, Optional, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import uuid


class EventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    PROXY_SELECTED = "proxy_selected"
    PROXY_SWITCHED = "proxy_switched"
    FAILOVER_EXHAUSTED = "failover_exhausted"


class SessionEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType
    session_id: Optional[str] = None
    channel: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = Field(default_factory=dict)


class WebhookConfig(BaseModel):
    url: HttpUrl
    events: List[EventType] = Field(default_factory=lambda: list(EventType))
    # empty means every channel
    channels: List[str] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: int = Field(default=10, ge=1)
    retry_attempts: int = Field(default=3, ge=0)


class SessionCreateRequest(BaseModel):
    channel: str
    preferred_proxy: str = "auto"
    max_attempts: Optional[int] = Field(default=None, ge=1)

    @field_validator('channel')
    @classmethod
    def validate_channel(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("channel cannot be empty")
        if len(v) > 64:
            raise ValueError("channel name too long (max 64 characters)")
        return v
