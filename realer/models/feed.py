"""Change feed event model."""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


class FeedTable(str, Enum):
    WAITLIST_REQUESTS = "waitlist_requests"
    PROPERTY_OFFERS = "property_offers"
    COUNTER_OFFERS = "counter_offers"
    NOTIFICATIONS = "notifications"


class FeedEventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    RESYNC = "RESYNC"


class FeedEvent(BaseModel):
    """Row-level mutation hint addressed to one recipient.

    Subscribers treat events as invalidation hints: re-delivery is possible
    and the store stays authoritative.
    """
    event_id: str = Field(..., description="Stable id; identical on re-delivery")
    recipient_id: str = Field(..., description="User the event is addressed to")
    table: Optional[FeedTable] = Field(None, description="None only for RESYNC")
    event_type: FeedEventType
    record_id: Optional[str] = None
    record: dict[str, Any] = Field(default_factory=dict)
    cursor: int = Field(default=0, ge=0, description="Assigned by the feed on publish")
    created_at: Optional[str] = None
