"""Notification and outbox models."""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Notification kinds understood by the notification centre."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    WAITLIST = "waitlist"
    OFFER = "offer"
    COUNTER_OFFER = "counter_offer"


class Notification(BaseModel):
    """Per-recipient notification row."""
    id: str = Field(..., description="Notification ID")
    user_id: str = Field(..., description="Recipient ID")
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    type: NotificationType = Field(default=NotificationType.INFO)
    properties: dict[str, Any] = Field(
        default_factory=dict,
        description="Correlation payload: propertyId, offerId, counterOfferId, waitlistRequestId, ..."
    )
    read: bool = False
    created_at: Optional[str] = None


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class OutboxEntry(BaseModel):
    """Pending out-of-band delivery of one notification on one channel."""
    id: str = Field(..., description="Outbox entry ID")
    notification_id: str = Field(..., description="Notification being delivered")
    user_id: str = Field(..., description="Recipient ID")
    channel: str = Field(default="email", description="Delivery channel")
    status: OutboxStatus = Field(default=OutboxStatus.PENDING)
    attempts: int = Field(default=0, ge=0)
    next_attempt_at: Optional[str] = None
    last_error: Optional[str] = None
    created_at: Optional[str] = None
    sent_at: Optional[str] = None
