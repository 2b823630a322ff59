"""Waitlist (access gate) models."""

import re
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


class WaitlistStatus(str, Enum):
    """Access gate states."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class WaitlistDecision(str, Enum):
    """Owner decisions on a pending request."""
    ACCEPT = "accept"
    DECLINE = "decline"

    @property
    def target_status(self) -> WaitlistStatus:
        return WaitlistStatus.ACCEPTED if self is WaitlistDecision.ACCEPT else WaitlistStatus.DECLINED


NO_REQUEST = "none"


class ContactInfo(BaseModel):
    """Buyer contact fields, snapshotted when access is requested."""
    name: str = Field(..., min_length=1, max_length=120, description="Requester name")
    email: Optional[str] = Field(None, max_length=254, description="Requester e-mail")
    phone: Optional[str] = Field(None, max_length=32, description="Requester phone")

    @field_validator("name", "email", "phone", mode="before")
    @classmethod
    def strip_blank(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("email")
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _EMAIL_RE.match(value):
            raise ValueError("email address is not valid")
        return value

    @field_validator("phone")
    @classmethod
    def check_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(re.sub(r'\D', '', value)) < 10:
            raise ValueError("phone number must have at least 10 digits")
        return value

    @model_validator(mode="after")
    def require_channel(self) -> "ContactInfo":
        if not self.email and not self.phone:
            raise ValueError("an e-mail address or a phone number is required")
        return self


class WaitlistRequest(BaseModel):
    """One buyer's request for access to one property."""
    id: str = Field(..., description="Request ID")
    property_id: str = Field(..., description="Property ID")
    user_id: str = Field(..., description="Requesting buyer ID")
    name: str = Field(..., description="Contact name snapshot")
    email: Optional[str] = Field(None, description="Contact e-mail snapshot")
    phone: Optional[str] = Field(None, description="Contact phone snapshot")
    status: WaitlistStatus = Field(default=WaitlistStatus.PENDING)
    version: int = Field(default=0, ge=0, description="Compare-and-swap counter")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_open(self) -> bool:
        """Pending or accepted requests block a new request for the same pair."""
        return self.status in (WaitlistStatus.PENDING, WaitlistStatus.ACCEPTED)
