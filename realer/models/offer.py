"""Offer negotiation models."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class OfferStatus(str, Enum):
    """Negotiation states. ACCEPTED and DECLINED are absorbing."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COUNTERED = "countered"

    @property
    def is_terminal(self) -> bool:
        return self in (OfferStatus.ACCEPTED, OfferStatus.DECLINED)


class OfferAction(str, Enum):
    """Responses a party can make to an open offer."""
    ACCEPT = "accept"
    DECLINE = "decline"
    COUNTER = "counter"


class Party(str, Enum):
    """Role of a user within one negotiation, derived from stored ids."""
    BUYER = "buyer"
    SELLER = "seller"

    @property
    def other(self) -> "Party":
        return Party.SELLER if self is Party.BUYER else Party.BUYER


class Offer(BaseModel):
    """Buyer-initiated price proposal (property_offers row)."""
    id: str = Field(..., description="Offer ID")
    property_id: str = Field(..., description="Property ID")
    user_id: str = Field(..., description="Buyer ID")
    seller_id: str = Field(..., description="Owner at time of offer")
    offer_amount: int = Field(..., gt=0, description="Original amount")
    is_interested: bool = Field(default=True, description="Buyer still interested")
    proof_of_funds_url: Optional[str] = Field(None, description="Proof-of-funds reference")
    status: OfferStatus = Field(default=OfferStatus.PENDING)
    version: int = Field(default=0, ge=0, description="Compare-and-swap counter")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def party_of(self, user_id: str) -> Optional[Party]:
        """Role of ``user_id`` in this offer, or None for outsiders."""
        if user_id == self.user_id:
            return Party.BUYER
        if user_id == self.seller_id:
            return Party.SELLER
        return None

    def user_for(self, party: Party) -> str:
        return self.user_id if party is Party.BUYER else self.seller_id


class CounterOffer(BaseModel):
    """Append-only amount revision (counter_offers row)."""
    id: str = Field(..., description="Counter-offer ID")
    offer_id: str = Field(..., description="Parent offer ID")
    amount: int = Field(..., gt=0, description="Proposed amount")
    from_seller: bool = Field(..., description="True when authored by the seller")
    created_at: Optional[str] = None

    @property
    def author(self) -> Party:
        return Party.SELLER if self.from_seller else Party.BUYER


class Negotiation(BaseModel):
    """Offer merged with its counter history, as seen by one caller."""
    offer: Offer
    counter_offers: list[CounterOffer] = Field(default_factory=list)
    effective_amount: int = Field(..., description="Latest counter amount, else original")
    turn: Optional[Party] = Field(None, description="Party expected to act next; None once closed")
    caller_role: Party
    awaiting_caller: bool = False
    allowed_actions: list[OfferAction] = Field(default_factory=list)


class OfferSummary(BaseModel):
    """Dashboard row for the offers tab."""
    offer_id: str
    property_id: str
    status: OfferStatus
    original_amount: int
    effective_amount: int
    counter_count: int = 0
    caller_role: Party
    awaiting_caller: bool = False
    updated_at: Optional[str] = None


class TopOffer(BaseModel):
    """Anonymised public bid."""
    offer_id: str
    amount: int
    buyer_name: str = "Anonymous buyer"
