"""Property models - the listing side of the access gate."""

from typing import Optional
from pydantic import BaseModel, Field


class SellerContact(BaseModel):
    """Seller contact details; sensitive, shown only past the access gate."""
    name: Optional[str] = Field(None, description="Seller display name")
    email: Optional[str] = Field(None, description="Seller e-mail")
    phone: Optional[str] = Field(None, description="Seller phone")


class Property(BaseModel):
    """Real estate listing as the engine sees it (read-only)."""
    id: str = Field(..., description="Property ID")
    owner_id: str = Field(..., description="Owning user ID, immutable")
    title: Optional[str] = Field(None, description="Listing title")
    asking_price: int = Field(..., gt=0, description="Asking price")
    market_price: Optional[int] = Field(None, description="Disclosed market price")
    address: Optional[str] = Field(None, description="Exact address (sensitive)")
    location: str = Field(..., description="Coarse public location")
    reward_amount: Optional[int] = Field(None, ge=0, description="Referral bounty")
    seller: SellerContact = Field(default_factory=SellerContact)

    @property
    def label(self) -> str:
        """Human label used in notification text."""
        return self.title or self.location


class PropertyView(BaseModel):
    """Property as rendered for one caller, with gated fields blanked."""
    id: str
    title: Optional[str] = None
    asking_price: int
    market_price: Optional[int] = None
    location: str
    reward_amount: Optional[int] = None
    address: Optional[str] = Field(None, description="Present only for owner or accepted buyer")
    seller: Optional[SellerContact] = Field(None, description="Present only for owner or accepted buyer")
    is_owner: bool = False
    waitlist_status: str = Field("none", description="none, pending, accepted or declined")
    can_view_sensitive: bool = False
    can_make_offer: bool = False
