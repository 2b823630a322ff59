"""Access gate (waitlist) rules.

One gate per (property, buyer) pair: none -> pending -> accepted | declined.
Acceptance is what unlocks the exact address and seller contact for the
buyer and lets them submit offers.
"""

from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from realer.models.property import Property, PropertyView
from realer.models.waitlist import (
    NO_REQUEST,
    ContactInfo,
    WaitlistDecision,
    WaitlistRequest,
    WaitlistStatus,
)
from realer.utils.errors import (
    ConflictError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)
from realer.utils.ids import new_id


def parse_contact(contact) -> ContactInfo:
    """Coerce a contact mapping into ContactInfo, raising the engine's ValidationError."""
    if isinstance(contact, ContactInfo):
        return contact
    if not isinstance(contact, dict):
        raise ValidationError("Contact details are required", fields=["contact"])
    try:
        return ContactInfo(**contact)
    except PydanticValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "contact" for err in e.errors()})
        first = e.errors()[0]["msg"] if e.errors() else "invalid contact details"
        raise ValidationError(f"Invalid contact details: {first}", fields=fields)


def parse_decision(decision) -> WaitlistDecision:
    try:
        return WaitlistDecision(str(decision).strip().lower())
    except ValueError:
        raise ValidationError("decision must be 'accept' or 'decline'", fields=["decision"])


def current_request(requests: Iterable[WaitlistRequest]) -> Optional[WaitlistRequest]:
    """The request that defines the pair's status: the newest one."""
    ordered = sorted(requests, key=lambda r: r.created_at or "")
    return ordered[-1] if ordered else None


def resolve_status(requests: Iterable[WaitlistRequest]) -> str:
    latest = current_request(requests)
    return latest.status.value if latest else NO_REQUEST


def plan_request(
    prop: Property,
    buyer_id: str,
    contact: ContactInfo,
    existing: Iterable[WaitlistRequest],
    allow_reapply: bool = False,
) -> WaitlistRequest:
    """Validate a new access request and build the row to insert."""
    if prop.owner_id == buyer_id:
        raise ValidationError("You cannot join the waitlist for your own property", fields=["property_id"])

    latest = current_request(existing)
    if latest is not None:
        if latest.status is WaitlistStatus.PENDING:
            raise ConflictError(
                f"pending request {latest.id} already exists",
                user_message="You have already requested access to this property.",
            )
        if latest.status is WaitlistStatus.ACCEPTED:
            raise ConflictError(
                f"request {latest.id} already accepted",
                user_message="You already have access to this property.",
            )
        if not allow_reapply:
            raise ConflictError(
                f"request {latest.id} was declined",
                user_message="Your request for this property was declined.",
            )

    return WaitlistRequest(
        id=new_id(),
        property_id=prop.id,
        user_id=buyer_id,
        name=contact.name,
        email=contact.email,
        phone=contact.phone,
        status=WaitlistStatus.PENDING,
    )


def plan_decision(prop: Property, request: WaitlistRequest, owner_id: str, decision: WaitlistDecision) -> WaitlistStatus:
    """Check the owner may decide ``request`` now and return the target status."""
    if prop.owner_id != owner_id or request.property_id != prop.id:
        raise UnauthorizedError(f"user is not the owner of property {prop.id}")
    if request.status is not WaitlistStatus.PENDING:
        raise InvalidTransitionError(
            f"request {request.id} is already {request.status.value}",
            user_message="This request has already been answered.",
        )
    return decision.target_status


def can_view_sensitive(prop: Property, user_id: Optional[str], status: str) -> bool:
    if not user_id:
        return False
    return prop.owner_id == user_id or status == WaitlistStatus.ACCEPTED.value


def build_property_view(prop: Property, user_id: Optional[str], status: str) -> PropertyView:
    """Public fields always; address and seller contact only past the gate."""
    is_owner = bool(user_id) and prop.owner_id == user_id
    unlocked = can_view_sensitive(prop, user_id, status)
    return PropertyView(
        id=prop.id,
        title=prop.title,
        asking_price=prop.asking_price,
        market_price=prop.market_price,
        location=prop.location,
        reward_amount=prop.reward_amount,
        address=prop.address if unlocked else None,
        seller=prop.seller if unlocked else None,
        is_owner=is_owner,
        waitlist_status=status,
        can_view_sensitive=unlocked,
        can_make_offer=unlocked and not is_owner,
    )
