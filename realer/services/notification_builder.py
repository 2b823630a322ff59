"""Notification texts and correlation payloads for gate and negotiation events."""

from typing import Iterable, Optional

from realer.models.notification import Notification, NotificationType, OutboxEntry
from realer.models.offer import CounterOffer, Offer, OfferAction, Party
from realer.models.property import Property
from realer.models.waitlist import WaitlistRequest, WaitlistStatus
from realer.services.negotiation import Transition
from realer.utils.ids import new_id


def format_amount(amount: int) -> str:
    return f"${amount:,}"


def _notification(user_id: str, title: str, message: str, type_: NotificationType, **properties) -> Notification:
    return Notification(
        id=new_id(),
        user_id=user_id,
        title=title,
        message=message,
        type=type_,
        properties={k: v for k, v in properties.items() if v is not None},
    )


def waitlist_requested(prop: Property, request: WaitlistRequest) -> Notification:
    """To the owner: a buyer asked for access."""
    return _notification(
        prop.owner_id,
        "New Waitlist Request",
        f"{request.name} has requested access to {prop.label}. Review the request from your dashboard.",
        NotificationType.WAITLIST,
        propertyId=prop.id,
        propertyTitle=prop.title,
        waitlistRequestId=request.id,
        buyerId=request.user_id,
        status=request.status.value,
        role=Party.SELLER.value,
    )


def waitlist_decided(prop: Property, request: WaitlistRequest) -> Notification:
    """To the buyer: the owner answered."""
    accepted = request.status is WaitlistStatus.ACCEPTED
    if accepted:
        title = "Waitlist Request Approved!"
        message = (
            f"Great news! Your waitlist request for {prop.label} has been approved. "
            "You can now view the full property details."
        )
    else:
        title = "Waitlist Request Declined"
        message = f"Unfortunately, your waitlist request for {prop.label} has been declined."
    return _notification(
        request.user_id,
        title,
        message,
        NotificationType.SUCCESS if accepted else NotificationType.ERROR,
        propertyId=prop.id,
        propertyTitle=prop.title,
        waitlistRequestId=request.id,
        status=request.status.value,
        role=Party.BUYER.value,
    )


def offer_received(prop: Property, offer: Offer, buyer_name: Optional[str]) -> Notification:
    """To the seller: a new offer arrived."""
    who = buyer_name or "a buyer"
    return _notification(
        offer.seller_id,
        "New Offer Received",
        f"You received a new offer of {format_amount(offer.offer_amount)} from {who} for your property \"{prop.label}\".",
        NotificationType.OFFER,
        propertyId=prop.id,
        offerId=offer.id,
        buyerId=offer.user_id,
        buyerName=buyer_name,
        amount=offer.offer_amount,
        status=offer.status.value,
        role=Party.SELLER.value,
    )


def offer_submitted(prop: Property, offer: Offer) -> Notification:
    """To the buyer: receipt for their own offer."""
    return _notification(
        offer.user_id,
        "Offer Submitted!",
        f"Your offer of {format_amount(offer.offer_amount)} for \"{prop.label}\" has been sent.",
        NotificationType.SUCCESS,
        propertyId=prop.id,
        offerId=offer.id,
        amount=offer.offer_amount,
        status=offer.status.value,
        role=Party.BUYER.value,
    )


def offer_responded(
    prop: Property,
    offer: Offer,
    transition: Transition,
    counter: Optional[CounterOffer] = None,
) -> Notification:
    """To the counter-party of whoever just acted."""
    recipient = transition.recipient
    amount = format_amount(transition.amount)
    actor_label = "The seller" if transition.actor is Party.SELLER else "The buyer"

    if transition.action is OfferAction.ACCEPT:
        title = "Offer Accepted!"
        message = f"Great news! {actor_label} accepted {amount} for \"{prop.label}\"."
        type_ = NotificationType.SUCCESS
    elif transition.action is OfferAction.DECLINE:
        title = "Offer Declined"
        message = f"{actor_label} declined the offer for \"{prop.label}\"."
        type_ = NotificationType.ERROR
    else:
        title = "Counter Offer Received"
        message = f"{actor_label} countered with {amount} for \"{prop.label}\". It's your turn to respond."
        type_ = NotificationType.COUNTER_OFFER

    return _notification(
        offer.user_for(recipient),
        title,
        message,
        type_,
        propertyId=prop.id,
        propertyTitle=prop.title,
        offerId=offer.id,
        counterOfferId=counter.id if counter else None,
        amount=transition.amount,
        status=transition.new_status.value,
        role=recipient.value,
    )


def outbox_for(notifications: Iterable[Notification], channels: Iterable[str]) -> list[OutboxEntry]:
    """One pending delivery per notification per configured channel."""
    channels = list(channels)
    return [
        OutboxEntry(
            id=new_id(),
            notification_id=n.id,
            user_id=n.user_id,
            channel=channel,
        )
        for n in notifications
        for channel in channels
    ]
