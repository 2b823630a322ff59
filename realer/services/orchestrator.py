"""Negotiation orchestrator.

Entry point for every gate and negotiation operation. Each call:

1. loads the authoritative rows and checks the caller against stored ids,
2. plans the transition with the pure gate/state-machine rules,
3. commits state, counter-offer, notification and outbox rows as one unit,
4. publishes change-feed hints to every interested party.

Caller identity is always an explicit argument; roles are derived from the
stored buyer/seller/owner ids, never taken from the client.
"""

from typing import Any, Iterable, Optional

from realer.models.feed import FeedEvent, FeedEventType, FeedTable
from realer.models.notification import Notification
from realer.models.offer import (
    CounterOffer,
    Negotiation,
    Offer,
    OfferAction,
    OfferStatus,
    OfferSummary,
    Party,
    TopOffer,
)
from realer.models.property import Property, PropertyView
from realer.models.waitlist import NO_REQUEST, WaitlistRequest, WaitlistStatus
from realer.services import access_gate
from realer.services import negotiation
from realer.services import notification_builder as builder
from realer.services.change_feed import ChangeFeed, row_event
from realer.services.store import InMemoryStore, NegotiationStore
from realer.utils.config import EngineSettings, get_settings
from realer.utils.errors import NotFoundError, UnauthorizedError, ValidationError
from realer.utils.ids import new_id
from realer.utils.logging import get_structured_logger, log_timing, mask_user_id

logger = get_structured_logger(__name__)


def _require(value: Optional[str], field: str) -> str:
    if not value or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", fields=[field])
    return value.strip()


def _parse_action(action: Any) -> OfferAction:
    try:
        return OfferAction(str(action).strip().lower())
    except ValueError:
        raise ValidationError("action must be one of accept, decline or counter", fields=["action"])


def _parse_role(role: Any) -> Party:
    try:
        return Party(str(role).strip().lower())
    except ValueError:
        raise ValidationError("role must be 'buyer' or 'seller'", fields=["role"])


class NegotiationOrchestrator:
    """Access gate + offer negotiation with notification fan-out."""

    def __init__(self, store: NegotiationStore, feed: Optional[ChangeFeed] = None,
                 settings: Optional[EngineSettings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.feed = feed if feed is not None else ChangeFeed(
            retention=self.settings.feed_retention, max_recipients=self.settings.feed_max_recipients
        )

    # ------------------------------------------------------------------ helpers

    async def _load_property(self, property_id: str) -> Property:
        prop = await self.store.get_property(property_id)
        if prop is None:
            raise NotFoundError(f"property {property_id} not found")
        return prop

    async def _load_offer_for(self, offer_id: str, caller_id: str) -> tuple[Offer, Party]:
        offer = await self.store.get_offer(offer_id)
        if offer is None:
            raise NotFoundError(f"offer {offer_id} not found")
        party = offer.party_of(caller_id)
        if party is None:
            # same signal as a missing offer
            raise NotFoundError(f"offer {offer_id} not visible to caller")
        return offer, party

    def _outbox(self, notifications: list[Notification]):
        return builder.outbox_for(notifications, self.settings.notification_channels)

    def _publish(self, events: Iterable[FeedEvent]) -> None:
        """Feed events are hints; a publish failure never fails the committed operation."""
        events = list(events)
        try:
            self.feed.publish_many(events)
        except Exception as e:
            logger.error(
                "Failed to publish feed events",
                events=len(events),
                error=str(e),
                exc_info=True
            )

    @staticmethod
    def _notification_events(notifications: Iterable[Notification]) -> list[FeedEvent]:
        return [
            row_event(n.user_id, FeedTable.NOTIFICATIONS, FeedEventType.INSERT, n.model_dump(mode="json"))
            for n in notifications
        ]

    # -------------------------------------------------------------- access gate

    async def request_access(self, property_id: str, buyer_id: str, contact: Any) -> WaitlistRequest:
        """Create a pending waitlist request and notify the owner."""
        property_id = _require(property_id, "property_id")
        buyer_id = _require(buyer_id, "buyer_id")
        contact_info = access_gate.parse_contact(contact)

        with log_timing("request_access", logger=logger, property_id=property_id,
                        buyer_id=mask_user_id(buyer_id)):
            prop = await self._load_property(property_id)
            existing = await self.store.find_waitlist_requests(property_id, buyer_id)
            request = access_gate.plan_request(
                prop, buyer_id, contact_info, existing,
                allow_reapply=self.settings.waitlist_allow_reapply,
            )
            notification = builder.waitlist_requested(prop, request)
            stored = await self.store.create_waitlist_request(request, [notification], self._outbox([notification]))

            logger.info(
                "Waitlist request created",
                property_id=property_id,
                request_id=stored.id,
                buyer_id=mask_user_id(buyer_id),
                owner_id=mask_user_id(prop.owner_id)
            )

            record = stored.model_dump(mode="json")
            self._publish(
                [row_event(uid, FeedTable.WAITLIST_REQUESTS, FeedEventType.INSERT, record, stored.version)
                 for uid in (buyer_id, prop.owner_id)]
                + self._notification_events([notification])
            )
            return stored

    async def decide(self, request_id: str, owner_id: str, decision: Any) -> WaitlistRequest:
        """Owner accepts or declines a pending waitlist request; the buyer is notified."""
        request_id = _require(request_id, "request_id")
        owner_id = _require(owner_id, "owner_id")
        parsed = access_gate.parse_decision(decision)

        with log_timing("decide_waitlist", logger=logger, request_id=request_id, decision=parsed.value):
            request = await self.store.get_waitlist_request(request_id)
            if request is None:
                raise NotFoundError(f"waitlist request {request_id} not found")
            prop = await self.store.get_property(request.property_id)
            if prop is None or prop.owner_id != owner_id:
                raise UnauthorizedError(f"waitlist request {request_id} not visible to caller")

            target = access_gate.plan_decision(prop, request, owner_id, parsed)
            decided = request.model_copy(update={"status": target})
            notification = builder.waitlist_decided(prop, decided)
            stored = await self.store.apply_waitlist_decision(
                request_id, request.version, target, [notification], self._outbox([notification])
            )

            logger.info(
                "Waitlist request decided",
                request_id=request_id,
                property_id=prop.id,
                status=stored.status.value,
                buyer_id=mask_user_id(stored.user_id)
            )

            record = stored.model_dump(mode="json")
            self._publish(
                [row_event(uid, FeedTable.WAITLIST_REQUESTS, FeedEventType.UPDATE, record, stored.version)
                 for uid in (stored.user_id, prop.owner_id)]
                + self._notification_events([notification])
            )
            return stored

    async def status_for(self, property_id: str, buyer_id: str) -> str:
        """Current gate status for the pair: none, pending, accepted or declined."""
        requests = await self.store.find_waitlist_requests(
            _require(property_id, "property_id"), _require(buyer_id, "buyer_id")
        )
        return access_gate.resolve_status(requests)

    async def get_property_view(self, property_id: str, caller_id: Optional[str]) -> PropertyView:
        """Property with address and seller contact only for the owner or an accepted buyer."""
        prop = await self._load_property(_require(property_id, "property_id"))
        status = NO_REQUEST
        if caller_id and caller_id != prop.owner_id:
            status = await self.status_for(prop.id, caller_id)
        return access_gate.build_property_view(prop, caller_id, status)

    async def list_waitlist_for_owner(self, owner_id: str) -> list[WaitlistRequest]:
        """Requests on every property the caller owns, newest first."""
        properties = await self.store.list_properties_for_owner(_require(owner_id, "owner_id"))
        if not properties:
            return []
        requests = await self.store.list_waitlist_for_properties([p.id for p in properties])
        return sorted(requests, key=lambda r: r.created_at or "", reverse=True)

    async def list_waitlist_for_buyer(self, buyer_id: str) -> list[WaitlistRequest]:
        requests = await self.store.list_waitlist_for_buyer(_require(buyer_id, "buyer_id"))
        return sorted(requests, key=lambda r: r.created_at or "", reverse=True)

    # --------------------------------------------------------------- negotiation

    async def create_offer(
        self,
        property_id: str,
        buyer_id: str,
        amount: Any,
        proof_of_funds_url: Optional[str] = None,
        is_interested: Any = True,
    ) -> Offer:
        """Open a negotiation. Only a buyer with accepted waitlist access may do this."""
        property_id = _require(property_id, "property_id")
        buyer_id = _require(buyer_id, "buyer_id")
        offer_amount = negotiation.validate_amount(amount)
        interested = negotiation.validate_flag(is_interested, "is_interested")

        with log_timing("create_offer", logger=logger, property_id=property_id,
                        buyer_id=mask_user_id(buyer_id)):
            prop = await self._load_property(property_id)
            if prop.owner_id == buyer_id:
                raise ValidationError("You cannot make an offer on your own property", fields=["property_id"])

            status = await self.status_for(property_id, buyer_id)
            if status != WaitlistStatus.ACCEPTED.value:
                raise UnauthorizedError(
                    f"buyer waitlist status is {status} for property {property_id}"
                )

            offer = Offer(
                id=new_id(),
                property_id=prop.id,
                user_id=buyer_id,
                seller_id=prop.owner_id,
                offer_amount=offer_amount,
                is_interested=interested,
                proof_of_funds_url=proof_of_funds_url or None,
                status=OfferStatus.PENDING,
            )

            buyer_profile = await self.store.get_profile(buyer_id)
            buyer_name = buyer_profile.name if buyer_profile else None
            notifications = [
                builder.offer_received(prop, offer, buyer_name),
                builder.offer_submitted(prop, offer),
            ]
            stored = await self.store.create_offer(offer, notifications, self._outbox(notifications))

            logger.info(
                "Offer created",
                offer_id=stored.id,
                property_id=prop.id,
                amount=stored.offer_amount,
                buyer_id=mask_user_id(buyer_id),
                seller_id=mask_user_id(stored.seller_id)
            )

            record = stored.model_dump(mode="json")
            self._publish(
                [row_event(uid, FeedTable.PROPERTY_OFFERS, FeedEventType.INSERT, record, stored.version)
                 for uid in (stored.user_id, stored.seller_id)]
                + self._notification_events(notifications)
            )
            return stored

    async def respond_to_offer(self, offer_id: str, caller_id: str, action: Any,
                               amount: Any = None) -> Negotiation:
        """Accept, decline or counter an offer on the caller's turn.

        Returns the negotiation as the caller now sees it.
        """
        offer_id = _require(offer_id, "offer_id")
        caller_id = _require(caller_id, "caller_id")
        parsed = _parse_action(action)

        with log_timing("respond_to_offer", logger=logger, offer_id=offer_id, action=parsed.value):
            offer, party = await self._load_offer_for(offer_id, caller_id)
            counters = await self.store.list_counter_offers(offer_id)
            transition = negotiation.plan_response(offer, counters, party, parsed, amount)

            counter = None
            if transition.counter_amount is not None:
                counter = CounterOffer(
                    id=new_id(),
                    offer_id=offer.id,
                    amount=transition.counter_amount,
                    from_seller=party is Party.SELLER,
                )

            prop = await self._load_property(offer.property_id)
            notification = builder.offer_responded(prop, offer, transition, counter)
            updated, stored_counter = await self.store.apply_offer_transition(
                offer.id,
                transition.expected_version,
                transition.new_status,
                counter,
                [notification],
                self._outbox([notification]),
            )

            logger.info(
                "Offer transition applied",
                offer_id=offer.id,
                action=parsed.value,
                actor=party.value,
                from_status=transition.from_status.value,
                to_status=updated.status.value,
                amount=transition.amount
            )

            parties = (updated.user_id, updated.seller_id)
            events = [
                row_event(uid, FeedTable.PROPERTY_OFFERS, FeedEventType.UPDATE,
                          updated.model_dump(mode="json"), updated.version)
                for uid in parties
            ]
            if stored_counter is not None:
                events += [
                    row_event(uid, FeedTable.COUNTER_OFFERS, FeedEventType.INSERT,
                              stored_counter.model_dump(mode="json"))
                    for uid in parties
                ]
            self._publish(events + self._notification_events([notification]))

            history = counters + ([stored_counter] if stored_counter else [])
            return negotiation.build_negotiation(updated, history, party)

    async def get_negotiation(self, offer_id: str, caller_id: str) -> Negotiation:
        """Offer with ordered counter history, effective amount and whose turn it is."""
        offer, party = await self._load_offer_for(_require(offer_id, "offer_id"), _require(caller_id, "caller_id"))
        counters = await self.store.list_counter_offers(offer.id)
        return negotiation.build_negotiation(offer, counters, party)

    async def list_offers(self, caller_id: str, role: Any) -> list[OfferSummary]:
        """Offers where the caller is the buyer or the seller, with effective amounts."""
        caller_id = _require(caller_id, "caller_id")
        party = _parse_role(role)
        offers = await self.store.list_offers_for_user(caller_id, party)
        counters = await self.store.list_counter_offers_for([o.id for o in offers])
        return [negotiation.summarize(o, counters.get(o.id, []), party) for o in offers]

    async def top_offers(self, property_id: str, limit: int = 3) -> list[TopOffer]:
        """Highest still-interested bids on a property, anonymised."""
        property_id = _require(property_id, "property_id")
        if limit < 1:
            raise ValidationError("limit must be at least 1", fields=["limit"])
        offers = await self.store.list_interested_offers(property_id)
        counters = await self.store.list_counter_offers_for([o.id for o in offers])
        bids = [
            TopOffer(offer_id=o.id, amount=negotiation.effective_amount(o, counters.get(o.id, [])))
            for o in offers
        ]
        bids.sort(key=lambda b: b.amount, reverse=True)
        return bids[:limit]

    # ------------------------------------------------------------- notifications

    async def list_notifications(self, user_id: str, unread_only: bool = False,
                                 since: Optional[str] = None, limit: int = 50) -> list[Notification]:
        return await self.store.list_notifications(
            _require(user_id, "user_id"), unread_only=unread_only, since=since, limit=max(1, min(limit, 200))
        )

    async def mark_read(self, user_id: str, notification_id: str) -> Notification:
        user_id = _require(user_id, "user_id")
        notification_id = _require(notification_id, "notification_id")
        existing = await self.store.get_notification(notification_id)
        if existing is None or existing.user_id != user_id:
            raise NotFoundError(f"notification {notification_id} not visible to caller")
        if existing.read:
            return existing
        updated = await self.store.mark_notifications_read(user_id, [notification_id])
        self._publish(
            row_event(user_id, FeedTable.NOTIFICATIONS, FeedEventType.UPDATE, n.model_dump(mode="json"), 1)
            for n in updated
        )
        return updated[0] if updated else existing.model_copy(update={"read": True})

    async def mark_all_read(self, user_id: str) -> int:
        """The notification centre's "clear": marks read, never deletes."""
        user_id = _require(user_id, "user_id")
        updated = await self.store.mark_notifications_read(user_id, None)
        self._publish(
            row_event(user_id, FeedTable.NOTIFICATIONS, FeedEventType.UPDATE, n.model_dump(mode="json"), 1)
            for n in updated
        )
        logger.info("Notifications marked read", user_id=mask_user_id(user_id), count=len(updated))
        return len(updated)

    # --------------------------------------------------------------- change feed

    def poll_feed(self, recipient_id: str, since: int = 0,
                  tables: Optional[Iterable[Any]] = None) -> tuple[list[FeedEvent], int]:
        """Caller's feed events after ``since`` plus the cursor to resume from."""
        recipient_id = _require(recipient_id, "recipient_id")
        if since < 0:
            raise ValidationError("since must not be negative", fields=["since"])
        try:
            wanted = [FeedTable(str(t).strip()) for t in tables] if tables else None
        except ValueError:
            raise ValidationError(
                "tables must name " + ", ".join(t.value for t in FeedTable), fields=["tables"]
            )
        events = self.feed.poll(recipient_id, since=since, tables=wanted)
        return events, max(since, self.feed.latest_cursor(recipient_id))


def build_store(settings: Optional[EngineSettings] = None) -> NegotiationStore:
    """Store for the configured backend."""
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        return InMemoryStore()
    if settings.store_backend == "supabase":
        from realer.services.supabase_store import SupabaseStore
        return SupabaseStore(settings=settings)
    raise ValueError(f"Unknown STORE_BACKEND: {settings.store_backend}")


# Global orchestrator instance
_orchestrator: Optional[NegotiationOrchestrator] = None


def get_orchestrator() -> NegotiationOrchestrator:
    """Get or create the global orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        settings = get_settings()
        _orchestrator = NegotiationOrchestrator(build_store(settings), settings=settings)
        logger.info("Negotiation orchestrator initialized", store_backend=settings.store_backend)
    return _orchestrator


def set_orchestrator(orchestrator: Optional[NegotiationOrchestrator]) -> None:
    """Replace the global orchestrator (tests and local servers)."""
    global _orchestrator
    _orchestrator = orchestrator
