"""Persistent store interface and the in-memory implementation.

Every write method that takes ``notifications``/``outbox`` is one unit: the
state row, its counter-offer and its notification and outbox rows commit
together or not at all. Decision and transition units are compare-and-swap
on the row's ``version``.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from realer.models.notification import Notification, OutboxEntry, OutboxStatus
from realer.models.offer import CounterOffer, Offer, OfferStatus, Party
from realer.models.property import Property, SellerContact
from realer.models.waitlist import WaitlistRequest, WaitlistStatus
from realer.services.negotiation import BLOCKING_STATUSES
from realer.utils.errors import ConflictError, InvalidTransitionError, NotFoundError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


class NegotiationStore(ABC):
    """Store operations the engine depends on."""

    # Properties and profiles (owned by listing CRUD; read-only here)
    @abstractmethod
    async def get_property(self, property_id: str) -> Optional[Property]: ...

    async def get_property_owner(self, property_id: str) -> Optional[str]:
        prop = await self.get_property(property_id)
        return prop.owner_id if prop else None

    @abstractmethod
    async def list_properties_for_owner(self, owner_id: str) -> list[Property]: ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[SellerContact]: ...

    # Waitlist
    @abstractmethod
    async def get_waitlist_request(self, request_id: str) -> Optional[WaitlistRequest]: ...

    @abstractmethod
    async def find_waitlist_requests(self, property_id: str, user_id: str) -> list[WaitlistRequest]: ...

    @abstractmethod
    async def list_waitlist_for_properties(self, property_ids: list[str]) -> list[WaitlistRequest]: ...

    @abstractmethod
    async def list_waitlist_for_buyer(self, user_id: str) -> list[WaitlistRequest]: ...

    @abstractmethod
    async def create_waitlist_request(
        self,
        request: WaitlistRequest,
        notifications: list[Notification],
        outbox: list[OutboxEntry],
    ) -> WaitlistRequest: ...

    @abstractmethod
    async def apply_waitlist_decision(
        self,
        request_id: str,
        expected_version: int,
        new_status: WaitlistStatus,
        notifications: list[Notification],
        outbox: list[OutboxEntry],
    ) -> WaitlistRequest: ...

    # Offers
    @abstractmethod
    async def get_offer(self, offer_id: str) -> Optional[Offer]: ...

    @abstractmethod
    async def list_counter_offers(self, offer_id: str) -> list[CounterOffer]: ...

    async def list_counter_offers_for(self, offer_ids: list[str]) -> dict[str, list[CounterOffer]]:
        return {offer_id: await self.list_counter_offers(offer_id) for offer_id in offer_ids}

    @abstractmethod
    async def list_offers_for_user(self, user_id: str, role: Party) -> list[Offer]: ...

    @abstractmethod
    async def list_interested_offers(self, property_id: str) -> list[Offer]: ...

    @abstractmethod
    async def create_offer(
        self,
        offer: Offer,
        notifications: list[Notification],
        outbox: list[OutboxEntry],
    ) -> Offer: ...

    @abstractmethod
    async def apply_offer_transition(
        self,
        offer_id: str,
        expected_version: int,
        new_status: OfferStatus,
        counter_offer: Optional[CounterOffer],
        notifications: list[Notification],
        outbox: list[OutboxEntry],
    ) -> tuple[Offer, Optional[CounterOffer]]: ...

    # Notifications
    @abstractmethod
    async def get_notification(self, notification_id: str) -> Optional[Notification]: ...

    @abstractmethod
    async def list_notifications(
        self,
        user_id: str,
        unread_only: bool = False,
        since: Optional[str] = None,
        limit: int = 50,
    ) -> list[Notification]: ...

    @abstractmethod
    async def mark_notifications_read(self, user_id: str, notification_ids: Optional[list[str]] = None) -> list[Notification]:
        """Flip ``read`` on the caller's notifications (all unread when ids is None)."""

    # Outbox
    @abstractmethod
    async def claim_outbox_batch(self, limit: int, lease_seconds: int = 60) -> list[OutboxEntry]: ...

    @abstractmethod
    async def mark_outbox_sent(self, entry_id: str, attempts: int) -> None: ...

    @abstractmethod
    async def mark_outbox_retry(self, entry_id: str, attempts: int, next_attempt_at: str, error: str) -> None: ...

    @abstractmethod
    async def mark_outbox_failed(self, entry_id: str, attempts: int, error: str) -> None: ...


class InMemoryStore(NegotiationStore):
    """Process-local store with the same uniqueness and CAS semantics as the SQL schema."""

    def __init__(self):
        self.properties: dict[str, Property] = {}
        self.profiles: dict[str, SellerContact] = {}
        self.waitlist: dict[str, WaitlistRequest] = {}
        self.offers: dict[str, Offer] = {}
        self.counter_offers: dict[str, list[CounterOffer]] = defaultdict(list)
        self.notifications: dict[str, Notification] = {}
        self.outbox: dict[str, OutboxEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # Seeding helpers (listing CRUD and profiles live outside the engine)
    def add_property(self, prop: Property) -> Property:
        self.properties[prop.id] = prop
        return prop

    def add_profile(self, user_id: str, name: Optional[str] = None, email: Optional[str] = None,
                    phone: Optional[str] = None) -> SellerContact:
        profile = SellerContact(name=name, email=email, phone=phone)
        self.profiles[user_id] = profile
        return profile

    @asynccontextmanager
    async def _locked(self, key: str):
        """Serialize units on ``key``; the lock is forgotten once nobody holds or waits on it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _write_notifications(self, notifications: list[Notification], outbox: list[OutboxEntry], now: str) -> None:
        for n in notifications:
            self.notifications[n.id] = n.model_copy(update={"created_at": n.created_at or now})
        for entry in outbox:
            self.outbox[entry.id] = entry.model_copy(update={"created_at": entry.created_at or now})

    async def get_property(self, property_id: str) -> Optional[Property]:
        prop = self.properties.get(property_id)
        if prop is None:
            return None
        seller = self.profiles.get(prop.owner_id)
        if seller is not None:
            return prop.model_copy(update={"seller": seller})
        return prop.model_copy()

    async def list_properties_for_owner(self, owner_id: str) -> list[Property]:
        return [p.model_copy() for p in self.properties.values() if p.owner_id == owner_id]

    async def get_profile(self, user_id: str) -> Optional[SellerContact]:
        profile = self.profiles.get(user_id)
        return profile.model_copy() if profile else None

    async def get_waitlist_request(self, request_id: str) -> Optional[WaitlistRequest]:
        request = self.waitlist.get(request_id)
        return request.model_copy() if request else None

    async def find_waitlist_requests(self, property_id: str, user_id: str) -> list[WaitlistRequest]:
        return [
            r.model_copy() for r in self.waitlist.values()
            if r.property_id == property_id and r.user_id == user_id
        ]

    async def list_waitlist_for_properties(self, property_ids: list[str]) -> list[WaitlistRequest]:
        wanted = set(property_ids)
        return [r.model_copy() for r in self.waitlist.values() if r.property_id in wanted]

    async def list_waitlist_for_buyer(self, user_id: str) -> list[WaitlistRequest]:
        return [r.model_copy() for r in self.waitlist.values() if r.user_id == user_id]

    async def create_waitlist_request(self, request, notifications, outbox) -> WaitlistRequest:
        async with self._locked(f"waitlist:{request.property_id}:{request.user_id}"):
            for existing in self.waitlist.values():
                if (existing.property_id == request.property_id
                        and existing.user_id == request.user_id
                        and existing.is_open):
                    raise ConflictError(
                        f"open waitlist request exists for property {request.property_id}",
                        user_message="You have already requested access to this property.",
                    )
            now = iso(utc_now())
            stored = request.model_copy(update={"created_at": now, "updated_at": now, "version": 0})
            self.waitlist[stored.id] = stored
            self._write_notifications(notifications, outbox, now)
            return stored.model_copy()

    async def apply_waitlist_decision(self, request_id, expected_version, new_status, notifications, outbox) -> WaitlistRequest:
        async with self._locked(f"waitlist:{request_id}"):
            current = self.waitlist.get(request_id)
            if current is None:
                raise NotFoundError(f"waitlist request {request_id} not found")
            if current.version != expected_version or current.status is not WaitlistStatus.PENDING:
                raise InvalidTransitionError(
                    f"waitlist request {request_id} changed concurrently",
                    user_message="This request has already been answered.",
                )
            now = iso(utc_now())
            updated = current.model_copy(update={
                "status": new_status,
                "version": current.version + 1,
                "updated_at": now,
            })
            self.waitlist[request_id] = updated
            self._write_notifications(notifications, outbox, now)
            return updated.model_copy()

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        offer = self.offers.get(offer_id)
        return offer.model_copy() if offer else None

    async def list_counter_offers(self, offer_id: str) -> list[CounterOffer]:
        return [c.model_copy() for c in self.counter_offers.get(offer_id, [])]

    async def list_offers_for_user(self, user_id: str, role: Party) -> list[Offer]:
        key = "user_id" if role is Party.BUYER else "seller_id"
        offers = [o.model_copy() for o in self.offers.values() if getattr(o, key) == user_id]
        return sorted(offers, key=lambda o: o.updated_at or "", reverse=True)

    async def list_interested_offers(self, property_id: str) -> list[Offer]:
        return [
            o.model_copy() for o in self.offers.values()
            if o.property_id == property_id and o.is_interested and o.status is not OfferStatus.DECLINED
        ]

    async def create_offer(self, offer, notifications, outbox) -> Offer:
        async with self._locked(f"offer-pair:{offer.property_id}:{offer.user_id}"):
            for existing in self.offers.values():
                if (existing.property_id == offer.property_id
                        and existing.user_id == offer.user_id
                        and existing.status in BLOCKING_STATUSES):
                    raise ConflictError(
                        f"offer {existing.id} is still {existing.status.value}",
                        user_message="You already have an offer on this property.",
                    )
            now = iso(utc_now())
            stored = offer.model_copy(update={"created_at": now, "updated_at": now, "version": 0})
            self.offers[stored.id] = stored
            self._write_notifications(notifications, outbox, now)
            return stored.model_copy()

    async def apply_offer_transition(self, offer_id, expected_version, new_status, counter_offer, notifications, outbox):
        async with self._locked(f"offer:{offer_id}"):
            current = self.offers.get(offer_id)
            if current is None:
                raise NotFoundError(f"offer {offer_id} not found")
            if current.version != expected_version or current.status.is_terminal:
                raise InvalidTransitionError(f"offer {offer_id} changed concurrently")
            now = iso(utc_now())
            stored_counter = None
            if counter_offer is not None:
                stored_counter = counter_offer.model_copy(update={"created_at": now})
                self.counter_offers[offer_id].append(stored_counter)
            updated = current.model_copy(update={
                "status": new_status,
                "version": current.version + 1,
                "updated_at": now,
            })
            self.offers[offer_id] = updated
            self._write_notifications(notifications, outbox, now)
            return updated.model_copy(), stored_counter.model_copy() if stored_counter else None

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        n = self.notifications.get(notification_id)
        return n.model_copy() if n else None

    async def list_notifications(self, user_id, unread_only=False, since=None, limit=50) -> list[Notification]:
        rows = [
            n for n in self.notifications.values()
            if n.user_id == user_id
            and (not unread_only or not n.read)
            and (since is None or (n.created_at or "") > since)
        ]
        rows.sort(key=lambda n: (n.created_at or "", n.id), reverse=True)
        return [n.model_copy() for n in rows[:limit]]

    async def mark_notifications_read(self, user_id, notification_ids=None) -> list[Notification]:
        updated = []
        for n in list(self.notifications.values()):
            if n.user_id != user_id or n.read:
                continue
            if notification_ids is not None and n.id not in notification_ids:
                continue
            self.notifications[n.id] = n.model_copy(update={"read": True})
            updated.append(self.notifications[n.id].model_copy())
        return updated

    async def claim_outbox_batch(self, limit: int, lease_seconds: int = 60) -> list[OutboxEntry]:
        now = utc_now()
        due = [
            e for e in self.outbox.values()
            if e.status is OutboxStatus.PENDING
            and (e.next_attempt_at is None or e.next_attempt_at <= iso(now))
        ]
        due.sort(key=lambda e: (e.created_at or "", e.id))
        lease_until = iso(now + timedelta(seconds=lease_seconds))
        claimed = []
        for entry in due[:limit]:
            self.outbox[entry.id] = entry.model_copy(update={"next_attempt_at": lease_until})
            claimed.append(entry.model_copy())
        return claimed

    async def mark_outbox_sent(self, entry_id: str, attempts: int) -> None:
        entry = self.outbox[entry_id]
        self.outbox[entry_id] = entry.model_copy(update={
            "status": OutboxStatus.SENT,
            "attempts": attempts,
            "sent_at": iso(utc_now()),
            "last_error": None,
        })

    async def mark_outbox_retry(self, entry_id: str, attempts: int, next_attempt_at: str, error: str) -> None:
        entry = self.outbox[entry_id]
        self.outbox[entry_id] = entry.model_copy(update={
            "attempts": attempts,
            "next_attempt_at": next_attempt_at,
            "last_error": error,
        })

    async def mark_outbox_failed(self, entry_id: str, attempts: int, error: str) -> None:
        entry = self.outbox[entry_id]
        self.outbox[entry_id] = entry.model_copy(update={
            "status": OutboxStatus.FAILED,
            "attempts": attempts,
            "last_error": error,
        })
