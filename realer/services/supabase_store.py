"""Supabase (PostgREST) implementation of the negotiation store.

Every atomic unit (state change, counter-offer, notifications and outbox rows)
is one Postgres function call (see supabase/migrations). When a unit's
function has not been deployed (PGRST202) the store fails closed with
UnavailableError rather than splitting the unit into separate writes. Only
the outbox lease, which is a conditional update per entry, has a fallback.
"""

from datetime import timedelta
from typing import Any, Callable, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from realer.models.notification import Notification, OutboxEntry, OutboxStatus
from realer.models.offer import CounterOffer, Offer, OfferStatus, Party
from realer.models.property import Property, SellerContact
from realer.models.waitlist import WaitlistRequest
from realer.services.store import NegotiationStore, iso, utc_now
from realer.services.supabase_client import SupabaseClient
from realer.utils.config import EngineSettings, get_settings
from realer.utils.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    RealerError,
    SupabaseError,
    UnavailableError,
)
from realer.utils.logging import get_structured_logger
from realer.utils.retry import retry_unavailable

logger = get_structured_logger(__name__)

# Postgres / PostgREST error codes
UNIQUE_VIOLATION = "23505"
FUNCTION_NOT_FOUND = "PGRST202"
STALE_VERSION = "RL409"
ROW_NOT_FOUND = "RL404"


def translate_error(e: Exception, operation: str) -> RealerError:
    """Map a client exception onto the engine's error taxonomy."""
    if isinstance(e, RealerError):
        return e
    if isinstance(e, APIError):
        code = e.code
        if code == UNIQUE_VIOLATION:
            return ConflictError(f"{operation}: {e.message}")
        if code == STALE_VERSION:
            return InvalidTransitionError(f"{operation}: {e.message}")
        if code == ROW_NOT_FOUND:
            return NotFoundError(f"{operation}: {e.message}")
        return SupabaseError(f"{operation} failed ({code}): {e.message}")
    if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
        return UnavailableError(f"{operation} timed out or lost connection: {e}")
    return SupabaseError(f"{operation} failed: {e}")


def _is_missing_function(e: Exception) -> bool:
    return isinstance(e, APIError) and e.code == FUNCTION_NOT_FOUND


def property_from_row(row: dict, profile: Optional[dict] = None) -> Property:
    """property_listings row (+ owner profile) -> Property."""
    def _int(value):
        return int(value) if value is not None else None

    return Property(
        id=row["id"],
        owner_id=row["user_id"],
        title=row.get("title"),
        asking_price=int(row["price"]),
        market_price=_int(row.get("market_price")),
        address=row.get("full_address"),
        location=row.get("location") or "",
        reward_amount=_int(row.get("reward")),
        seller=SellerContact(**_profile_fields(profile)) if profile else SellerContact(),
    )


def _profile_fields(profile: dict) -> dict:
    return {k: profile.get(k) for k in ("name", "email", "phone")}


def _dump(model) -> dict:
    """Row payload for inserts; server-managed timestamps are left to defaults."""
    return model.model_dump(mode="json", exclude_none=True)


class SupabaseStore(NegotiationStore):
    """NegotiationStore backed by the marketplace's Supabase project."""

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or get_settings()

    async def _run(self, operation: str, build: Callable[[Client], Any], retry: bool = False):
        """Build a query against the shared client, execute it and translate errors.

        ``retry`` is only for idempotent statements (reads and id-keyed upserts).
        """
        async def _once():
            async with SupabaseClient(operation) as client:
                try:
                    return build(client).execute()
                except Exception as e:
                    if _is_missing_function(e):
                        raise
                    raise translate_error(e, operation) from e

        if retry:
            return await retry_unavailable(_once, attempts=self.settings.store_retry_attempts)
        return await _once()

    async def _rpc(self, name: str, params: dict, fallback: bool = False):
        """Call a Postgres function.

        A missing function raises UnavailableError, unless the caller has a
        safe ``fallback``, in which case None is returned.
        """
        try:
            result = await self._run(name, lambda c: c.rpc(name, params))
        except APIError as e:
            if not _is_missing_function(e):
                raise translate_error(e, name) from e
            if fallback:
                logger.warning("Store function missing; using fallback", function=name)
                return None
            logger.error("Store function missing; apply the database migrations", function=name)
            raise UnavailableError(f"store function {name} is not deployed") from e
        return result.data

    # Properties and profiles

    async def get_property(self, property_id: str) -> Optional[Property]:
        result = await self._run(
            "get_property",
            lambda c: c.table("property_listings").select("*").eq("id", property_id).limit(1),
            retry=True,
        )
        if not result.data:
            return None
        row = result.data[0]
        profile = await self._get_profile_row(row["user_id"])
        return property_from_row(row, profile)

    async def list_properties_for_owner(self, owner_id: str) -> list[Property]:
        result = await self._run(
            "list_properties_for_owner",
            lambda c: c.table("property_listings").select("*").eq("user_id", owner_id),
            retry=True,
        )
        return [property_from_row(row) for row in result.data or []]

    async def _get_profile_row(self, user_id: str) -> Optional[dict]:
        result = await self._run(
            "get_profile",
            lambda c: c.table("profiles").select("id,name,email,phone").eq("id", user_id).limit(1),
            retry=True,
        )
        return result.data[0] if result.data else None

    async def get_profile(self, user_id: str) -> Optional[SellerContact]:
        row = await self._get_profile_row(user_id)
        return SellerContact(**_profile_fields(row)) if row else None

    # Waitlist

    async def get_waitlist_request(self, request_id: str) -> Optional[WaitlistRequest]:
        result = await self._run(
            "get_waitlist_request",
            lambda c: c.table("waitlist_requests").select("*").eq("id", request_id).limit(1),
            retry=True,
        )
        return WaitlistRequest.model_validate(result.data[0]) if result.data else None

    async def find_waitlist_requests(self, property_id: str, user_id: str) -> list[WaitlistRequest]:
        result = await self._run(
            "find_waitlist_requests",
            lambda c: (c.table("waitlist_requests").select("*")
                       .eq("property_id", property_id).eq("user_id", user_id)
                       .order("created_at")),
            retry=True,
        )
        return [WaitlistRequest.model_validate(row) for row in result.data or []]

    async def list_waitlist_for_properties(self, property_ids: list[str]) -> list[WaitlistRequest]:
        if not property_ids:
            return []
        result = await self._run(
            "list_waitlist_for_properties",
            lambda c: (c.table("waitlist_requests").select("*")
                       .in_("property_id", property_ids).order("created_at", desc=True)),
            retry=True,
        )
        return [WaitlistRequest.model_validate(row) for row in result.data or []]

    async def list_waitlist_for_buyer(self, user_id: str) -> list[WaitlistRequest]:
        result = await self._run(
            "list_waitlist_for_buyer",
            lambda c: (c.table("waitlist_requests").select("*")
                       .eq("user_id", user_id).order("created_at", desc=True)),
            retry=True,
        )
        return [WaitlistRequest.model_validate(row) for row in result.data or []]

    async def create_waitlist_request(self, request, notifications, outbox) -> WaitlistRequest:
        data = await self._rpc("realer_create_waitlist_request", {
            "p_request": _dump(request),
            "p_notifications": [_dump(n) for n in notifications],
            "p_outbox": [_dump(e) for e in outbox],
        })
        return WaitlistRequest.model_validate(data)

    async def apply_waitlist_decision(self, request_id, expected_version, new_status, notifications, outbox) -> WaitlistRequest:
        data = await self._rpc("realer_decide_waitlist_request", {
            "p_request_id": request_id,
            "p_expected_version": expected_version,
            "p_status": new_status.value,
            "p_notifications": [_dump(n) for n in notifications],
            "p_outbox": [_dump(e) for e in outbox],
        })
        return WaitlistRequest.model_validate(data)

    # Offers

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        result = await self._run(
            "get_offer",
            lambda c: c.table("property_offers").select("*").eq("id", offer_id).limit(1),
            retry=True,
        )
        return Offer.model_validate(result.data[0]) if result.data else None

    async def list_counter_offers(self, offer_id: str) -> list[CounterOffer]:
        result = await self._run(
            "list_counter_offers",
            lambda c: c.table("counter_offers").select("*").eq("offer_id", offer_id).order("created_at"),
            retry=True,
        )
        return [CounterOffer.model_validate(row) for row in result.data or []]

    async def list_counter_offers_for(self, offer_ids: list[str]) -> dict[str, list[CounterOffer]]:
        grouped: dict[str, list[CounterOffer]] = {offer_id: [] for offer_id in offer_ids}
        if not offer_ids:
            return grouped
        result = await self._run(
            "list_counter_offers_for",
            lambda c: c.table("counter_offers").select("*").in_("offer_id", offer_ids).order("created_at"),
            retry=True,
        )
        for row in result.data or []:
            counter = CounterOffer.model_validate(row)
            grouped.setdefault(counter.offer_id, []).append(counter)
        return grouped

    async def list_offers_for_user(self, user_id: str, role: Party) -> list[Offer]:
        column = "user_id" if role is Party.BUYER else "seller_id"
        result = await self._run(
            "list_offers_for_user",
            lambda c: (c.table("property_offers").select("*")
                       .eq(column, user_id).order("updated_at", desc=True)),
            retry=True,
        )
        return [Offer.model_validate(row) for row in result.data or []]

    async def list_interested_offers(self, property_id: str) -> list[Offer]:
        result = await self._run(
            "list_interested_offers",
            lambda c: (c.table("property_offers").select("*")
                       .eq("property_id", property_id)
                       .eq("is_interested", True)
                       .neq("status", OfferStatus.DECLINED.value)),
            retry=True,
        )
        return [Offer.model_validate(row) for row in result.data or []]

    async def create_offer(self, offer, notifications, outbox) -> Offer:
        data = await self._rpc("realer_create_offer", {
            "p_offer": _dump(offer),
            "p_notifications": [_dump(n) for n in notifications],
            "p_outbox": [_dump(e) for e in outbox],
        })
        return Offer.model_validate(data)

    async def apply_offer_transition(self, offer_id, expected_version, new_status, counter_offer, notifications, outbox):
        data = await self._rpc("realer_apply_offer_transition", {
            "p_offer_id": offer_id,
            "p_expected_version": expected_version,
            "p_status": new_status.value,
            "p_counter_offer": _dump(counter_offer) if counter_offer else None,
            "p_notifications": [_dump(n) for n in notifications],
            "p_outbox": [_dump(e) for e in outbox],
        })
        counter = data.get("counter_offer")
        return (
            Offer.model_validate(data["offer"]),
            CounterOffer.model_validate(counter) if counter else None,
        )

    # Notifications

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        result = await self._run(
            "get_notification",
            lambda c: c.table("notifications").select("*").eq("id", notification_id).limit(1),
            retry=True,
        )
        return Notification.model_validate(result.data[0]) if result.data else None

    async def list_notifications(self, user_id, unread_only=False, since=None, limit=50) -> list[Notification]:
        def build(c: Client):
            query = c.table("notifications").select("*").eq("user_id", user_id)
            if unread_only:
                query = query.eq("read", False)
            if since:
                query = query.gt("created_at", since)
            return query.order("created_at", desc=True).limit(limit)

        result = await self._run("list_notifications", build, retry=True)
        return [Notification.model_validate(row) for row in result.data or []]

    async def mark_notifications_read(self, user_id, notification_ids=None) -> list[Notification]:
        if notification_ids is not None and not notification_ids:
            return []

        def build(c: Client):
            query = c.table("notifications").update({"read": True}).eq("user_id", user_id).eq("read", False)
            if notification_ids is not None:
                query = query.in_("id", notification_ids)
            return query

        result = await self._run("mark_notifications_read", build, retry=True)
        return [Notification.model_validate(row) for row in result.data or []]

    # Outbox

    async def claim_outbox_batch(self, limit: int, lease_seconds: int = 60) -> list[OutboxEntry]:
        data = await self._rpc("realer_claim_outbox_batch", {
            "p_limit": limit,
            "p_lease_seconds": lease_seconds,
        }, fallback=True)
        if data is not None:
            return [OutboxEntry.model_validate(row) for row in data]

        now = utc_now()
        result = await self._run(
            "list_due_outbox",
            lambda c: (c.table("notification_outbox").select("*")
                       .eq("status", OutboxStatus.PENDING.value)
                       .or_(f"next_attempt_at.is.null,next_attempt_at.lte.{iso(now)}")
                       .order("created_at")
                       .limit(limit)),
            retry=True,
        )
        lease_until = iso(now + timedelta(seconds=lease_seconds))
        claimed = []
        for row in result.data or []:
            entry = OutboxEntry.model_validate(row)

            def build(c: Client, entry=entry):
                query = (c.table("notification_outbox")
                         .update({"next_attempt_at": lease_until})
                         .eq("id", entry.id)
                         .eq("status", OutboxStatus.PENDING.value))
                if entry.next_attempt_at is None:
                    return query.is_("next_attempt_at", "null")
                return query.eq("next_attempt_at", entry.next_attempt_at)

            # another dispatcher may have leased it in between
            leased = await self._run("lease_outbox_entry", build)
            if leased.data:
                claimed.append(entry)
        return claimed

    async def _update_outbox(self, operation: str, entry_id: str, values: dict) -> None:
        await self._run(
            operation,
            lambda c: c.table("notification_outbox").update(values).eq("id", entry_id),
            retry=True,
        )

    async def mark_outbox_sent(self, entry_id: str, attempts: int) -> None:
        await self._update_outbox("mark_outbox_sent", entry_id, {
            "status": OutboxStatus.SENT.value,
            "attempts": attempts,
            "sent_at": iso(utc_now()),
            "last_error": None,
        })

    async def mark_outbox_retry(self, entry_id: str, attempts: int, next_attempt_at: str, error: str) -> None:
        await self._update_outbox("mark_outbox_retry", entry_id, {
            "attempts": attempts,
            "next_attempt_at": next_attempt_at,
            "last_error": error,
        })

    async def mark_outbox_failed(self, entry_id: str, attempts: int, error: str) -> None:
        await self._update_outbox("mark_outbox_failed", entry_id, {
            "status": OutboxStatus.FAILED.value,
            "attempts": attempts,
            "last_error": error,
        })
