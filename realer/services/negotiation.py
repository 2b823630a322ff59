"""Offer negotiation state machine.

Pure functions over an Offer and its CounterOffer history. Nothing here
touches the store; the orchestrator turns a planned Transition into one
atomic write.

Turn rule: a pending offer waits on the seller. Once countered, it waits on
whichever party did not author the latest counter-offer. Accepted and
declined offers accept nothing.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from realer.models.offer import (
    CounterOffer,
    Negotiation,
    Offer,
    OfferAction,
    OfferStatus,
    OfferSummary,
    Party,
)
from realer.utils.errors import InvalidTransitionError, ValidationError


ACTION_TARGETS: dict[OfferAction, OfferStatus] = {
    OfferAction.ACCEPT: OfferStatus.ACCEPTED,
    OfferAction.DECLINE: OfferStatus.DECLINED,
    OfferAction.COUNTER: OfferStatus.COUNTERED,
}

# Statuses that block the same buyer from opening another offer on the property.
BLOCKING_STATUSES = frozenset({OfferStatus.PENDING, OfferStatus.COUNTERED, OfferStatus.ACCEPTED})


@dataclass(frozen=True, slots=True)
class Transition:
    """A validated response, ready to be written."""
    action: OfferAction
    actor: Party
    from_status: OfferStatus
    new_status: OfferStatus
    expected_version: int
    amount: int
    counter_amount: Optional[int] = None

    @property
    def recipient(self) -> Party:
        return self.actor.other


def validate_amount(value: Any, field: str = "amount") -> int:
    """Amounts are positive integers; bools and fractional values are rejected."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a positive whole number", fields=[field])
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be a positive whole number", fields=[field])
        value = int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            raise ValidationError(f"{field} must be a positive whole number", fields=[field])
        value = int(stripped)
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive whole number", fields=[field])
    return value


TRUE_FLAGS = ("true", "1", "yes", "on")
FALSE_FLAGS = ("false", "0", "no", "off")


def validate_flag(value: Any, field: str, default: bool = True) -> bool:
    """Booleans pass through; "true"/"false"-style strings and 0/1 are parsed, anything else is rejected."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_FLAGS:
            return True
        if lowered in FALSE_FLAGS:
            return False
    raise ValidationError(f"{field} must be true or false", fields=[field])


def ordered_counters(counters: Iterable[CounterOffer]) -> list[CounterOffer]:
    """Counter-offers in creation order; ties keep store order."""
    return sorted(counters, key=lambda c: c.created_at or "")


def latest_counter(counters: Iterable[CounterOffer]) -> Optional[CounterOffer]:
    ordered = ordered_counters(counters)
    return ordered[-1] if ordered else None


def effective_amount(offer: Offer, counters: Iterable[CounterOffer]) -> int:
    """Amount of the most recent counter-offer, else the original offer amount."""
    latest = latest_counter(counters)
    return latest.amount if latest else offer.offer_amount


def whose_turn(offer: Offer, counters: Iterable[CounterOffer]) -> Optional[Party]:
    """Party expected to act next, or None once the negotiation is closed."""
    if offer.status.is_terminal:
        return None
    if offer.status is OfferStatus.PENDING:
        return Party.SELLER
    latest = latest_counter(counters)
    if latest is None:
        # countered without history cannot be produced by the engine; treat
        # it like a fresh offer so the seller can still answer it
        return Party.SELLER
    return latest.author.other


def allowed_actions(offer: Offer, counters: Iterable[CounterOffer], party: Party) -> list[OfferAction]:
    if whose_turn(offer, counters) is not party:
        return []
    return [OfferAction.ACCEPT, OfferAction.DECLINE, OfferAction.COUNTER]


def plan_response(
    offer: Offer,
    counters: Iterable[CounterOffer],
    actor: Party,
    action: OfferAction,
    amount: Any = None,
) -> Transition:
    """Validate ``actor`` taking ``action`` on ``offer`` and describe the result.

    Raises InvalidTransitionError for absorbing states and out-of-turn moves,
    ValidationError for a bad counter amount.
    """
    counters = ordered_counters(counters)
    current_amount = effective_amount(offer, counters)

    if offer.status.is_terminal:
        raise InvalidTransitionError(
            f"offer {offer.id} is {offer.status.value}; no further transitions"
        )

    turn = whose_turn(offer, counters)
    if turn is not actor:
        raise InvalidTransitionError(
            f"offer {offer.id} is waiting on the {turn.value if turn else 'nobody'}, not the {actor.value}"
        )

    counter_amount = None
    if action is OfferAction.COUNTER:
        counter_amount = validate_amount(amount)
        if counter_amount == current_amount:
            raise ValidationError(
                "A counter-offer must propose a different amount; accept the offer instead",
                fields=["amount"],
            )
    elif action is OfferAction.ACCEPT and amount is not None:
        # accept locks in the current effective amount; a client-supplied
        # amount must match it
        if validate_amount(amount) != current_amount:
            raise InvalidTransitionError(
                f"offer {offer.id} amount changed to {current_amount}",
                user_message="This offer has changed. Refresh to see the latest amount.",
            )

    return Transition(
        action=action,
        actor=actor,
        from_status=offer.status,
        new_status=ACTION_TARGETS[action],
        expected_version=offer.version,
        amount=counter_amount if counter_amount is not None else current_amount,
        counter_amount=counter_amount,
    )


def build_negotiation(offer: Offer, counters: Iterable[CounterOffer], caller_role: Party) -> Negotiation:
    """Read model merging an offer with its ordered counter history."""
    counters = ordered_counters(counters)
    turn = whose_turn(offer, counters)
    return Negotiation(
        offer=offer,
        counter_offers=counters,
        effective_amount=effective_amount(offer, counters),
        turn=turn,
        caller_role=caller_role,
        awaiting_caller=turn is caller_role,
        allowed_actions=allowed_actions(offer, counters, caller_role),
    )


def summarize(offer: Offer, counters: Iterable[CounterOffer], caller_role: Party) -> OfferSummary:
    counters = ordered_counters(counters)
    return OfferSummary(
        offer_id=offer.id,
        property_id=offer.property_id,
        status=offer.status,
        original_amount=offer.offer_amount,
        effective_amount=effective_amount(offer, counters),
        counter_count=len(counters),
        caller_role=caller_role,
        awaiting_caller=whose_turn(offer, counters) is caller_role,
        updated_at=offer.updated_at,
    )
