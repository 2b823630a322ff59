"""Tests for access gate (waitlist) rules."""

import pytest

from realer.models.waitlist import NO_REQUEST, ContactInfo, WaitlistDecision, WaitlistStatus
from realer.services import access_gate
from realer.utils.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from tests.utils.factories import create_contact, create_property, create_waitlist_request


@pytest.fixture
def prop():
    return create_property(owner_id="owner-1", address="12 Elm Street", title="Elm Cottage")


@pytest.mark.unit
def test_parse_contact_wraps_validation_errors():
    with pytest.raises(ValidationError) as exc_info:
        access_gate.parse_contact({"name": "Bea"})
    assert exc_info.value.status_code == 400
    assert exc_info.value.fields


@pytest.mark.unit
def test_parse_contact_reports_field_names():
    with pytest.raises(ValidationError) as exc_info:
        access_gate.parse_contact({"name": "", "email": "bea@example.com"})
    assert "name" in exc_info.value.fields


@pytest.mark.unit
@pytest.mark.parametrize("contact", [None, "bea@example.com", ["Bea"]])
def test_parse_contact_requires_mapping(contact):
    with pytest.raises(ValidationError):
        access_gate.parse_contact(contact)


@pytest.mark.unit
def test_parse_decision():
    assert access_gate.parse_decision(" Accept ") is WaitlistDecision.ACCEPT
    with pytest.raises(ValidationError):
        access_gate.parse_decision("maybe")


@pytest.mark.unit
def test_resolve_status_uses_newest_request():
    older = create_waitlist_request("p1", "b1", WaitlistStatus.DECLINED, created_at="2026-10-01T10:00:00+00:00")
    newer = create_waitlist_request("p1", "b1", WaitlistStatus.PENDING, created_at="2026-10-02T10:00:00+00:00")
    assert access_gate.resolve_status([newer, older]) == "pending"
    assert access_gate.resolve_status([]) == NO_REQUEST


@pytest.mark.unit
def test_plan_request_builds_pending_row(prop):
    contact = ContactInfo(**create_contact(name="Bea"))
    request = access_gate.plan_request(prop, "buyer-1", contact, [])
    assert request.status is WaitlistStatus.PENDING
    assert request.property_id == prop.id
    assert request.user_id == "buyer-1"
    assert request.name == "Bea"


@pytest.mark.unit
def test_owner_cannot_request_own_property(prop):
    contact = ContactInfo(**create_contact())
    with pytest.raises(ValidationError):
        access_gate.plan_request(prop, "owner-1", contact, [])


@pytest.mark.unit
@pytest.mark.parametrize("status", [WaitlistStatus.PENDING, WaitlistStatus.ACCEPTED, WaitlistStatus.DECLINED])
def test_plan_request_conflicts_with_existing(prop, status):
    contact = ContactInfo(**create_contact())
    existing = [create_waitlist_request(prop.id, "buyer-1", status)]
    with pytest.raises(ConflictError):
        access_gate.plan_request(prop, "buyer-1", contact, existing)


@pytest.mark.unit
def test_plan_request_after_decline_with_reapply(prop):
    contact = ContactInfo(**create_contact())
    existing = [create_waitlist_request(prop.id, "buyer-1", WaitlistStatus.DECLINED)]
    request = access_gate.plan_request(prop, "buyer-1", contact, existing, allow_reapply=True)
    assert request.status is WaitlistStatus.PENDING
    assert request.id != existing[0].id


@pytest.mark.unit
def test_plan_decision_requires_owner(prop):
    request = create_waitlist_request(prop.id, "buyer-1")
    with pytest.raises(UnauthorizedError) as exc_info:
        access_gate.plan_decision(prop, request, "buyer-1", WaitlistDecision.ACCEPT)
    # indistinguishable from a missing request
    assert isinstance(exc_info.value, NotFoundError)
    assert exc_info.value.code == "not_found"


@pytest.mark.unit
def test_plan_decision_on_answered_request(prop):
    request = create_waitlist_request(prop.id, "buyer-1", WaitlistStatus.ACCEPTED)
    with pytest.raises(InvalidTransitionError):
        access_gate.plan_decision(prop, request, "owner-1", WaitlistDecision.DECLINE)


@pytest.mark.unit
def test_plan_decision_target(prop):
    request = create_waitlist_request(prop.id, "buyer-1")
    assert access_gate.plan_decision(prop, request, "owner-1", WaitlistDecision.DECLINE) is WaitlistStatus.DECLINED


@pytest.mark.unit
@pytest.mark.parametrize("user_id,status,unlocked", [
    (None, NO_REQUEST, False),
    ("buyer-1", NO_REQUEST, False),
    ("buyer-1", "pending", False),
    ("buyer-1", "declined", False),
    ("buyer-1", "accepted", True),
    ("owner-1", NO_REQUEST, True),
])
def test_property_view_gating(prop, user_id, status, unlocked):
    view = access_gate.build_property_view(prop, user_id, status)
    assert view.can_view_sensitive is unlocked
    assert (view.address == "12 Elm Street") is unlocked
    assert (view.seller is not None) is unlocked
    assert view.title == "Elm Cottage"
    assert view.location == prop.location


@pytest.mark.unit
def test_owner_view_cannot_make_offer(prop):
    assert access_gate.build_property_view(prop, "owner-1", NO_REQUEST).can_make_offer is False
    assert access_gate.build_property_view(prop, "buyer-1", "accepted").can_make_offer is True
