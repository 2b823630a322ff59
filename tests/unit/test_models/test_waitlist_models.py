"""Tests for waitlist models."""

import pytest
from pydantic import ValidationError

from realer.models.waitlist import ContactInfo, WaitlistDecision, WaitlistStatus
from tests.utils.factories import create_waitlist_request


@pytest.mark.unit
def test_contact_info_accepts_email_only():
    """Test contact with a name and e-mail is valid."""
    contact = ContactInfo(name="  Bea Buyer ", email="bea@example.com")
    assert contact.name == "Bea Buyer"
    assert contact.phone is None


@pytest.mark.unit
def test_contact_info_accepts_phone_only():
    contact = ContactInfo(name="Bea", phone="(555) 010-3000")
    assert contact.phone == "(555) 010-3000"


@pytest.mark.unit
def test_contact_info_requires_name():
    """Test that a blank name is rejected."""
    with pytest.raises(ValidationError):
        ContactInfo(name="   ", email="bea@example.com")


@pytest.mark.unit
def test_contact_info_requires_email_or_phone():
    with pytest.raises(ValidationError) as exc_info:
        ContactInfo(name="Bea", email="", phone=" ")
    assert "e-mail address or a phone number" in str(exc_info.value)


@pytest.mark.unit
@pytest.mark.parametrize("email", ["not-an-email", "a@b", "two@@example.com"])
def test_contact_info_rejects_bad_email(email):
    with pytest.raises(ValidationError):
        ContactInfo(name="Bea", email=email)


@pytest.mark.unit
def test_contact_info_rejects_short_phone():
    with pytest.raises(ValidationError):
        ContactInfo(name="Bea", phone="555-0100")


@pytest.mark.unit
def test_waitlist_decision_targets():
    assert WaitlistDecision.ACCEPT.target_status is WaitlistStatus.ACCEPTED
    assert WaitlistDecision.DECLINE.target_status is WaitlistStatus.DECLINED


@pytest.mark.unit
def test_waitlist_request_is_open():
    """Pending and accepted requests block a new request; declined ones do not."""
    assert create_waitlist_request("p1", "u1", WaitlistStatus.PENDING).is_open
    assert create_waitlist_request("p1", "u1", WaitlistStatus.ACCEPTED).is_open
    assert not create_waitlist_request("p1", "u1", WaitlistStatus.DECLINED).is_open
