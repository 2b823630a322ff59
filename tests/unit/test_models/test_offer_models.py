"""Tests for offer negotiation models."""

import pytest
from pydantic import ValidationError

from realer.models.offer import CounterOffer, Offer, OfferStatus, Party
from realer.models.property import Property
from tests.utils.factories import create_counter_offer, create_offer, create_property


@pytest.mark.unit
def test_offer_status_terminal():
    """Test accepted and declined are the absorbing states."""
    assert OfferStatus.ACCEPTED.is_terminal
    assert OfferStatus.DECLINED.is_terminal
    assert not OfferStatus.PENDING.is_terminal
    assert not OfferStatus.COUNTERED.is_terminal


@pytest.mark.unit
def test_party_other():
    assert Party.BUYER.other is Party.SELLER
    assert Party.SELLER.other is Party.BUYER


@pytest.mark.unit
def test_offer_party_of_uses_stored_ids():
    offer = create_offer(user_id="buyer-1", seller_id="seller-1")
    assert offer.party_of("buyer-1") is Party.BUYER
    assert offer.party_of("seller-1") is Party.SELLER
    assert offer.party_of("someone-else") is None
    assert offer.user_for(Party.SELLER) == "seller-1"


@pytest.mark.unit
def test_offer_amount_must_be_positive():
    with pytest.raises(ValidationError):
        Offer(id="o1", property_id="p1", user_id="b1", seller_id="s1", offer_amount=0)


@pytest.mark.unit
def test_counter_offer_author():
    assert create_counter_offer("o1", 320000, from_seller=True).author is Party.SELLER
    assert create_counter_offer("o1", 310000, from_seller=False).author is Party.BUYER


@pytest.mark.unit
def test_counter_offer_amount_must_be_positive():
    with pytest.raises(ValidationError):
        CounterOffer(id="c1", offer_id="o1", amount=-5, from_seller=True)


@pytest.mark.unit
def test_property_label_falls_back_to_location():
    prop = create_property(title=None, location="Austin, TX")
    assert prop.label == "Austin, TX"
    assert isinstance(prop, Property)
