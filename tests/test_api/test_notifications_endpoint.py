"""Tests for the notifications endpoint."""

import pytest
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))
from api.notifications import handler
from realer.services.orchestrator import set_orchestrator
from realer.utils.http import run_async
from tests.utils.factories import create_contact
from tests.utils.helpers import call_handler


@pytest.fixture
def api(orchestrator, listed_property, buyer_id, other_buyer_id):
    set_orchestrator(orchestrator)
    for buyer in (buyer_id, other_buyer_id):
        run_async(orchestrator.request_access(listed_property.id, buyer, create_contact()))
    return orchestrator


def _as(user_id):
    return {"X-User-Id": user_id}


@pytest.mark.e2e
def test_list_notifications(api, seller_id):
    status, payload, _ = call_handler(handler, "GET", "/api/notifications", headers=_as(seller_id))

    assert status == 200
    assert payload["unread_count"] == 2
    assert {n["title"] for n in payload["notifications"]} == {"New Waitlist Request"}
    assert all(n["properties"]["role"] == "seller" for n in payload["notifications"])


@pytest.mark.e2e
def test_mark_one_read(api, seller_id):
    _, payload, _ = call_handler(handler, "GET", "/api/notifications", headers=_as(seller_id))
    target = payload["notifications"][0]["id"]

    status, payload, _ = call_handler(handler, "POST", "/api/notifications",
                                      body={"action": "read", "id": target}, headers=_as(seller_id))
    assert status == 200
    assert payload["notification"]["read"] is True

    _, payload, _ = call_handler(handler, "GET", "/api/notifications?unread_only=1", headers=_as(seller_id))
    assert target not in [n["id"] for n in payload["notifications"]]
    assert payload["unread_count"] == 1


@pytest.mark.e2e
def test_cannot_mark_someone_elses_notification(api, seller_id, buyer_id):
    _, payload, _ = call_handler(handler, "GET", "/api/notifications", headers=_as(seller_id))
    status, _, _ = call_handler(handler, "POST", "/api/notifications",
                                body={"action": "read", "id": payload["notifications"][0]["id"]},
                                headers=_as(buyer_id))
    assert status == 404


@pytest.mark.e2e
def test_read_all(api, seller_id):
    status, payload, _ = call_handler(handler, "POST", "/api/notifications",
                                      body={"action": "read_all"}, headers=_as(seller_id))
    assert status == 200
    assert payload["updated"] == 2

    _, payload, _ = call_handler(handler, "GET", "/api/notifications", headers=_as(seller_id))
    assert payload["unread_count"] == 0
    assert len(payload["notifications"]) == 2


@pytest.mark.e2e
def test_requires_caller(api):
    status, _, _ = call_handler(handler, "GET", "/api/notifications")
    assert status == 401


@pytest.mark.e2e
def test_bad_limit(api, seller_id):
    status, payload, _ = call_handler(handler, "GET", "/api/notifications?limit=many", headers=_as(seller_id))
    assert status == 400
    assert payload["error"]["fields"] == ["limit"]
