"""Waitlist (access gate) endpoint.

GET  ?property_id=...         gate status and gated property view
GET  ?view=owner | ?view=buyer dashboard lists
POST {"action": "request", "property_id", "contact"}
POST {"action": "decide", "request_id", "decision"}
"""

from realer.services.identity import resolve_caller
from realer.services.orchestrator import get_orchestrator
from realer.utils.errors import ValidationError
from realer.utils.http import JsonHandler


async def get_waitlist(headers, query: dict):
    orchestrator = get_orchestrator()
    property_id = query.get("property_id")

    if property_id:
        caller_id = await resolve_caller(headers, required=False)
        view = await orchestrator.get_property_view(property_id, caller_id)
        return 200, {"status": view.waitlist_status, "property": view}

    caller_id = await resolve_caller(headers)
    view = query.get("view", "buyer")
    if view == "owner":
        return 200, {"requests": await orchestrator.list_waitlist_for_owner(caller_id)}
    if view == "buyer":
        return 200, {"requests": await orchestrator.list_waitlist_for_buyer(caller_id)}
    raise ValidationError("view must be 'owner' or 'buyer'", fields=["view"])


async def post_waitlist(headers, body: dict):
    caller_id = await resolve_caller(headers)
    orchestrator = get_orchestrator()
    action = body.get("action")

    if action == "request":
        request = await orchestrator.request_access(body.get("property_id"), caller_id, body.get("contact"))
        return 201, {"request": request}
    if action == "decide":
        request = await orchestrator.decide(body.get("request_id"), caller_id, body.get("decision"))
        return 200, {"request": request}
    raise ValidationError("action must be 'request' or 'decide'", fields=["action"])


class handler(JsonHandler):
    """Vercel serverless function handler for waitlist requests."""

    def do_GET(self):
        query = self.query()
        self.handle_route(lambda: get_waitlist(self.headers, query))

    def do_POST(self):
        self.handle_route(lambda: post_waitlist(self.headers, self.read_json()))
