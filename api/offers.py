"""Offer negotiation endpoint.

GET  ?offer_id=...               negotiation with counter history
GET  ?property_id=...&top=1      anonymised top bids
GET  ?role=buyer|seller          offers dashboard
POST {"action": "create", "property_id", "amount", "proof_of_funds_url"?, "is_interested"?}
POST {"action": "accept"|"decline"|"counter", "offer_id", "amount"?}
"""

from realer.services.identity import resolve_caller
from realer.services.orchestrator import get_orchestrator
from realer.utils.errors import ValidationError
from realer.utils.http import JsonHandler, query_flag, query_int

RESPONSE_ACTIONS = ("accept", "decline", "counter")


async def get_offers(headers, query: dict):
    orchestrator = get_orchestrator()

    if query.get("property_id") and query_flag(query.get("top")):
        limit = query_int(query, "limit", 3)
        return 200, {"offers": await orchestrator.top_offers(query["property_id"], limit=limit)}

    caller_id = await resolve_caller(headers)
    if query.get("offer_id"):
        return 200, {"negotiation": await orchestrator.get_negotiation(query["offer_id"], caller_id)}
    if query.get("role"):
        return 200, {"offers": await orchestrator.list_offers(caller_id, query["role"])}
    raise ValidationError("offer_id, role or property_id with top=1 is required", fields=["offer_id", "role"])


async def post_offers(headers, body: dict):
    caller_id = await resolve_caller(headers)
    orchestrator = get_orchestrator()
    action = body.get("action")

    if action == "create":
        offer = await orchestrator.create_offer(
            body.get("property_id"),
            caller_id,
            body.get("amount"),
            proof_of_funds_url=body.get("proof_of_funds_url"),
            is_interested=body.get("is_interested", True),
        )
        return 201, {"offer": offer}
    if action in RESPONSE_ACTIONS:
        negotiation = await orchestrator.respond_to_offer(
            body.get("offer_id"), caller_id, action, body.get("amount")
        )
        return 200, {"negotiation": negotiation}
    raise ValidationError("action must be create, accept, decline or counter", fields=["action"])


class handler(JsonHandler):
    """Vercel serverless function handler for offers."""

    def do_GET(self):
        query = self.query()
        self.handle_route(lambda: get_offers(self.headers, query))

    def do_POST(self):
        self.handle_route(lambda: post_offers(self.headers, self.read_json()))
