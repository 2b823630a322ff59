"""Notification centre endpoint.

GET  ?unread_only=1&since=...&limit=...
POST {"action": "read", "id"} | {"action": "read_all"}
"""

from realer.services.identity import resolve_caller
from realer.services.orchestrator import get_orchestrator
from realer.utils.errors import ValidationError
from realer.utils.http import JsonHandler, query_flag, query_int


async def get_notifications(headers, query: dict):
    caller_id = await resolve_caller(headers)
    notifications = await get_orchestrator().list_notifications(
        caller_id,
        unread_only=query_flag(query.get("unread_only")),
        since=query.get("since") or None,
        limit=query_int(query, "limit", 50),
    )
    return 200, {
        "notifications": notifications,
        "unread_count": sum(1 for n in notifications if not n.read),
    }


async def post_notifications(headers, body: dict):
    caller_id = await resolve_caller(headers)
    orchestrator = get_orchestrator()
    action = body.get("action")

    if action == "read":
        return 200, {"notification": await orchestrator.mark_read(caller_id, body.get("id"))}
    if action == "read_all":
        return 200, {"updated": await orchestrator.mark_all_read(caller_id)}
    raise ValidationError("action must be 'read' or 'read_all'", fields=["action"])


class handler(JsonHandler):
    """Vercel serverless function handler for notifications."""

    def do_GET(self):
        query = self.query()
        self.handle_route(lambda: get_notifications(self.headers, query))

    def do_POST(self):
        self.handle_route(lambda: post_notifications(self.headers, self.read_json()))
