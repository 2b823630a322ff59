"""Change feed catch-up endpoint.

GET ?since=<cursor>&tables=property_offers,notifications

Returns the caller's retained events after ``since`` and the cursor to pass
next time. A RESYNC event means the history is gone and the client should
re-fetch everything it shows.
"""

from realer.services.identity import resolve_caller
from realer.services.orchestrator import get_orchestrator
from realer.utils.http import JsonHandler, query_int


async def get_feed(headers, query: dict):
    caller_id = await resolve_caller(headers)
    tables = [t for t in (query.get("tables") or "").split(",") if t.strip()]
    events, cursor = get_orchestrator().poll_feed(
        caller_id,
        since=query_int(query, "since", 0),
        tables=tables or None,
    )
    return 200, {"events": events, "cursor": cursor}


class handler(JsonHandler):
    """Vercel serverless function handler for the change feed."""

    def do_GET(self):
        query = self.query()
        self.handle_route(lambda: get_feed(self.headers, query))
