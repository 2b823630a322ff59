"""Outbox dispatcher endpoint (can be called via Vercel cron)."""

import hmac

from realer.services.identity import bearer_token
from realer.services.orchestrator import get_orchestrator
from realer.services.outbox_dispatcher import OutboxDispatcher
from realer.utils.errors import UnauthenticatedError
from realer.utils.http import JsonHandler, query_int


async def dispatch(headers, query: dict):
    orchestrator = get_orchestrator()
    secret = orchestrator.settings.cron_secret
    if secret and not hmac.compare_digest(bearer_token(headers) or "", secret):
        raise UnauthenticatedError("cron secret mismatch")

    dispatcher = OutboxDispatcher(orchestrator.store, settings=orchestrator.settings)
    limit = query_int(query, "batch_size", orchestrator.settings.outbox_batch_size)
    stats = await dispatcher.run_once(limit)
    return 200, {"ok": True, **stats}


class handler(JsonHandler):
    """Process one batch of pending out-of-band deliveries."""

    def do_GET(self):
        query = self.query()
        self.handle_route(lambda: dispatch(self.headers, query))

    def do_POST(self):
        self.do_GET()
