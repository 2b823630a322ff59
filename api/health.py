"""Health check endpoint."""

from realer.services.orchestrator import get_orchestrator
from realer.utils.http import JsonHandler


async def health():
    orchestrator = get_orchestrator()
    return 200, {
        "status": "ok",
        "service": "realer-engine",
        "store_backend": orchestrator.settings.store_backend,
        "feed": orchestrator.feed.get_stats(),
    }


class handler(JsonHandler):
    """Health check handler for Vercel serverless function."""

    def do_GET(self):
        """Handle GET request."""
        self.handle_route(health)

    def do_POST(self):
        """Handle POST request (same as GET for health check)."""
        self.do_GET()
