"""Shared service-role Supabase client with async context manager support."""

from typing import Optional
from supabase import create_client, Client
from supabase.client import ClientOptions
from realer.utils.config import get_settings
from realer.utils.errors import SupabaseError
from realer.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

# One client per process; serverless invocations reuse it while warm
_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get or create the service-role client.

    The engine authorizes callers itself from stored ids, so the client
    bypasses row-level security and never persists a session.
    """
    global _client

    if _client is None:
        settings = get_settings()
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise SupabaseError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
            postgrest_client_timeout=settings.store_timeout_seconds,
        )
        _client = create_client(settings.supabase_url, settings.supabase_service_role_key, options)
        logger.info(
            "Supabase client initialized",
            url=settings.supabase_url,
            timeout_seconds=settings.store_timeout_seconds
        )

    return _client


def reset_supabase_client() -> None:
    """Forget the cached client (settings changed, or between tests)."""
    global _client
    _client = None


class SupabaseClient:
    """``async with SupabaseClient() as client`` around one unit of store work."""

    def __init__(self, operation: Optional[str] = None):
        self.operation = operation
        self.client: Optional[Client] = None

    async def __aenter__(self) -> Client:
        self.client = get_supabase_client()
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.warning(
                "Supabase operation failed",
                operation=self.operation,
                error_type=exc_type.__name__,
                error=str(exc_val)
            )
        return False
