"""Caller identity for HTTP bindings.

The caller is whoever the Supabase access token says they are. Roles within a
negotiation are never taken from the request; they are derived later from
stored ids.
"""

from typing import Mapping, Optional

from supabase import AuthError

from realer.services.supabase_client import SupabaseClient
from realer.utils.config import get_settings
from realer.utils.errors import UnauthenticatedError
from realer.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)

# Only honoured with STORE_BACKEND=memory, for local development
DEV_USER_HEADER = "X-User-Id"


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    auth = _header(headers, "Authorization") or ""
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def resolve_caller(headers: Mapping[str, str], required: bool = True) -> Optional[str]:
    """Return the authenticated user id, or raise UnauthenticatedError when required."""
    if get_settings().store_backend == "memory":
        dev_user = _header(headers, DEV_USER_HEADER)
        if dev_user:
            return dev_user.strip()

    token = bearer_token(headers)
    if token is None:
        if required:
            raise UnauthenticatedError("missing bearer token")
        return None

    async with SupabaseClient("auth.get_user") as client:
        try:
            response = client.auth.get_user(token)
        except AuthError as e:
            logger.warning("Access token rejected", error=str(e))
            raise UnauthenticatedError(f"invalid access token: {e}") from e

    user = getattr(response, "user", None)
    if user is None or not getattr(user, "id", None):
        raise UnauthenticatedError("access token has no user")

    logger.debug("Caller resolved", user_id=mask_user_id(user.id))
    return user.id
