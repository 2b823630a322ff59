"""Identifiers for engine rows."""

from ulid import ULID


def new_id() -> str:
    """Generate a time-ordered ID in UUID text form (the marketplace tables key on uuid)."""
    return str(ULID().to_uuid())
