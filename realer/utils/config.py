"""Engine settings read from the environment."""

import os
from typing import Optional

from pydantic import BaseModel, Field


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
    raw = os.environ.get(name, "")
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


class EngineSettings(BaseModel):
    """Runtime settings for the access and negotiation engine."""
    store_backend: str = Field("supabase", description="supabase or memory")
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    store_timeout_seconds: float = Field(5.0, gt=0)
    store_retry_attempts: int = Field(3, ge=1, le=10)
    waitlist_allow_reapply: bool = Field(
        False,
        description="Allow a declined buyer to submit a fresh waitlist request"
    )
    notification_channels: list[str] = Field(
        default_factory=list,
        description="Out-of-band delivery channels that receive outbox rows"
    )
    outbox_batch_size: int = Field(20, ge=1, le=500)
    outbox_max_attempts: int = Field(5, ge=1)
    outbox_retry_base_seconds: int = Field(30, ge=1)
    feed_retention: int = Field(1000, ge=1)
    feed_max_recipients: int = Field(10000, ge=1, description="Recipients whose feed history is kept in memory")
    brevo_api_key: Optional[str] = None
    email_from_name: str = "Realer Estate"
    email_from_address: str = "no-reply@realerestate.app"
    cron_secret: Optional[str] = Field(None, description="Bearer secret required by the outbox dispatch endpoint")

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from environment variables."""
        return cls(
            store_backend=os.environ.get("STORE_BACKEND", "supabase").strip().lower(),
            supabase_url=os.environ.get("SUPABASE_URL") or None,
            supabase_service_role_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or None,
            store_timeout_seconds=float(os.environ.get("STORE_TIMEOUT_SECONDS", "5")),
            store_retry_attempts=int(os.environ.get("STORE_RETRY_ATTEMPTS", "3")),
            waitlist_allow_reapply=_env_bool("WAITLIST_ALLOW_REAPPLY"),
            notification_channels=_env_list("NOTIFICATION_CHANNELS"),
            outbox_batch_size=int(os.environ.get("OUTBOX_BATCH_SIZE", "20")),
            outbox_max_attempts=int(os.environ.get("OUTBOX_MAX_ATTEMPTS", "5")),
            outbox_retry_base_seconds=int(os.environ.get("OUTBOX_RETRY_BASE_SECONDS", "30")),
            feed_retention=int(os.environ.get("FEED_RETENTION", "1000")),
            feed_max_recipients=int(os.environ.get("FEED_MAX_RECIPIENTS", "10000")),
            brevo_api_key=os.environ.get("BREVO_API_KEY") or None,
            email_from_name=os.environ.get("EMAIL_FROM_NAME", "Realer Estate"),
            email_from_address=os.environ.get("EMAIL_FROM_ADDRESS", "no-reply@realerestate.app"),
            cron_secret=os.environ.get("CRON_SECRET") or None,
        )


_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get or create the settings singleton."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests change the environment between cases)."""
    global _settings
    _settings = None
