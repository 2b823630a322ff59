"""Out-of-band notification delivery.

Drains the notification outbox written alongside every state transition.
Delivery failures never affect the transition itself: an entry is retried
with exponential backoff until ``OUTBOX_MAX_ATTEMPTS`` and then parked as
failed.
"""

from datetime import timedelta
from typing import Optional, Protocol

from realer.models.notification import Notification, OutboxEntry
from realer.services.email_sender import BrevoEmailSender
from realer.services.store import NegotiationStore, iso, utc_now
from realer.utils.config import EngineSettings, get_settings
from realer.utils.errors import DeliveryError, RealerError
from realer.utils.logging import get_structured_logger, log_timing, mask_user_id

logger = get_structured_logger(__name__)


class ChannelSender(Protocol):
    async def deliver(self, notification: Notification, email: Optional[str]) -> dict: ...


class OutboxDispatcher:
    """Claims due outbox entries and hands them to channel senders."""

    def __init__(
        self,
        store: NegotiationStore,
        senders: Optional[dict[str, ChannelSender]] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        if senders is None:
            senders = {BrevoEmailSender.channel: BrevoEmailSender(settings=self.settings)}
        self.senders = senders

    def backoff(self, attempts: int) -> timedelta:
        """Delay before the next try after ``attempts`` failures."""
        return timedelta(seconds=self.settings.outbox_retry_base_seconds * (2 ** max(attempts - 1, 0)))

    async def run_once(self, limit: Optional[int] = None) -> dict:
        """Deliver one batch. Returns counts of claimed, sent, retried and failed entries."""
        stats = {"claimed": 0, "sent": 0, "retried": 0, "failed": 0}
        with log_timing("outbox_dispatch", logger=logger):
            entries = await self.store.claim_outbox_batch(limit or self.settings.outbox_batch_size)
            stats["claimed"] = len(entries)
            for entry in entries:
                outcome = await self._deliver(entry)
                stats[outcome] += 1

        if entries:
            logger.info("Outbox batch processed", **stats)
        return stats

    async def _deliver(self, entry: OutboxEntry) -> str:
        attempts = entry.attempts + 1
        try:
            await self._send(entry)
        except Exception as e:
            return await self._record_failure(entry, attempts, e)

        await self.store.mark_outbox_sent(entry.id, attempts)
        return "sent"

    async def _send(self, entry: OutboxEntry) -> None:
        sender = self.senders.get(entry.channel)
        if sender is None:
            raise DeliveryError(f"no sender for channel {entry.channel}", retryable=False)

        notification = await self.store.get_notification(entry.notification_id)
        if notification is None:
            raise DeliveryError("notification missing", retryable=False)

        profile = await self.store.get_profile(entry.user_id)
        email = profile.email if profile else None
        await sender.deliver(notification, email)

    async def _record_failure(self, entry: OutboxEntry, attempts: int, error: Exception) -> str:
        """Count the failed attempt against the entry so it cannot be claimed forever."""
        if not isinstance(error, RealerError):
            logger.error(
                "Outbox delivery raised unexpectedly",
                exc_info=True,
                entry_id=entry.id,
                channel=entry.channel,
                error_type=type(error).__name__
            )

        retryable = getattr(error, "retryable", True)
        if retryable and attempts < self.settings.outbox_max_attempts:
            next_attempt = iso(utc_now() + self.backoff(attempts))
            await self.store.mark_outbox_retry(entry.id, attempts, next_attempt, str(error))
            logger.warning(
                "Outbox delivery failed; will retry",
                entry_id=entry.id,
                channel=entry.channel,
                attempts=attempts,
                next_attempt_at=next_attempt,
                error=str(error)
            )
            return "retried"

        await self.store.mark_outbox_failed(entry.id, attempts, str(error))
        logger.error(
            "Outbox delivery failed permanently",
            entry_id=entry.id,
            channel=entry.channel,
            user_id=mask_user_id(entry.user_id),
            attempts=attempts,
            error=str(error)
        )
        return "failed"
