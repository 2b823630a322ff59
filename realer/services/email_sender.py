"""Transactional e-mail through the Brevo SMTP API."""

import html
from typing import Optional

import httpx

from realer.models.notification import Notification
from realer.utils.config import EngineSettings, get_settings
from realer.utils.errors import DeliveryError
from realer.utils.logging import get_structured_logger, mask_email

logger = get_structured_logger(__name__)

BREVO_SMTP_URL = "https://api.brevo.com/v3/smtp/email"


def render_notification(notification: Notification) -> tuple[str, str, str]:
    """(subject, text, html) for a notification e-mail."""
    subject = notification.title
    text = f"{notification.message}\n\nOpen your Realer Estate dashboard to respond."
    body = (
        f"<h2>{html.escape(notification.title)}</h2>"
        f"<p>{html.escape(notification.message)}</p>"
        "<p>Open your Realer Estate dashboard to respond.</p>"
    )
    return subject, text, body


class BrevoEmailSender:
    """Minimal async client for Brevo's transactional e-mail endpoint."""

    channel = "email"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_name: Optional[str] = None,
        from_address: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        settings: Optional[EngineSettings] = None,
    ):
        settings = settings or get_settings()
        self.api_key = api_key or settings.brevo_api_key
        self.sender = {
            "name": from_name or settings.email_from_name,
            "email": from_address or settings.email_from_address,
        }
        self._client = client
        self.timeout = timeout

    async def send(self, to: str, subject: str, text: str, html_content: Optional[str] = None) -> dict:
        """Send one message. Raises DeliveryError; ``retryable`` is False for 4xx rejections."""
        if not self.api_key:
            raise DeliveryError("BREVO_API_KEY is not configured", retryable=False)
        if not to:
            raise DeliveryError("recipient has no e-mail address", retryable=False)

        payload = {
            "sender": self.sender,
            "to": [{"email": to}],
            "subject": subject,
            "textContent": text,
        }
        if html_content:
            payload["htmlContent"] = html_content
        headers = {"api-key": self.api_key, "Content-Type": "application/json", "Accept": "application/json"}

        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await client.post(BREVO_SMTP_URL, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Brevo request failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code >= 400:
            try:
                message = response.json().get("message")
            except ValueError:
                message = response.text
            retryable = response.status_code == 429 or response.status_code >= 500
            logger.warning(
                "Brevo rejected e-mail",
                status_code=response.status_code,
                to=mask_email(to),
                error=message
            )
            raise DeliveryError(f"Brevo returned {response.status_code}: {message}", retryable=retryable)

        logger.info("E-mail sent", to=mask_email(to), subject=subject)
        return response.json() if response.content else {}

    async def deliver(self, notification: Notification, email: Optional[str]) -> dict:
        subject, text, body = render_notification(notification)
        return await self.send(email, subject, text, body)
