"""Tests for the Brevo e-mail sender."""

import json

import httpx
import pytest

from realer.services.email_sender import BREVO_SMTP_URL, BrevoEmailSender, render_notification
from realer.utils.errors import DeliveryError
from tests.fixtures.brevo_responses import INVALID_RECIPIENT, RATE_LIMITED, SENT
from tests.utils.factories import create_notification


def _sender(handler, settings, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BrevoEmailSender(client=client, settings=settings, **kwargs), client


@pytest.mark.unit
def test_render_notification_escapes_html():
    n = create_notification(title="Offer <b>Accepted</b>", message="R&D \"House\"")
    subject, text, body = render_notification(n)
    assert subject == "Offer <b>Accepted</b>"
    assert "R&D" in text
    assert "&lt;b&gt;" in body
    assert "R&amp;D" in body


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_posts_brevo_payload(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["api_key"] = request.headers["api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=SENT)

    sender, client = _sender(handler, settings)
    result = await sender.send("bea@example.com", "Offer Accepted!", "Great news", "<p>Great news</p>")
    await client.aclose()

    assert result == SENT
    assert seen["url"] == BREVO_SMTP_URL
    assert seen["api_key"] == "test-brevo-key"
    assert seen["body"]["to"] == [{"email": "bea@example.com"}]
    assert seen["body"]["sender"] == {"name": "Realer Estate", "email": "no-reply@realerestate.app"}
    assert seen["body"]["htmlContent"] == "<p>Great news</p>"


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("status,payload,retryable", [
    (429, RATE_LIMITED, True),
    (500, {"message": "internal"}, True),
    (400, INVALID_RECIPIENT, False),
])
async def test_send_maps_rejections(settings, status, payload, retryable):
    sender, client = _sender(lambda request: httpx.Response(status, json=payload), settings)
    with pytest.raises(DeliveryError) as exc_info:
        await sender.send("bea@example.com", "s", "t")
    await client.aclose()
    assert exc_info.value.retryable is retryable
    assert payload["message"] in str(exc_info.value)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_transport_error_is_retryable(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused")

    sender, client = _sender(handler, settings)
    with pytest.raises(DeliveryError) as exc_info:
        await sender.send("bea@example.com", "s", "t")
    await client.aclose()
    assert exc_info.value.retryable is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_requires_api_key_and_recipient(settings):
    sender = BrevoEmailSender(settings=settings.model_copy(update={"brevo_api_key": None}))
    with pytest.raises(DeliveryError) as exc_info:
        await sender.send("bea@example.com", "s", "t")
    assert exc_info.value.retryable is False

    with pytest.raises(DeliveryError) as exc_info:
        await BrevoEmailSender(settings=settings).send(None, "s", "t")
    assert exc_info.value.retryable is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_deliver_renders_notification(settings):
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=SENT)

    sender, client = _sender(handler, settings)
    await sender.deliver(create_notification(title="Offer Declined", message="The seller declined."), "bea@example.com")
    await client.aclose()
    assert seen["body"]["subject"] == "Offer Declined"
    assert "The seller declined." in seen["body"]["textContent"]
