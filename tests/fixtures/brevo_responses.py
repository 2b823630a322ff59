"""Brevo SMTP API response payloads."""

SENT = {"messageId": "<202610011200.12345678901@smtp-relay.mailin.fr>"}

UNAUTHORIZED = {"code": "unauthorized", "message": "Key not found"}

RATE_LIMITED = {"code": "too_many_requests", "message": "Too many requests"}

INVALID_RECIPIENT = {"code": "invalid_parameter", "message": "email is not valid in to"}
