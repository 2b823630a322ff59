"""Error taxonomy for the access and negotiation engine."""

from typing import Optional


class RealerError(Exception):
    """Base exception for the Realer backend.

    Every subclass carries a stable machine code, the HTTP status a binding
    should use, and a short message that is safe to show to the user.
    """
    code = "internal_error"
    status_code = 500
    user_message = "Something went wrong. Please try again."

    def __init__(self, detail: Optional[str] = None, user_message: Optional[str] = None):
        super().__init__(detail or self.user_message)
        self.detail = detail
        if user_message:
            self.user_message = user_message

    def to_dict(self) -> dict:
        """Public error payload (never includes the internal detail)."""
        return {"code": self.code, "message": self.user_message}


class ValidationError(RealerError):
    """Bad input shape or value. Recoverable by the caller, never retried."""
    code = "validation_error"
    status_code = 400
    user_message = "Some of the submitted information is invalid."

    def __init__(self, detail: Optional[str] = None, fields: Optional[list[str]] = None):
        super().__init__(detail, user_message=detail)
        self.fields = fields or []

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.fields:
            payload["fields"] = self.fields
        return payload


class ConflictError(RealerError):
    """Duplicate request or state race."""
    code = "conflict"
    status_code = 409
    user_message = "You have already requested or responded to this."


class InvalidTransitionError(RealerError):
    """State machine violation."""
    code = "invalid_transition"
    status_code = 409
    user_message = "This offer is no longer awaiting your response."


class NotFoundError(RealerError):
    """Entity missing or caller not allowed to see it.

    Both cases share one signal so that callers cannot tell whether the row exists.
    """
    code = "not_found"
    status_code = 404
    user_message = "We couldn't find that, or you don't have access to it."


class UnauthorizedError(NotFoundError):
    """Caller lacks authority over an entity; indistinguishable from NotFound."""
    pass


class UnauthenticatedError(RealerError):
    """Missing or invalid access token on an HTTP request."""
    code = "unauthenticated"
    status_code = 401
    user_message = "Please sign in to continue."


class UnavailableError(RealerError):
    """Store or feed transiently down. Safe to retry with backoff."""
    code = "unavailable"
    status_code = 503
    user_message = "The service is temporarily unavailable. Please try again shortly."


class SupabaseError(UnavailableError):
    """Supabase operation error."""
    pass


class DeliveryError(RealerError):
    """Out-of-band notification delivery (e-mail) failed."""
    code = "delivery_error"
    status_code = 502
    user_message = "We couldn't deliver the notification."

    def __init__(self, detail: Optional[str] = None, retryable: bool = True):
        super().__init__(detail)
        self.retryable = retryable
