"""Tests for the error taxonomy."""

import pytest

from realer.utils.errors import (
    ConflictError,
    DeliveryError,
    InvalidTransitionError,
    NotFoundError,
    RealerError,
    SupabaseError,
    UnauthenticatedError,
    UnauthorizedError,
    UnavailableError,
    ValidationError,
)


@pytest.mark.unit
@pytest.mark.parametrize("error_cls,status,code", [
    (ValidationError, 400, "validation_error"),
    (UnauthenticatedError, 401, "unauthenticated"),
    (NotFoundError, 404, "not_found"),
    (UnauthorizedError, 404, "not_found"),
    (ConflictError, 409, "conflict"),
    (InvalidTransitionError, 409, "invalid_transition"),
    (DeliveryError, 502, "delivery_error"),
    (UnavailableError, 503, "unavailable"),
    (SupabaseError, 503, "unavailable"),
])
def test_error_codes_and_statuses(error_cls, status, code):
    error = error_cls("detail")
    assert isinstance(error, RealerError)
    assert error.status_code == status
    assert error.code == code


@pytest.mark.unit
def test_unauthorized_is_indistinguishable_from_not_found():
    assert UnauthorizedError("private detail").to_dict() == NotFoundError("other detail").to_dict()


@pytest.mark.unit
def test_to_dict_hides_internal_detail():
    error = ConflictError("row 0xdeadbeef violates waitlist_requests_live_pair_idx")
    payload = error.to_dict()
    assert payload == {"code": "conflict", "message": ConflictError.user_message}
    assert "0xdeadbeef" in str(error)


@pytest.mark.unit
def test_custom_user_message():
    error = InvalidTransitionError("stale", user_message="This offer has changed.")
    assert error.to_dict()["message"] == "This offer has changed."
    # class default untouched
    assert InvalidTransitionError.user_message == "This offer is no longer awaiting your response."


@pytest.mark.unit
def test_validation_error_lists_fields():
    error = ValidationError("amount must be a positive whole number", fields=["amount"])
    assert error.to_dict() == {
        "code": "validation_error",
        "message": "amount must be a positive whole number",
        "fields": ["amount"],
    }


@pytest.mark.unit
def test_delivery_error_retryable_flag():
    assert DeliveryError("x").retryable is True
    assert DeliveryError("x", retryable=False).retryable is False
