"""Structured logging with correlation ids, operation timing and contact-data masking.

Buyer contact details (e-mail, phone) and exact property addresses are
sensitive: the structured logger scrubs them by field name before a record
is emitted, so call sites can pass model fields through unchanged.
"""

import hashlib
import logging
import re
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

from realer.utils.logging_config import LoggingConfig, get_logger


_correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_EMAIL_RE = re.compile(r'[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}', re.IGNORECASE)
_PHONE_RE = re.compile(r'\+?\d[\d\s().-]{7,}\d')
_SECRET_RE = re.compile(r'(?i)(api[_-]?key|token|secret|bearer)([\s:=]+)([A-Za-z0-9_.\-]{16,})')


def generate_correlation_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str]) -> None:
    _correlation_id_var.set(correlation_id)


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """Bind a correlation id (generated when absent) for the duration of a request."""
    if correlation_id is None:
        correlation_id = generate_correlation_id()

    token = _correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id_var.reset(token)


def mask_sensitive_data(text: Optional[str]) -> Optional[str]:
    """Redact e-mail addresses, phone numbers and credentials inside free text."""
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text
    text = _EMAIL_RE.sub('[REDACTED_EMAIL]', text)
    text = _PHONE_RE.sub('[REDACTED_PHONE]', text)
    return _SECRET_RE.sub(r'\1\2[REDACTED]', text)


def mask_user_id(user_id: Optional[str]) -> Optional[str]:
    """Stable short form of a user id: prefix plus a hash of the whole id."""
    if not LoggingConfig.LOG_MASK_SENSITIVE or not user_id:
        return user_id

    if len(user_id) > 12:
        hashed = hashlib.sha256(user_id.encode()).hexdigest()[:8]
        return f"{user_id[:4]}...{hashed}"
    return user_id


def mask_email(email: Optional[str]) -> Optional[str]:
    """Keep the first character and the domain of an e-mail address."""
    if not LoggingConfig.LOG_MASK_SENSITIVE or not email or "@" not in email:
        return email
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"


def mask_address(address: Optional[str]) -> Optional[str]:
    if not LoggingConfig.LOG_MASK_SENSITIVE or not address:
        return address
    return "[REDACTED_ADDRESS]"


def _mask_phone(phone: Optional[str]) -> Optional[str]:
    if not LoggingConfig.LOG_MASK_SENSITIVE or not phone:
        return phone
    digits = re.sub(r'\D', '', phone)
    return f"***{digits[-2:]}" if len(digits) >= 2 else "***"


# Log field name -> scrubber
SENSITIVE_FIELDS: Dict[str, Callable[[Any], Any]] = {
    "email": mask_email,
    "to": mask_email,
    "phone": _mask_phone,
    "address": mask_address,
    "full_address": mask_address,
    "error": mask_sensitive_data,
    "detail": mask_sensitive_data,
}


def scrub_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Apply SENSITIVE_FIELDS to a flat mapping of log fields."""
    scrubbed = {}
    for key, value in fields.items():
        scrubber = SENSITIVE_FIELDS.get(key)
        if scrubber is not None and isinstance(value, str):
            value = scrubber(value)
        scrubbed[key] = value
    return scrubbed


class StructuredLogger:
    """Logger wrapper taking keyword fields; adds the correlation id and scrubs contact data."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _get_extra(self, **kwargs: Any) -> Dict[str, Any]:
        extra: Dict[str, Any] = {}

        correlation_id = get_correlation_id()
        if correlation_id:
            extra["correlation_id"] = correlation_id

        extra.update(scrub_fields(kwargs))
        return extra

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._get_extra(**kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._get_extra(**kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._get_extra(**kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, extra=self._get_extra(**kwargs), exc_info=exc_info)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation_name: str, logger: Optional[StructuredLogger] = None, **context: Any):
    """Log how long an engine operation took; warn past LOG_SLOW_OPERATION_THRESHOLD_MS."""
    if logger is None:
        logger = get_structured_logger(__name__)

    start_time = time.perf_counter()
    logger.debug(f"Starting {operation_name}", operation=operation_name, **context)
    failed = False

    try:
        yield
    except Exception:
        failed = True
        raise
    finally:
        elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.info(
            f"Completed {operation_name}",
            operation=operation_name,
            processing_time_ms=elapsed_ms,
            failed=failed,
            **context
        )

        if elapsed_ms > LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS:
            logger.warning(
                f"Slow operation detected: {operation_name}",
                operation=operation_name,
                processing_time_ms=elapsed_ms,
                threshold_ms=LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS,
                **context
            )
