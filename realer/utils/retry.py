"""Retry helpers for transient store failures."""

from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from realer.utils.errors import UnavailableError
from realer.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

T = TypeVar("T")


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying store operation",
        operation=getattr(retry_state.fn, "__name__", None),
        attempt=retry_state.attempt_number,
        error=str(exc) if exc else None
    )


async def retry_unavailable(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    attempts: int = 3,
    initial_delay: float = 0.05,
    max_delay: float = 2.0,
    **kwargs: Any
) -> T:
    """Await ``func`` and retry it with exponential backoff on UnavailableError.

    Only idempotent operations may go through here: reads, and writes keyed by
    a client-generated id (notification and outbox upserts).
    """
    result = None
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(UnavailableError),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=initial_delay, min=initial_delay, max=max_delay),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            result = await func(*args, **kwargs)
    return result
