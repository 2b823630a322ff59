"""Tests for transient-failure retries."""

import pytest
from unittest.mock import AsyncMock

from realer.utils.errors import ConflictError, UnavailableError
from realer.utils.retry import retry_unavailable


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retries_unavailable_until_success():
    func = AsyncMock(side_effect=[UnavailableError("down"), UnavailableError("down"), "ok"])
    result = await retry_unavailable(func, "a", attempts=3, initial_delay=0.001, key="v")
    assert result == "ok"
    assert func.await_count == 3
    func.assert_awaited_with("a", key="v")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reraises_after_attempts():
    func = AsyncMock(side_effect=UnavailableError("down"))
    with pytest.raises(UnavailableError):
        await retry_unavailable(func, attempts=2, initial_delay=0.001)
    assert func.await_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    func = AsyncMock(side_effect=ConflictError("dup"))
    with pytest.raises(ConflictError):
        await retry_unavailable(func, attempts=5, initial_delay=0.001)
    assert func.await_count == 1
