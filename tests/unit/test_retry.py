"""Unit tests for retry/backoff and the shared throttle."""
from unittest.mock import AsyncMock

import pytest

from pulse_core.sources.exceptions import (
    InvalidCredential,
    RateLimited,
    SourceRequestError,
    SourceUnavailable,
)
from pulse_core.sources.retry import (
    Throttle,
    error_from_status,
    parse_retry_after,
    with_retry,
)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_two_rate_limits_then_success():
    """Fails twice with 429 then succeeds: two backoff delays, three attempts."""
    operation = AsyncMock(
        side_effect=[RateLimited("429"), RateLimited("429"), {"ok": True}]
    )
    sleep = AsyncMock()

    result = await with_retry(operation, max_retries=3, base_backoff_ms=1000, sleep=sleep)

    assert result == {"ok": True}
    assert operation.await_count == 3
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    operation = AsyncMock(side_effect=SourceUnavailable("HTTP 503", status_code=503))
    sleep = AsyncMock()

    with pytest.raises(SourceUnavailable):
        await with_retry(operation, max_retries=3, base_backoff_ms=10, sleep=sleep)

    assert operation.await_count == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        InvalidCredential("HTTP 401: bad token"),
        SourceRequestError("HTTP 404 (non-retryable): missing", 404),
    ],
)
async def test_non_transient_errors_are_not_retried(error):
    operation = AsyncMock(side_effect=error)
    sleep = AsyncMock()

    with pytest.raises(type(error)):
        await with_retry(operation, max_retries=5, sleep=sleep)

    assert operation.await_count == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_after_overrides_backoff_and_arms_throttle():
    clock = FakeClock()
    throttle = Throttle(clock=clock)
    operation = AsyncMock(side_effect=[RateLimited("429", retry_after=7), "done"])
    sleep = AsyncMock()

    assert await with_retry(operation, throttle=throttle, sleep=sleep) == "done"

    sleep.assert_awaited_once_with(7)
    assert throttle.backoff_until == 1007.0
    assert throttle.backing_off


@pytest.mark.asyncio
async def test_throttle_backing_off_fails_fast():
    clock = FakeClock()
    throttle = Throttle(clock=clock)
    throttle.record_rate_limit(30)
    operation = AsyncMock(return_value="never")

    with pytest.raises(RateLimited) as exc_info:
        await with_retry(operation, throttle=throttle, sleep=AsyncMock())

    operation.assert_not_awaited()
    assert exc_info.value.retry_after == 30

    clock.now += 31
    assert await with_retry(operation, throttle=throttle, sleep=AsyncMock()) == "never"


def test_throttle_request_window():
    clock = FakeClock()
    throttle = Throttle(max_requests=2, window_seconds=60, clock=clock)

    throttle.check()
    throttle.record_request()
    throttle.check()
    throttle.record_request()

    with pytest.raises(RateLimited) as exc_info:
        throttle.check()
    assert exc_info.value.retry_after == 60

    clock.now += 60
    throttle.check()


def test_error_from_status_mapping():
    assert isinstance(error_from_status(401, "x"), InvalidCredential)
    assert isinstance(error_from_status(429, "x", 3), RateLimited)
    assert error_from_status(429, "x", 3).retry_after == 3
    assert error_from_status(502, "x").status_code == 502
    assert isinstance(error_from_status(502, "x"), SourceUnavailable)
    assert isinstance(error_from_status(400, "x"), SourceRequestError)


def test_parse_retry_after():
    assert parse_retry_after("12") == 12.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None
