from unittest.mock import AsyncMock, patch

import pytest

from catalog_adapter.errors import UpstreamError
from catalog_adapter.retry import MAX_DELAY_MS, RateLimiter, calculate_delay, with_retry


def test_calculate_delay_grows_with_bounded_jitter():
    with patch("catalog_adapter.retry.random.random", return_value=0.0):
        assert calculate_delay(0, 1000) == 1000
        assert calculate_delay(2, 1000) == 4000
    with patch("catalog_adapter.retry.random.random", return_value=0.999):
        assert 1000 <= calculate_delay(0, 1000) <= 1200


def test_calculate_delay_is_capped():
    assert calculate_delay(10, 1000) == MAX_DELAY_MS


@pytest.mark.asyncio
async def test_retries_transient_failures_then_succeeds(no_sleep):
    fn = AsyncMock(
        side_effect=[
            UpstreamError("unavailable", status=503),
            UpstreamError("unavailable", status=503),
            "ok",
        ]
    )

    result = await with_retry(fn, "op", max_retries=3, delay_ms=1000)

    assert result == "ok"
    assert fn.await_count == 3
    assert len(no_sleep) == 2
    assert 1.0 <= no_sleep[0] <= 1.2
    assert 2.0 <= no_sleep[1] <= 2.4


@pytest.mark.asyncio
async def test_non_retryable_failure_is_not_retried(no_sleep):
    error = UpstreamError("missing", status=404)
    fn = AsyncMock(side_effect=error)

    with pytest.raises(UpstreamError) as excinfo:
        await with_retry(fn, "op", max_retries=3)

    assert excinfo.value is error
    assert fn.await_count == 1
    assert no_sleep == []


@pytest.mark.asyncio
async def test_exhaustion_reraises_last_error(no_sleep):
    errors = [UpstreamError(f"reset {i}", code="ECONNRESET") for i in range(3)]
    fn = AsyncMock(side_effect=errors)

    with pytest.raises(UpstreamError) as excinfo:
        await with_retry(fn, "op", max_retries=2, delay_ms=100)

    assert excinfo.value is errors[-1]
    assert fn.await_count == 3
    assert len(no_sleep) == 2


@pytest.mark.asyncio
async def test_zero_retries_makes_one_attempt(no_sleep):
    fn = AsyncMock(side_effect=UpstreamError("x", status=500))

    with pytest.raises(UpstreamError):
        await with_retry(fn, "op", max_retries=0)

    assert fn.await_count == 1


def test_rate_limiter_rejects_bad_configuration():
    with pytest.raises(ValueError):
        RateLimiter(max_tokens=0)
    with pytest.raises(ValueError):
        RateLimiter(refill_rate=0)


@pytest.mark.asyncio
async def test_rate_limiter_waits_when_empty(no_sleep):
    limiter = RateLimiter(max_tokens=1, refill_rate=1.0)

    await limiter.acquire()
    await limiter.acquire()
    await limiter.acquire()

    assert len(no_sleep) == 2
    assert no_sleep[0] == pytest.approx(1.0, abs=0.05)
    # The second waiter queues behind the first.
    assert no_sleep[1] == pytest.approx(2.0, abs=0.05)


@pytest.mark.asyncio
async def test_rate_limiter_does_not_wait_with_tokens(no_sleep):
    limiter = RateLimiter(max_tokens=20, refill_rate=2.0)

    for _ in range(20):
        await limiter.acquire()

    assert no_sleep == []
    assert limiter.wait_time() == pytest.approx(0.5, abs=0.05)


def test_rate_limiter_refills_over_time():
    limiter = RateLimiter(max_tokens=2, refill_rate=2.0)
    limiter.tokens = 0.0

    with patch("catalog_adapter.retry.time.monotonic", return_value=limiter.last_refill + 10):
        assert limiter.wait_time() == 0.0

    assert limiter.tokens == 2.0
