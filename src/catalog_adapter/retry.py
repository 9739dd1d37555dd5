"""Retry with exponential backoff and token-bucket throttling."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, TypeVar

from .errors import is_retryable, normalize_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_DELAY_MS = 30000.0
JITTER_RATIO = 0.2


def calculate_delay(attempt: int, base_delay_ms: float) -> float:
    """Backoff in milliseconds for a 0-indexed attempt."""
    exponential = base_delay_ms * (2**attempt)
    jitter = exponential * JITTER_RATIO * random.random()
    return min(exponential + jitter, MAX_DELAY_MS)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    operation: str,
    max_retries: int = 3,
    delay_ms: float = 1000,
) -> T:
    """Run ``fn`` up to ``max_retries + 1`` times.

    Non-retryable failures propagate immediately. When attempts run out the
    last raised exception is re-raised as-is; classification is left to the
    caller.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            classified = normalize_error(exc, operation)
            if not is_retryable(classified):
                logger.error("Non-retryable error in %s: %s", operation, classified.message)
                raise
            if attempt >= max_retries:
                logger.error(
                    "Max retries (%s) exceeded for %s: %s", max_retries, operation, classified.message
                )
                raise
            delay = calculate_delay(attempt, delay_ms)
            attempt += 1
            logger.warning(
                "Retry attempt %s/%s for %s after %.0fms: %s",
                attempt,
                max_retries,
                operation,
                delay,
                classified.message,
            )
            await asyncio.sleep(delay / 1000)


class RateLimiter:
    """Token bucket that blocks callers instead of rejecting them.

    Tokens refill continuously at ``refill_rate`` per second up to
    ``max_tokens``. A caller that finds the bucket empty reserves the next
    token (the balance goes negative) and sleeps until it would have been
    refilled, so concurrent waiters queue in arrival order.
    """

    def __init__(self, max_tokens: int = 20, refill_rate: float = 2.0) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self.max_tokens = float(max_tokens)
        self.refill_rate = float(refill_rate)
        self.tokens = float(max_tokens)
        self.last_refill = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def wait_time(self) -> float:
        """Seconds an acquisition made now would block."""
        self._refill()
        if self.tokens >= 1:
            return 0.0
        return (1 - self.tokens) / self.refill_rate

    async def acquire(self) -> None:
        # No await between refill and spend: atomic on a single event loop.
        wait = self.wait_time()
        self.tokens -= 1
        if wait > 0:
            logger.debug("Rate limiter empty, waiting %.3fs", wait)
            await asyncio.sleep(wait)
