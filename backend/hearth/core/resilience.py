"""Throttling and failure guards shared by indexing and tagging workloads."""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from hearth.core.errors import is_connection_error
from hearth.core.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


class RateLimiter:
    """Token bucket refilled continuously at `requests_per_minute / 60` tokens per second.

    `acquire()` is a soft limit: when the bucket is empty it waits for the next
    token but never longer than `max_wait_s`, then proceeds anyway. A
    misconfigured rate therefore slows callers down without stalling them.
    """

    def __init__(
        self,
        requests_per_minute: int,
        max_wait_s: float = 2.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.capacity = max(1, int(requests_per_minute))
        self.max_wait_s = max_wait_s
        self._refill_per_s = self.capacity / 60.0
        self._clock = clock
        self._tokens = float(self.capacity)
        self._last_refill = clock()

    @property
    def available_tokens(self) -> int:
        self._refill()
        return int(self._tokens)

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        if self.try_acquire():
            return
        wait_s = min((1 - self._tokens) / self._refill_per_s, self.max_wait_s)
        logger.debug("Rate limit reached, waiting %.2fs", wait_s)
        await asyncio.sleep(wait_s)
        self._refill()
        self._tokens = max(0.0, self._tokens - 1)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self._refill_per_s)
        self._last_refill = now


class ConcurrencyLimiter:
    """Bound the number of simultaneous in-flight requests."""

    def __init__(self, max_concurrent: int) -> None:
        self.max_concurrent = max(1, max_concurrent)
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self._semaphore.acquire()
        self._active += 1
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._active -= 1
        self._semaphore.release()


class CircuitBreaker:
    """Opens after `threshold` consecutive connection-like failures."""

    def __init__(self, threshold: int = 3) -> None:
        self.threshold = max(1, threshold)
        self.consecutive_failures = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def allow(self) -> bool:
        return not self._open

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def record_failure(self, exc: BaseException) -> bool:
        """Count `exc` if it is connection-like; return True if the circuit is open."""
        if not is_connection_error(exc):
            return self._open
        self.consecutive_failures += 1
        if not self._open and self.consecutive_failures >= self.threshold:
            self._open = True
            logger.warning(
                "Circuit breaker opened after %s consecutive connection failures: %s",
                self.consecutive_failures,
                exc,
            )
        return self._open

    def reset(self) -> None:
        if self._open:
            logger.info("Circuit breaker reset")
        self.consecutive_failures = 0
        self._open = False


__all__ = ["RateLimiter", "ConcurrencyLimiter", "CircuitBreaker"]
