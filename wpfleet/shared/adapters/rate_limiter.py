"""
Outbound rate limiting for remote site API calls.

The limiter is an explicit object handed to the sync engine and the bulk
update orchestrator; there is no process-wide registry.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class RateLimiter:
    """Token bucket limiting how many remote calls start per second."""

    def __init__(self, rate_per_second: float, burst: Optional[float] = None):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be > 0")
        self.rate = rate_per_second
        self.capacity = burst if burst is not None else rate_per_second
        self.tokens = self.capacity
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a token is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = max(0.0, now - self.last_update)

            self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                logger.debug("rate_limit_waiting", wait_seconds=round(wait_time, 3))
                await asyncio.sleep(wait_time)
                self.tokens = 0
                self.last_update = time.monotonic()
            else:
                self.tokens -= 1


async def with_rate_limit(
    coro: Callable[..., Awaitable[T]],
    *args: Any,
    limiter: Optional[RateLimiter] = None,
    **kwargs: Any,
) -> T:
    """
    Execute a coroutine function, first waiting on `limiter` when one is given.

    Usage:
        plugins = await with_rate_limit(client.list_plugins, limiter=self.rate_limiter)
    """
    if limiter is not None:
        await limiter.acquire()
    return await coro(*args, **kwargs)
