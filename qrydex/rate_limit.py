"""
Qrydex - Rate Limiting
Per-client minimum-interval limiter for outbound calls.

Each registry adapter, the scraper and the maintenance scheduler own one.
Timing comes from an injected clock so tests never sleep for real.
"""
import asyncio
from typing import Optional

import structlog

from qrydex.clock import SystemClock

logger = structlog.get_logger()


class RateLimiter:
    """
    Spaces consecutive calls at least `interval` seconds apart.

    backoff() pushes the next permitted call further out (used after an
    explicit 429 from a third party); it doubles up to max_backoff unless the
    caller supplies the server's Retry-After.
    """

    def __init__(
        self,
        interval: float,
        name: str = "default",
        clock=None,
        max_backoff: float = 300.0,
    ):
        self.interval = max(float(interval), 0.0)
        self.name = name
        self.clock = clock or SystemClock()
        self.max_backoff = max_backoff
        self._next_at: Optional[float] = None
        self._penalty = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = self.clock.monotonic()
            if self._next_at is not None and now < self._next_at:
                await self.clock.sleep(self._next_at - now)
                now = self.clock.monotonic()
            self._next_at = now + self.interval

    def backoff(self, retry_after: Optional[float] = None) -> float:
        if retry_after is not None and retry_after > 0:
            delay = min(float(retry_after), self.max_backoff)
        else:
            self._penalty = min(max(self._penalty * 2, self.interval * 2, 1.0), self.max_backoff)
            delay = self._penalty
        self._next_at = self.clock.monotonic() + delay
        logger.warning("rate_limiter_backoff", limiter=self.name, delay=round(delay, 2))
        return delay

    def reset_backoff(self) -> None:
        self._penalty = 0.0

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, *exc):
        return False
