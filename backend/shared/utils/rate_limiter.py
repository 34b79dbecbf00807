"""
Per-provider rate limiting with a token bucket and 429 backoff.
Safe for asyncio; one bucket per adapter, owned by its HTTP client.
"""
from __future__ import annotations

import asyncio
import time
from typing import Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)


class TokenBucket:
    """
    In-process token bucket.
    Refills at rpm / 60 tokens per second; max burst defaults to rpm.
    """

    def __init__(self, rpm: int, burst: Optional[int] = None, name: str = "") -> None:
        self._rpm = max(1, rpm)
        self._burst = max(1, burst if burst is not None else rpm)
        self._tokens = float(self._burst)
        self._last_refill = time.monotonic()
        self._backoff_until = 0.0
        self._name = name
        self._lock = asyncio.Lock()

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        self._tokens = min(self._burst, self._tokens + elapsed * (self._rpm / 60.0))
        self._last_refill = now

    async def acquire(self) -> bool:
        """Consume one token if available. Returns True if allowed, False if rate limited."""
        async with self._lock:
            now = time.monotonic()
            if now < self._backoff_until:
                return False
            self._refill(now)
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def _next_slot_in(self) -> float:
        now = time.monotonic()
        if now < self._backoff_until:
            return self._backoff_until - now
        missing = max(0.0, 1.0 - self._tokens)
        return missing * 60.0 / self._rpm

    async def wait_until_available(self, timeout_s: Optional[float] = None) -> bool:
        """Wait until a token is available or timeout. Returns True if token acquired."""
        deadline = (time.monotonic() + timeout_s) if timeout_s is not None else None
        while True:
            if await self.acquire():
                return True
            wait = max(0.01, self._next_slot_in())
            if deadline is not None:
                left = deadline - time.monotonic()
                if left <= 0 or wait > left:
                    return False
            await asyncio.sleep(wait)

    def record_backoff(self, seconds: float) -> None:
        """Block the bucket after the provider answered 429."""
        self._backoff_until = max(self._backoff_until, time.monotonic() + seconds)
        logger.warning("rate_limit_backoff", provider=self._name, backoff_s=round(seconds, 2))
