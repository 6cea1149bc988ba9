"""
core/retry.py - Injectable retry policy.

Exponential backoff with a cap. The default policy never gives up
(max_attempts=None); tests inject a finite policy and a fake sleep.

    policy = RetryPolicy(backoff_ms=1000, max_backoff_ms=10000)
    policy.delay_ms(0)  # 1000
    policy.delay_ms(1)  # 2000
    policy.delay_ms(5)  # 10000 (capped)
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional


async def _asyncio_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


@dataclass
class RetryPolicy:
    """Backoff parameters plus an optional attempt limit."""
    backoff_ms: int = 1000
    max_backoff_ms: int = 10000
    max_attempts: Optional[int] = None
    sleep: Callable[[float], Awaitable[None]] = field(default=_asyncio_sleep, repr=False)

    def __post_init__(self):
        if self.backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff values must be non-negative")
        if self.max_backoff_ms < self.backoff_ms:
            raise ValueError("max_backoff_ms must be >= backoff_ms")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1 or None")

    def delay_ms(self, failures: int) -> int:
        """Delay after the given number of consecutive failures (0-based)."""
        # Bounded shift: past the cap the exact exponent no longer matters
        return min(self.backoff_ms * (2 ** min(failures, 32)), self.max_backoff_ms)

    def should_retry(self, attempts: int) -> bool:
        """True if another attempt is allowed after `attempts` tries."""
        return self.max_attempts is None or attempts < self.max_attempts

    async def wait(self, failures: int) -> int:
        """Sleep for the backoff of this failure count; returns the delay in ms."""
        delay = self.delay_ms(failures)
        await self.sleep(delay / 1000)
        return delay
