"""Client-side Gmail quota pacing.

Gmail enforces a per-user budget of quota units per second (a moving average
that tolerates short bursts). The token bucket below paces our own calls so
we rarely trip the server limiter; it is a pacing aid only, the server stays
the authority on real limits.

The bucket is deliberately time-source agnostic: ``reserve`` takes ``now``
explicitly, and ``consume`` reads an injectable clock and sleeps through an
injectable coroutine, so tests can drive it without real waiting.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger()

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class TokenBucket:
    """Token bucket measured in Gmail quota units.

    Attributes:
        capacity: Maximum tokens held (the burst size).
        refill_rate: Tokens added per second.
        tokens: Currently available tokens. Negative values are reserved
            debt that callers are already sleeping off.
        last_refill: Clock reading of the last refill.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("capacity and refill_rate must be positive")

        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self.tokens = float(capacity)
        self._clock = clock
        self._sleep = sleep
        self.last_refill = clock()
        self._lock = asyncio.Lock()

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def reserve(self, cost: float, now: float) -> float:
        """Deduct ``cost`` and return how long the caller must wait first.

        Args:
            cost: Quota units for the upcoming call.
            now: Current clock reading in seconds.

        Returns:
            Seconds to wait before issuing the call (0 when tokens suffice).
        """
        self.refill(now)
        wait = 0.0
        if self.tokens < cost:
            wait = (cost - self.tokens) / self.refill_rate
        self.tokens -= cost
        return wait

    async def consume(self, cost: float) -> float:
        """Reserve ``cost`` units and suspend until they are available.

        Returns:
            The time spent waiting, in seconds.
        """
        async with self._lock:
            wait = self.reserve(cost, self._clock())

        if wait > 0:
            logger.debug("quota_wait", wait_seconds=round(wait, 3), cost=cost)
            await self._sleep(wait)
        return wait
