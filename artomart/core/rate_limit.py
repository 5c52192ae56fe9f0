"""Token bucket rate limiting shared by the gateway and the model pool."""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Tuple


class TokenBucketLimiter:
    """Token bucket keyed per client.

    ``capacity`` tokens refill evenly over ``window_seconds``, so a client
    can burst up to ``capacity`` requests and then sustain
    ``capacity / window_seconds`` requests per second.
    """

    def __init__(
        self,
        capacity: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0 or window_seconds <= 0:
            raise ValueError("capacity and window_seconds must be positive")
        self._capacity = float(capacity)
        self._rate = capacity / window_seconds
        self._clock = clock
        self._buckets: Dict[str, Tuple[float, float]] = {}

    @property
    def capacity(self) -> int:
        return int(self._capacity)

    def _refill(self, key: str) -> float:
        now = self._clock()
        tokens, last_update = self._buckets.get(key, (self._capacity, now))
        tokens = min(self._capacity, tokens + (now - last_update) * self._rate)
        self._buckets[key] = (tokens, now)
        return tokens

    def check(self, key: str) -> Tuple[bool, float]:
        """Take one token if available.

        Returns ``(allowed, retry_after_seconds)``.
        """
        tokens = self._refill(key)
        now = self._buckets[key][1]
        if tokens >= 1:
            self._buckets[key] = (tokens - 1, now)
            return True, 0.0
        return False, (1 - tokens) / self._rate

    async def acquire(self, key: str = "default") -> float:
        """Wait until a token is available and take it. Returns the time waited."""
        waited = 0.0
        while True:
            allowed, retry_after = self.check(key)
            if allowed:
                return waited
            await asyncio.sleep(retry_after)
            waited += retry_after

    def reset(self, key: str) -> None:
        self._buckets.pop(key, None)

    def prune(self, idle_seconds: float) -> int:
        """Forget buckets that have been full and untouched for ``idle_seconds``."""
        now = self._clock()
        stale = [key for key, (_, last) in self._buckets.items() if now - last > idle_seconds]
        for key in stale:
            del self._buckets[key]
        return len(stale)
