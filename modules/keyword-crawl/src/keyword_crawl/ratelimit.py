from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
# A sleeper may return True (as Event.wait does) to report it was interrupted.
Sleeper = Callable[[float], object]


class TokenBucket:
    """Token bucket refilled continuously at ``refill_per_second``.

    ``clock`` and ``sleep`` are injectable so tests can drive time by hand.
    """

    def __init__(
        self,
        capacity: float,
        refill_per_second: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")
        self.capacity = float(capacity)
        self.refill_per_second = float(refill_per_second)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated_at = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._updated_at, 0.0)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
        self._updated_at = now

    def available(self) -> float:
        self._refill()
        return self._tokens

    def acquire(self, tokens: float = 1.0) -> float:
        """Block until ``tokens`` are available; return the seconds waited.

        If the sleeper reports an interruption the wait ends early and no
        tokens are taken.
        """
        if tokens > self.capacity:
            raise ValueError("cannot acquire more tokens than the bucket holds")

        waited = 0.0
        self._refill()
        while self._tokens < tokens:
            shortfall = (tokens - self._tokens) / self.refill_per_second
            if self._sleep(shortfall):
                return waited
            waited += shortfall
            self._refill()
        self._tokens -= tokens
        return waited


class Throttle:
    """Inter-request pacing: a token bucket plus a random jitter pause."""

    def __init__(
        self,
        bucket: TokenBucket | None = None,
        *,
        jitter: tuple[float, float] = (10.0, 20.0),
        rng: random.Random | None = None,
        sleep: Sleeper = time.sleep,
    ) -> None:
        low, high = jitter
        if low < 0 or high < low:
            raise ValueError("jitter window must satisfy 0 <= min <= max")
        self.bucket = bucket
        self.jitter = (float(low), float(high))
        self._rng = rng or random.Random()
        self._sleep = sleep

    def wait(self) -> float:
        waited = self.bucket.acquire() if self.bucket is not None else 0.0
        pause = self._rng.uniform(*self.jitter)
        if pause > 0:
            logger.info("waiting %.1fs before next keyword", pause)
            self._sleep(pause)
        return waited + pause
