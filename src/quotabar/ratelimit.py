import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping

from quotabar.models import ProviderId


@dataclass(frozen=True, slots=True)
class RateLimit:
    # burst size
    capacity: "int" = 5
    # tokens added per second
    refill_per_second: "float" = 1.0

    def __post_init__(self) -> "None":
        if self.capacity < 1 or self.refill_per_second <= 0:
            raise ValueError("rate limit needs capacity >= 1 and a positive refill")


class TokenBucket:
    """
    TokenBucket caps the outbound request rate of one provider.

    Callers that find the bucket empty wait for the next token
    while holding the bucket's lock, so concurrent callers are
    served in arrival order and nobody starves. acquire() only
    ever waits, it never fails.
    """

    def __init__(
        self,
        limit: "RateLimit",
        clock: "Callable[[], float]" = time.monotonic,
        sleep: "Callable[[float], Awaitable[object]]" = asyncio.sleep,
    ) -> "None":
        self._limit = limit
        self._clock = clock
        self._sleep = sleep
        self._tokens: "float" = float(limit.capacity)
        self._updated: "float" = clock()
        self._lock: "asyncio.Lock" = asyncio.Lock()

    @property
    def tokens(self) -> "float":
        return self._tokens

    def _refill(self) -> "None":
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(
            float(self._limit.capacity),
            self._tokens + elapsed * self._limit.refill_per_second,
        )
        self._updated = now

    async def acquire(self) -> "float":
        """
        takes one token, waiting for a refill when needed.
        Returns the number of seconds spent waiting.
        """
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return waited

                delay = (1.0 - self._tokens) / self._limit.refill_per_second
                await self._sleep(delay)
                waited += delay


class RateLimiter:
    """
    RateLimiter hands out one token bucket per provider, created
    on first use.
    """

    def __init__(
        self,
        default: "RateLimit" = RateLimit(),
        overrides: "Mapping[ProviderId, RateLimit] | None" = None,
        clock: "Callable[[], float]" = time.monotonic,
        sleep: "Callable[[float], Awaitable[object]]" = asyncio.sleep,
    ) -> "None":
        self._default = default
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._sleep = sleep
        self._buckets: "dict[ProviderId, TokenBucket]" = {}

    def bucket(self, provider: "ProviderId") -> "TokenBucket":
        bucket = self._buckets.get(provider)
        if bucket is None:
            limit = self._overrides.get(provider, self._default)
            bucket = TokenBucket(limit, clock=self._clock, sleep=self._sleep)
            self._buckets[provider] = bucket
        return bucket

    async def acquire(self, provider: "ProviderId") -> "float":
        return await self.bucket(provider).acquire()
