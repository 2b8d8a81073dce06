import asyncio

import pytest

from quotabar.ratelimit import RateLimit, RateLimiter, TokenBucket


class FakeClock:
    """
    A manual clock; sleeping advances it instead of waiting.
    """

    def __init__(self) -> "None":
        self.now = 0.0
        self.sleeps: "list[float]" = []

    def __call__(self) -> "float":
        return self.now

    async def sleep(self, delay: "float") -> "None":
        self.sleeps.append(delay)
        self.now += delay


class TestRateLimit:
    def test_rejects_invalid(self) -> "None":
        with pytest.raises(ValueError):
            RateLimit(capacity=0)
        with pytest.raises(ValueError):
            RateLimit(refill_per_second=0)


class TestTokenBucket:
    @pytest.mark.asyncio
    async def test_burst_does_not_wait(self) -> "None":
        clock = FakeClock()
        bucket = TokenBucket(RateLimit(capacity=3), clock=clock, sleep=clock.sleep)
        for _ in range(3):
            assert await bucket.acquire() == 0.0
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_waits_for_refill(self) -> "None":
        clock = FakeClock()
        bucket = TokenBucket(
            RateLimit(capacity=1, refill_per_second=2.0), clock=clock, sleep=clock.sleep
        )
        await bucket.acquire()
        waited = await bucket.acquire()
        assert waited == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_refill_is_capped(self) -> "None":
        clock = FakeClock()
        bucket = TokenBucket(RateLimit(capacity=2), clock=clock, sleep=clock.sleep)
        await bucket.acquire()
        clock.now += 100.0
        await bucket.acquire()
        assert bucket.tokens == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_waiters_served_in_arrival_order(self) -> "None":
        clock = FakeClock()
        bucket = TokenBucket(
            RateLimit(capacity=1, refill_per_second=1.0), clock=clock, sleep=clock.sleep
        )
        order: "list[int]" = []

        async def _take(i: "int") -> "None":
            await bucket.acquire()
            order.append(i)

        await asyncio.gather(*(_take(i) for i in range(5)))
        assert order == [0, 1, 2, 3, 4]


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_override_per_provider(self) -> "None":
        clock = FakeClock()
        limiter = RateLimiter(
            default=RateLimit(capacity=5),
            overrides={"claude": RateLimit(capacity=1, refill_per_second=0.5)},
            clock=clock,
            sleep=clock.sleep,
        )
        await limiter.acquire("claude")
        assert await limiter.acquire("claude") == pytest.approx(2.0)
        assert await limiter.acquire("zai") == 0.0

    def test_one_bucket_per_provider(self) -> "None":
        limiter = RateLimiter()
        assert limiter.bucket("zai") is limiter.bucket("zai")
        assert limiter.bucket("zai") is not limiter.bucket("minimax")
