import asyncio

from discount_issuer.core.config import settings
from discount_issuer.core.rate_limit import (
    RateLimit,
    RateLimiter,
    discount_issue_limit,
    rate_limit_bypassed,
    session_identifier,
)

LIMIT = RateLimit(max_requests=5, window_seconds=3600)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.expiries: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.expiries[key] = seconds
        return True


class BrokenRedis:
    async def incr(self, key: str) -> int:
        raise ConnectionError("redis down")

    async def expire(self, key: str, seconds: int) -> bool:
        raise ConnectionError("redis down")


def _attempts(limiter: RateLimiter, count: int, identifier: str = "session:s1") -> list:
    async def run():
        return [await limiter.check_and_consume(identifier, "discount_issue", LIMIT) for _ in range(count)]

    return asyncio.run(run())


def test_sixth_attempt_in_window_is_denied() -> None:
    limiter = RateLimiter(clock=FakeClock())

    decisions = _attempts(limiter, 6)

    assert [d.allowed for d in decisions] == [True] * 5 + [False]
    assert decisions[0].remaining == 4
    assert decisions[4].remaining == 0
    assert decisions[5].retry_after_seconds == 3600


def test_identifiers_are_counted_separately() -> None:
    limiter = RateLimiter(clock=FakeClock())

    _attempts(limiter, 5, "session:a")

    assert _attempts(limiter, 1, "session:b")[0].allowed is True
    assert _attempts(limiter, 1, "session:a")[0].allowed is False


def test_window_slides_forward() -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)

    for _ in range(5):
        _attempts(limiter, 1)
        clock.now += 60
    denied = _attempts(limiter, 1)[0]
    assert denied.allowed is False
    assert denied.retry_after_seconds == 3600 - 300

    clock.now += 3600 - 300
    # The first attempt has left the window; the rejected one still counts.
    assert _attempts(limiter, 1)[0].allowed is False
    clock.now += 3600
    assert _attempts(limiter, 1)[0].allowed is True


def test_non_positive_limit_is_unlimited() -> None:
    limiter = RateLimiter(clock=FakeClock())

    async def run():
        return [
            await limiter.check_and_consume("session:s1", "discount_issue", RateLimit(max_requests=0, window_seconds=60))
            for _ in range(20)
        ]

    assert all(decision.allowed for decision in asyncio.run(run()))
    assert limiter.buckets == {}


def test_redis_fixed_window() -> None:
    redis = FakeRedis()
    clock = FakeClock(now=7200.0 + 100)
    limiter = RateLimiter(redis, clock=clock)

    decisions = _attempts(limiter, 6)

    assert [d.allowed for d in decisions] == [True] * 5 + [False]
    assert decisions[5].retry_after_seconds == 3500
    assert redis.counts == {"rate_limit:discount_issue:session:s1:2": 6}
    assert redis.expiries == {"rate_limit:discount_issue:session:s1:2": 3600}
    assert limiter.buckets == {}


def test_redis_failure_falls_back_to_memory() -> None:
    limiter = RateLimiter(BrokenRedis(), clock=FakeClock())

    decisions = _attempts(limiter, 6)

    assert [d.allowed for d in decisions] == [True] * 5 + [False]
    assert len(limiter.buckets[("session:s1", "discount_issue")]) == 6


def test_reset_clears_buckets() -> None:
    limiter = RateLimiter(clock=FakeClock())
    _attempts(limiter, 6)

    limiter.reset()

    assert _attempts(limiter, 1)[0].allowed is True


def test_discount_limit_follows_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings, "discount_rate_limit_max", 3)
    monkeypatch.setattr(settings, "discount_rate_limit_window_seconds", 60)
    monkeypatch.setattr(settings, "rate_limit_bypass", True)

    assert discount_issue_limit() == RateLimit(max_requests=3, window_seconds=60)
    assert rate_limit_bypassed() is True
    assert session_identifier("abc") == "session:abc"


def test_expired_buckets_are_dropped() -> None:
    clock = FakeClock(now=0.0)
    limiter = RateLimiter(clock=clock)
    limit = RateLimit(max_requests=5, window_seconds=10)

    async def run(identifiers):
        for identifier in identifiers:
            await limiter.check_and_consume(identifier, "discount_issue", limit)

    asyncio.run(run([f"session:{index}" for index in range(1000)]))
    assert len(limiter.buckets) == 1000

    clock.now = 10_000.0
    asyncio.run(run(["session:late"]))

    assert list(limiter.buckets) == [("session:late", "discount_issue")]


def test_sweep_keeps_buckets_still_in_window() -> None:
    clock = FakeClock(now=0.0)
    limiter = RateLimiter(clock=clock)
    limit = RateLimit(max_requests=2, window_seconds=10)

    async def attempt(identifier: str):
        return await limiter.check_and_consume(identifier, "discount_issue", limit)

    asyncio.run(attempt("session:a"))
    asyncio.run(attempt("session:a"))
    clock.now = 15.0
    asyncio.run(attempt("session:b"))
    clock.now = 16.0

    # session:a's attempts at t=0 have left the window, so it starts fresh.
    assert asyncio.run(attempt("session:a")).allowed is True
    assert ("session:b", "discount_issue") in limiter.buckets
