from __future__ import annotations

import logging
import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, DefaultDict, Deque

from redis.asyncio import Redis

from discount_issuer.core.config import settings
from discount_issuer.core.redis_client import get_redis

WindowBucket = Deque[float]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_seconds: int = 0


def discount_issue_limit() -> RateLimit:
    return RateLimit(
        max_requests=int(settings.discount_rate_limit_max),
        window_seconds=int(settings.discount_rate_limit_window_seconds),
    )


def session_identifier(session_id: str) -> str:
    return f"session:{session_id}"


def rate_limit_bypassed() -> bool:
    return bool(settings.rate_limit_bypass)


def _prune(bucket: WindowBucket, now: float, window_seconds: int) -> None:
    while bucket and now - bucket[0] >= window_seconds:
        bucket.popleft()


class RateLimiter:
    """
    Counts attempts per ``(identifier, operation)``.

    With Redis configured the count lives in a fixed window (``INCR`` + ``EXPIRE``)
    shared by every worker; otherwise, or when Redis errors, a per-process sliding
    window of attempt timestamps is used. Every attempt is counted, including the
    ones that end up rejected.
    """

    def __init__(self, redis_client: Redis | None = None, *, clock: Callable[[], float] = time.time) -> None:
        self._redis = redis_client
        self._clock = clock
        self._buckets: DefaultDict[tuple[str, str], WindowBucket] = defaultdict(deque)
        self._windows: dict[tuple[str, str], int] = {}
        self._next_sweep_at = 0.0
        self._lock = Lock()

    @property
    def buckets(self) -> DefaultDict[tuple[str, str], WindowBucket]:
        return self._buckets

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._windows.clear()
            self._next_sweep_at = 0.0

    async def check_and_consume(self, identifier: str, operation: str, limit: RateLimit) -> RateLimitDecision:
        if limit.max_requests <= 0:
            return RateLimitDecision(allowed=True, remaining=0)
        now = self._clock()
        decision = await self._consume_redis(identifier, operation, limit, now)
        if decision is None:
            decision = self._consume_memory(identifier, operation, limit, now)
        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                extra={"identifier": identifier, "operation": operation, "retry_after": decision.retry_after_seconds},
            )
        return decision

    async def _consume_redis(
        self, identifier: str, operation: str, limit: RateLimit, now: float
    ) -> RateLimitDecision | None:
        if self._redis is None:
            return None
        window_seconds = max(1, int(limit.window_seconds))
        now_int = int(now)
        window = now_int // window_seconds
        redis_key = f"rate_limit:{operation}:{identifier}:{window}"
        try:
            count = int(await self._redis.incr(redis_key))
            if count == 1:
                await self._redis.expire(redis_key, window_seconds)
        except Exception as exc:
            logger.warning("redis_rate_limit_failed", extra={"error": str(exc)})
            return None
        if count > limit.max_requests:
            retry_after = max(1, window_seconds - (now_int % window_seconds))
            return RateLimitDecision(allowed=False, remaining=0, retry_after_seconds=retry_after)
        return RateLimitDecision(allowed=True, remaining=limit.max_requests - count)

    def _consume_memory(self, identifier: str, operation: str, limit: RateLimit, now: float) -> RateLimitDecision:
        window_seconds = max(1, int(limit.window_seconds))
        key = (identifier, operation)
        with self._lock:
            if now >= self._next_sweep_at:
                self._sweep(now)
                self._next_sweep_at = now + window_seconds
            self._windows[key] = window_seconds
            bucket = self._buckets[key]
            _prune(bucket, now, window_seconds)
            bucket.append(now)
            count = len(bucket)
            if count > limit.max_requests:
                retry_after = max(1, int(math.ceil(bucket[0] + window_seconds - now)))
                return RateLimitDecision(allowed=False, remaining=0, retry_after_seconds=retry_after)
        return RateLimitDecision(allowed=True, remaining=limit.max_requests - count)

    def _sweep(self, now: float) -> None:
        stale = [
            key
            for key, bucket in self._buckets.items()
            if not bucket or now - bucket[-1] >= self._windows.get(key, 0)
        ]
        for key in stale:
            del self._buckets[key]
            self._windows.pop(key, None)


_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter, bound to Redis when REDIS_URL is configured."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter(get_redis())
    return _limiter
