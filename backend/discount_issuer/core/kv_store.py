from __future__ import annotations

import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, Protocol

from redis.asyncio import Redis

from discount_issuer.core.config import settings
from discount_issuer.core.redis_client import get_redis


class KeyValueStore(Protocol):
    """String key-value store with per-key expiry."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, *, ttl_seconds: int) -> None: ...


class RedisKeyValueStore:
    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, *, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=max(1, int(ttl_seconds)))


class InMemoryKeyValueStore:
    """
    Per-process store for single-instance deployments and tests.

    Entries expire lazily; expired entries are swept whenever a write happens and,
    once ``max_entries`` is reached, the oldest entries are evicted first.
    """

    def __init__(self, *, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic) -> None:
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get(self, key: str) -> str | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: str, *, ttl_seconds: int) -> None:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            self._entries.pop(key, None)
            while len(self._entries) >= self._max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (value, now + max(1, int(ttl_seconds)))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]


_memory_store = InMemoryKeyValueStore(max_entries=settings.idempotency_max_entries)


def get_memory_store() -> InMemoryKeyValueStore:
    return _memory_store


def get_key_value_store() -> KeyValueStore:
    """Redis when REDIS_URL is configured, otherwise the shared in-process store."""
    client = get_redis()
    if client is None:
        return _memory_store
    return RedisKeyValueStore(client)
