import asyncio

from discount_issuer.core.kv_store import InMemoryKeyValueStore
from discount_issuer.core.redis_client import json_loads
from discount_issuer.services.idempotency import IdempotencyCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore:
    async def get(self, key: str) -> str | None:
        raise ConnectionError("store down")

    async def set(self, key: str, value: str, *, ttl_seconds: int) -> None:
        raise ConnectionError("store down")


def test_put_then_get_returns_record() -> None:
    store = InMemoryKeyValueStore()
    cache = IdempotencyCache(store, ttl_seconds=1800)

    async def run():
        await cache.put("sess-1", "cabc12345", "SAVE-123")
        return await cache.get_or_none("sess-1", "cabc12345"), await store.get("discount_session:sess-1:cabc12345")

    record, raw = asyncio.run(run())

    assert record is not None
    assert record.code == "SAVE-123"
    assert record.campaign_id == "cabc12345"
    assert record.issued_at_epoch_millis > 0
    assert json_loads(raw)["code"] == "SAVE-123"


def test_entries_are_scoped_per_session_and_campaign() -> None:
    cache = IdempotencyCache(InMemoryKeyValueStore(), ttl_seconds=1800)

    async def run():
        await cache.put("sess-1", "cabc12345", "SAVE-123")
        return (
            await cache.get_or_none("sess-2", "cabc12345"),
            await cache.get_or_none("sess-1", "cother9999"),
        )

    assert asyncio.run(run()) == (None, None)


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = IdempotencyCache(InMemoryKeyValueStore(clock=clock), ttl_seconds=1800)

    asyncio.run(cache.put("sess-1", "cabc12345", "SAVE-123"))
    clock.now += 1799
    assert asyncio.run(cache.get_or_none("sess-1", "cabc12345")) is not None
    clock.now += 1
    assert asyncio.run(cache.get_or_none("sess-1", "cabc12345")) is None


def test_memory_store_evicts_oldest_entry() -> None:
    store = InMemoryKeyValueStore(max_entries=2)

    async def run():
        await store.set("a", "1", ttl_seconds=60)
        await store.set("b", "2", ttl_seconds=60)
        await store.set("c", "3", ttl_seconds=60)
        return await store.get("a"), await store.get("b"), await store.get("c")

    assert asyncio.run(run()) == (None, "2", "3")
    assert len(store) == 2


def test_memory_store_sweeps_expired_entries_on_write() -> None:
    clock = FakeClock()
    store = InMemoryKeyValueStore(clock=clock)

    asyncio.run(store.set("a", "1", ttl_seconds=10))
    clock.now += 11
    asyncio.run(store.set("b", "2", ttl_seconds=10))

    assert len(store) == 1


def test_broken_store_degrades_to_miss() -> None:
    cache = IdempotencyCache(BrokenStore(), ttl_seconds=1800)

    async def run():
        await cache.put("sess-1", "cabc12345", "SAVE-123")
        return await cache.get_or_none("sess-1", "cabc12345")

    assert asyncio.run(run()) is None


def test_corrupt_entry_is_a_miss() -> None:
    store = InMemoryKeyValueStore()
    cache = IdempotencyCache(store, ttl_seconds=1800)

    async def run():
        await store.set("discount_session:sess-1:cabc12345", "not-json", ttl_seconds=60)
        first = await cache.get_or_none("sess-1", "cabc12345")
        await store.set("discount_session:sess-1:cabc12345", '{"code": ""}', ttl_seconds=60)
        return first, await cache.get_or_none("sess-1", "cabc12345")

    assert asyncio.run(run()) == (None, None)


def test_explicit_zero_ttl_is_not_replaced_by_default() -> None:
    clock = FakeClock()
    cache = IdempotencyCache(InMemoryKeyValueStore(clock=clock), ttl_seconds=0)

    asyncio.run(cache.put("sess-1", "cabc12345", "SAVE-123"))
    clock.now += 1

    assert asyncio.run(cache.get_or_none("sess-1", "cabc12345")) is None
