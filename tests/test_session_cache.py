"""Tests for the bounded session cache and its durable mirror."""

from __future__ import annotations

import asyncio

from app.database import Database
from app.services.session_cache import (
    CacheRecord,
    DatabaseSessionStore,
    SessionCache,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class DictStore:
    """Session store kept in a plain dict."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expiries: dict[str, float | None] = {}
        self.reads = 0

    async def read(self, key: str) -> str | None:
        self.reads += 1
        return self.data.get(key)

    async def write(
        self, key: str, payload: str, expires_at: float | None = None
    ) -> None:
        self.data[key] = payload
        self.expiries[key] = expires_at

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)
        self.expiries.pop(key, None)

    async def purge_expired(self, now: float) -> int:
        expired = [
            key
            for key, expires_at in self.expiries.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            await self.delete(key)
        return len(expired)


class BrokenStore:
    """Session store whose every operation fails like exhausted storage."""

    async def read(self, key: str) -> str | None:
        raise OSError("storage unavailable")

    async def write(
        self, key: str, payload: str, expires_at: float | None = None
    ) -> None:
        raise OSError("quota exceeded")

    async def delete(self, key: str) -> None:
        raise OSError("storage unavailable")

    async def purge_expired(self, now: float) -> int:
        raise OSError("storage unavailable")


def test_get_returns_value_until_ttl_expires() -> None:
    clock = FakeClock()
    cache = SessionCache(clock=clock)

    async def runner() -> None:
        await cache.set("key", {"a": 1}, ttl=10)
        assert await cache.get("key") == {"a": 1}

        clock.now += 10
        assert await cache.get("key") is None
        assert len(cache) == 0

    asyncio.run(runner())


def test_entries_without_ttl_never_expire() -> None:
    clock = FakeClock()
    cache = SessionCache(clock=clock)

    async def runner() -> None:
        await cache.set("resume", [1, 2])
        clock.now += 10_000_000
        assert await cache.get("resume") == [1, 2]

    asyncio.run(runner())


def test_memory_is_bounded_with_lru_eviction() -> None:
    cache = SessionCache(max_entries=2)

    async def runner() -> None:
        await cache.set("a", 1)
        await cache.set("b", 2)
        assert await cache.get("a") == 1  # "b" becomes least recently used
        await cache.set("c", 3)

        assert len(cache) == 2
        assert await cache.get("b") is None
        assert await cache.get("a") == 1
        assert await cache.get("c") == 3

    asyncio.run(runner())


def test_mirror_hit_repopulates_memory() -> None:
    store = DictStore()
    writer = SessionCache(store=store)

    async def runner() -> None:
        await writer.set("key", "value", ttl=60)

        reader = SessionCache(store=store)
        assert await reader.get("key") == "value"
        assert store.reads == 1

        assert await reader.get("key") == "value"
        assert store.reads == 1

    asyncio.run(runner())


def test_expired_mirror_entry_is_deleted() -> None:
    clock = FakeClock()
    store = DictStore()
    store.data["stale"] = CacheRecord(value="old", expires_at=clock.now - 1).dumps()
    cache = SessionCache(store=store, clock=clock)

    async def runner() -> None:
        assert await cache.get("stale") is None

    asyncio.run(runner())
    assert "stale" not in store.data


def test_malformed_mirror_payload_reads_as_absent() -> None:
    store = DictStore()
    store.data["bad"] = "{not json"
    store.data["shape"] = '{"nope": 1}'
    cache = SessionCache(store=store)

    async def runner() -> None:
        assert await cache.get("bad") is None
        assert await cache.get("shape") is None

    asyncio.run(runner())


def test_mirror_failures_never_reach_the_caller() -> None:
    cache = SessionCache(store=BrokenStore())

    async def runner() -> None:
        await cache.set("key", "value", ttl=60)
        assert await cache.get("key") == "value"
        assert await cache.get("missing") is None
        await cache.delete("key")
        assert await cache.get("key") is None

    asyncio.run(runner())


def test_database_store_round_trip(tmp_path) -> None:
    """The SQLAlchemy-backed store persists, overwrites and deletes payloads."""

    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'session.db'}")
        await database.create_all()
        try:
            store = DatabaseSessionStore(database.session_factory)
            assert await store.read("key") is None

            await store.write("key", "first")
            await store.write("key", "second")
            assert await store.read("key") == "second"

            cache = SessionCache(store=store)
            await cache.set("resume:tt1", {"season": 2}, ttl=None)
            fresh = SessionCache(store=store)
            assert await fresh.get("resume:tt1") == {"season": 2}

            await store.delete("key")
            assert await store.read("key") is None
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_entries_with_ttl_are_evicted_before_persistent_ones() -> None:
    cache = SessionCache(max_entries=3)

    async def runner() -> None:
        await cache.set("resume:tt1", {"season": 2})
        for index in range(10):
            await cache.set(f"search{index}", index, ttl=60)

        assert len(cache) == 3
        assert await cache.get("resume:tt1") == {"season": 2}
        assert await cache.get("search9") == 9
        assert await cache.get("search0") is None

    asyncio.run(runner())


def test_persistent_entries_evict_oldest_when_nothing_else_is_left() -> None:
    cache = SessionCache(max_entries=2)

    async def runner() -> None:
        await cache.set("resume:a", 1)
        await cache.set("resume:b", 2)
        await cache.set("search", 3, ttl=60)

        assert await cache.get("search") == 3
        assert await cache.get("resume:a") is None
        assert await cache.get("resume:b") == 2

    asyncio.run(runner())


def test_mirror_rows_follow_ttl_evictions_and_purge() -> None:
    clock = FakeClock()
    store = DictStore()
    cache = SessionCache(max_entries=5, store=store, clock=clock)

    async def runner() -> None:
        await cache.set("resume:tt1", {"episode": 4})
        for index in range(50):
            await cache.set(f"search{index}", index, ttl=60)
        assert len(store.data) == 5

        clock.now += 61
        assert await cache.purge_expired() == 4
        assert len(cache) == 1

    asyncio.run(runner())

    assert list(store.data) == ["resume:tt1"]


def test_purge_failures_are_swallowed() -> None:
    cache = SessionCache(store=BrokenStore())

    assert asyncio.run(cache.purge_expired()) == 0


def test_database_store_purges_only_expired_rows(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'purge.db'}")
        await database.create_all()
        try:
            store = DatabaseSessionStore(database.session_factory)
            await store.write("old", "a", expires_at=100.0)
            await store.write("fresh", "b", expires_at=500.0)
            await store.write("resume:tt1", "c")

            assert await store.purge_expired(200.0) == 1
            assert await store.read("old") is None
            assert await store.read("fresh") == "b"
            assert await store.read("resume:tt1") == "c"
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_database_store_concurrent_first_writes_do_not_conflict(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
        await database.create_all()
        try:
            store = DatabaseSessionStore(database.session_factory)
            await asyncio.gather(
                store.write("key", "first", expires_at=10.0),
                store.write("key", "second", expires_at=20.0),
            )
            assert await store.read("key") in {"first", "second"}

            await store.write("key", "third")
            assert await store.read("key") == "third"
            assert await store.purge_expired(1_000.0) == 0
        finally:
            await database.dispose()

    asyncio.run(runner())
