"""Bounded session cache with an optional durable mirror."""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import SessionEntry

logger = logging.getLogger(__name__)

MIRROR_ERRORS = (SQLAlchemyError, OSError, ValueError, TypeError)


class SessionStore(Protocol):
    """Durable key/value store holding string payloads."""

    async def read(self, key: str) -> str | None: ...

    async def write(
        self, key: str, payload: str, expires_at: float | None = None
    ) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def purge_expired(self, now: float) -> int: ...


_UPSERT_DIALECTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


class DatabaseSessionStore:
    """Session store persisted in the ``session_entries`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def read(self, key: str) -> str | None:
        async with self._session_factory() as session:
            entry = await session.get(SessionEntry, key)
            if entry is None:
                return None
            return entry.payload

    async def write(
        self, key: str, payload: str, expires_at: float | None = None
    ) -> None:
        """Insert or replace the row for ``key`` in a single statement."""

        values = {"key": key, "payload": payload, "expires_at": expires_at}
        async with self._session_factory() as session:
            insert = _UPSERT_DIALECTS.get(session.get_bind().dialect.name)
            if insert is None:
                await session.merge(SessionEntry(**values))
            else:
                statement = insert(SessionEntry).values(**values)
                statement = statement.on_conflict_do_update(
                    index_elements=[SessionEntry.key],
                    set_={
                        "payload": statement.excluded.payload,
                        "expires_at": statement.excluded.expires_at,
                        "updated_at": datetime.utcnow(),
                    },
                )
                await session.execute(statement)
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(SessionEntry).where(SessionEntry.key == key))
            await session.commit()

    async def purge_expired(self, now: float) -> int:
        """Delete rows whose expiry has passed; rows without one are kept."""

        async with self._session_factory() as session:
            result = await session.execute(
                delete(SessionEntry).where(
                    SessionEntry.expires_at.is_not(None),
                    SessionEntry.expires_at <= now,
                )
            )
            await session.commit()
            return result.rowcount or 0


@dataclass(slots=True)
class CacheRecord:
    """Cached value with an optional absolute expiry timestamp."""

    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def dumps(self) -> str:
        return json.dumps({"value": self.value, "expiresAt": self.expires_at})

    @classmethod
    def loads(cls, raw: str) -> "CacheRecord":
        data = json.loads(raw)
        if not isinstance(data, dict) or "value" not in data:
            raise ValueError("Malformed cache payload")
        expires_at = data.get("expiresAt")
        return cls(
            value=data["value"],
            expires_at=float(expires_at) if expires_at is not None else None,
        )


class SessionCache:
    """Key/value cache with lazy expiry and a best-effort durable mirror.

    Reads consult memory first and fall back to the mirror, repopulating
    memory on a mirror hit. Writes go to both. Mirror failures are logged and
    never reach the caller.

    Memory holds at most ``max_entries`` records. When full, the least
    recently used record that has a TTL is evicted first, and its mirror row
    goes with it; records without a TTL are only evicted when nothing else is
    left and stay in the mirror.
    """

    def __init__(
        self,
        *,
        max_entries: int = 256,
        store: SessionStore | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._store = store
        self._clock = clock
        self._memory: OrderedDict[str, CacheRecord] = OrderedDict()

    @property
    def has_mirror(self) -> bool:
        return self._store is not None

    def __len__(self) -> int:
        return len(self._memory)

    async def get(self, key: str) -> Any | None:
        """Return the cached value or ``None`` when absent or expired."""

        now = self._clock()
        record = self._memory.get(key)
        if record is not None:
            if not record.is_expired(now):
                self._memory.move_to_end(key)
                return record.value
            del self._memory[key]

        record = await self._read_mirror(key)
        if record is None:
            return None
        if record.is_expired(now):
            await self._delete_mirror(key)
            return None
        await self._remember(key, record)
        return record.value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key``; ``ttl`` is in seconds."""

        expires_at = self._clock() + ttl if ttl is not None else None
        record = CacheRecord(value=value, expires_at=expires_at)
        await self._write_mirror(key, record)
        await self._remember(key, record)

    async def delete(self, key: str) -> None:
        self._memory.pop(key, None)
        await self._delete_mirror(key)

    async def purge_expired(self) -> int:
        """Drop expired records from memory and the mirror.

        Returns the number of mirror rows removed.
        """

        now = self._clock()
        for key in [key for key, record in self._memory.items() if record.is_expired(now)]:
            del self._memory[key]
        if self._store is None:
            return 0
        try:
            purged = await self._store.purge_expired(now)
        except MIRROR_ERRORS as exc:
            logger.warning("Session store purge failed: %s", exc)
            return 0
        if purged:
            logger.info("Purged %s expired session store rows", purged)
        return purged

    async def _remember(self, key: str, record: CacheRecord) -> None:
        self._memory[key] = record
        self._memory.move_to_end(key)
        while len(self._memory) > self._max_entries:
            evicted, evicted_record = self._pop_eviction_candidate(protect=key)
            logger.debug("Evicted %s from session cache", evicted)
            if evicted_record.expires_at is not None:
                await self._delete_mirror(evicted)

    def _pop_eviction_candidate(self, *, protect: str) -> tuple[str, CacheRecord]:
        for key, record in self._memory.items():
            if record.expires_at is not None and key != protect:
                return key, self._memory.pop(key)
        return self._memory.popitem(last=False)


    async def _read_mirror(self, key: str) -> CacheRecord | None:
        if self._store is None:
            return None
        try:
            raw = await self._store.read(key)
            if raw is None:
                return None
            return CacheRecord.loads(raw)
        except MIRROR_ERRORS as exc:
            logger.warning("Session store read failed for %s: %s", key, exc)
            return None

    async def _write_mirror(self, key: str, record: CacheRecord) -> None:
        if self._store is None:
            return
        try:
            await self._store.write(key, record.dumps(), record.expires_at)
        except MIRROR_ERRORS as exc:
            logger.warning("Session store write failed for %s: %s", key, exc)

    async def _delete_mirror(self, key: str) -> None:
        if self._store is None:
            return
        try:
            await self._store.delete(key)
        except MIRROR_ERRORS as exc:
            logger.warning("Session store delete failed for %s: %s", key, exc)
