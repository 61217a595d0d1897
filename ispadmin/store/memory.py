"""In-process entity store used for development and tests."""

from __future__ import annotations

import asyncio
import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Mapping

from ispadmin.errors import ConflictError, NotFoundError

from .base import SERIAL_COLUMNS, VERSIONED_KINDS, EntityKind, Record, matches, ordering_key, parent_field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _criteria(where: Mapping[str, Any] | None) -> dict[str, Any]:
    return {
        key: [_plain(item) for item in value] if isinstance(value, (list, tuple, set, frozenset)) else _plain(value)
        for key, value in (where or {}).items()
    }


class _MemoryOperations:
    """Unlocked operations over the shared record tables."""

    def __init__(self, store: "InMemoryEntityStore") -> None:
        self._store = store

    @property
    def _tables(self) -> dict[EntityKind, dict[str, Record]]:
        return self._store._tables

    def _table(self, kind: EntityKind) -> dict[str, Record]:
        return self._tables.setdefault(kind, {})

    def _next_seq(self) -> int:
        self._store._seq += 1
        return self._store._seq

    def _require(self, kind: EntityKind, entity_id: str) -> Record:
        record = self._table(kind).get(str(entity_id))
        if record is None:
            raise NotFoundError(f"{kind.value} record {entity_id} not found")
        return record

    async def get(self, kind: EntityKind, entity_id: str, *, lock: bool = False) -> Record:
        await asyncio.sleep(0)
        return dict(self._require(kind, entity_id))

    async def find_one(self, kind: EntityKind, **criteria: Any) -> Record | None:
        criteria = {key: _plain(value) for key, value in criteria.items()}
        for record in self._table(kind).values():
            if matches(record, criteria):
                return dict(record)
        return None

    async def query(
        self,
        kind: EntityKind,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: str = "created_at",
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
        before: Mapping[str, Any] | None = None,
    ) -> list[Record]:
        criteria = _criteria(where)
        rows = [record for record in self._table(kind).values() if matches(record, criteria)]
        for key, bound in (before or {}).items():
            rows = [record for record in rows if record.get(key) is not None and record[key] < bound]

        present = [record for record in rows if record.get(order_by) is not None]
        missing = [record for record in rows if record.get(order_by) is None]
        present.sort(key=lambda record: ordering_key(record, order_by), reverse=descending)
        missing.sort(key=lambda record: record.get("seq", 0), reverse=descending)
        ordered = present + missing

        end = None if limit is None else offset + limit
        return [dict(record) for record in ordered[offset:end]]

    async def count(self, kind: EntityKind, *, where: Mapping[str, Any] | None = None) -> int:
        criteria = _criteria(where)
        return sum(1 for record in self._table(kind).values() if matches(record, criteria))

    async def insert(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        stored = {key: _plain(value) for key, value in record.items()}
        stored["id"] = str(stored.get("id") or uuid.uuid4())
        stored.setdefault("created_at", self._store._clock())
        stored["seq"] = self._next_seq()
        if kind in VERSIONED_KINDS:
            stored["version"] = 1
        table = self._table(kind)
        if stored["id"] in table:
            raise ConflictError(f"{kind.value} record {stored['id']} already exists")
        serial = SERIAL_COLUMNS.get(kind)
        if serial is not None and stored.get(serial) is None:
            self._store._serials[kind] = self._store._serials.get(kind, 0) + 1
            stored[serial] = self._store._serials[kind]
        table[stored["id"]] = stored
        return dict(stored)

    async def update(
        self,
        kind: EntityKind,
        entity_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Record:
        await asyncio.sleep(0)
        record = self._require(kind, entity_id)
        if expected_version is not None and record.get("version") != expected_version:
            raise ConflictError(f"{kind.value} record {entity_id} was modified concurrently")
        record.update({key: _plain(value) for key, value in patch.items()})
        if kind in VERSIONED_KINDS:
            record["version"] = int(record.get("version") or 0) + 1
        return dict(record)

    async def increment(
        self,
        kind: EntityKind,
        entity_id: str,
        deltas: Mapping[str, int],
        extra: Mapping[str, Any] | None = None,
    ) -> Record:
        record = self._require(kind, entity_id)
        for key, delta in deltas.items():
            record[key] = max(int(record.get(key) or 0) + delta, 0)
        record.update({key: _plain(value) for key, value in (extra or {}).items()})
        return dict(record)

    async def append(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        stored = dict(record)
        stored["created_at"] = self._store._clock()
        stored.pop("id", None)
        return await self.insert(kind, stored)

    async def update_children(
        self,
        kind: EntityKind,
        parent_id: str,
        patch: Mapping[str, Any],
        *,
        match: Mapping[str, Any],
    ) -> int:
        criteria = {parent_field(kind): str(parent_id)}
        for key, value in match.items():
            criteria[key] = [_plain(item) for item in value] if isinstance(value, (list, tuple, set)) else _plain(value)
        updated = 0
        for record in self._table(kind).values():
            if matches(record, criteria):
                record.update({key: _plain(value) for key, value in patch.items()})
                updated += 1
        return updated

    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        self._require(kind, entity_id)
        del self._table(kind)[str(entity_id)]

    async def list_by_parent(self, kind: EntityKind, parent_id: str) -> list[Record]:
        return await self.query(kind, where={parent_field(kind): str(parent_id)})

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["_MemoryOperations"]:
        yield self


class InMemoryEntityStore:
    """Dictionary backed :class:`~ispadmin.store.base.EntityStore`.

    Every call and every transaction runs under a single ``asyncio.Lock``;
    a transaction restores a snapshot of all tables when its body raises.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._tables: dict[EntityKind, dict[str, Record]] = {}
        self._seq = 0
        self._serials: dict[EntityKind, int] = {}
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()
        self._ops = _MemoryOperations(self)

    async def get(self, kind: EntityKind, entity_id: str, *, lock: bool = False) -> Record:
        async with self._lock:
            return await self._ops.get(kind, entity_id)

    async def find_one(self, kind: EntityKind, **criteria: Any) -> Record | None:
        async with self._lock:
            return await self._ops.find_one(kind, **criteria)

    async def query(self, kind: EntityKind, **kwargs: Any) -> list[Record]:
        async with self._lock:
            return await self._ops.query(kind, **kwargs)

    async def count(self, kind: EntityKind, *, where: Mapping[str, Any] | None = None) -> int:
        async with self._lock:
            return await self._ops.count(kind, where=where)

    async def insert(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        async with self._lock:
            return await self._ops.insert(kind, record)

    async def update(
        self,
        kind: EntityKind,
        entity_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Record:
        async with self._lock:
            return await self._ops.update(kind, entity_id, patch, expected_version)

    async def increment(
        self,
        kind: EntityKind,
        entity_id: str,
        deltas: Mapping[str, int],
        extra: Mapping[str, Any] | None = None,
    ) -> Record:
        async with self._lock:
            return await self._ops.increment(kind, entity_id, deltas, extra)

    async def append(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        async with self._lock:
            return await self._ops.append(kind, record)

    async def update_children(
        self,
        kind: EntityKind,
        parent_id: str,
        patch: Mapping[str, Any],
        *,
        match: Mapping[str, Any],
    ) -> int:
        async with self._lock:
            return await self._ops.update_children(kind, parent_id, patch, match=match)

    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        async with self._lock:
            await self._ops.delete(kind, entity_id)

    async def list_by_parent(self, kind: EntityKind, parent_id: str) -> list[Record]:
        async with self._lock:
            return await self._ops.list_by_parent(kind, parent_id)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_MemoryOperations]:
        async with self._lock:
            snapshot = copy.deepcopy(self._tables), self._seq, dict(self._serials)
            try:
                yield self._ops
            except BaseException:
                self._tables, self._seq, self._serials = snapshot
                raise
