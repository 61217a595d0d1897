"""Persistence boundary used by the lifecycle engines."""

from __future__ import annotations

from enum import Enum
from typing import Any, AsyncContextManager, Mapping, Protocol, Sequence

Record = dict[str, Any]


class EntityKind(str, Enum):
    """Entity collections known to the support-workflow core.

    The value doubles as the table name in the PostgreSQL store.
    """

    ADMIN = "admins"
    SESSION = "admin_sessions"
    TICKET = "tickets"
    TICKET_COMMENT = "ticket_comments"
    TICKET_HISTORY = "ticket_history"
    CHAT = "chats"
    CHAT_MESSAGE = "chat_messages"


# Column linking a child record to its parent entity.
PARENT_FIELDS: Mapping[EntityKind, str] = {
    EntityKind.TICKET_COMMENT: "ticket_id",
    EntityKind.TICKET_HISTORY: "ticket_id",
    EntityKind.CHAT_MESSAGE: "chat_id",
}

# Kinds carrying an optimistic-concurrency ``version`` column.
VERSIONED_KINDS: frozenset[EntityKind] = frozenset({EntityKind.TICKET, EntityKind.CHAT})

# Store-assigned sequential numbers, one counter per kind.
SERIAL_COLUMNS: Mapping[EntityKind, str] = {EntityKind.TICKET: "number"}


def parent_field(kind: EntityKind) -> str:
    try:
        return PARENT_FIELDS[kind]
    except KeyError:
        raise ValueError(f"{kind.value} records have no parent") from None


class EntityStore(Protocol):
    """Generic CRUD + conditional update + append interface.

    Implementations raise :class:`ispadmin.errors.NotFoundError` for missing
    records, :class:`ispadmin.errors.ConflictError` when ``expected_version``
    does not match and :class:`ispadmin.errors.StorageError` for backend
    failures.
    """

    async def get(self, kind: EntityKind, entity_id: str, *, lock: bool = False) -> Record:
        ...

    async def find_one(self, kind: EntityKind, **criteria: Any) -> Record | None:
        ...

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
        ...

    async def count(self, kind: EntityKind, *, where: Mapping[str, Any] | None = None) -> int:
        ...

    async def insert(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        ...

    async def update(
        self,
        kind: EntityKind,
        entity_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Record:
        ...

    async def increment(
        self,
        kind: EntityKind,
        entity_id: str,
        deltas: Mapping[str, int],
        extra: Mapping[str, Any] | None = None,
    ) -> Record:
        ...

    async def append(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        ...

    async def update_children(
        self,
        kind: EntityKind,
        parent_id: str,
        patch: Mapping[str, Any],
        *,
        match: Mapping[str, Any],
    ) -> int:
        ...

    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        ...

    async def list_by_parent(self, kind: EntityKind, parent_id: str) -> list[Record]:
        ...

    def transaction(self) -> AsyncContextManager["EntityStore"]:
        ...


def matches(record: Mapping[str, Any], criteria: Mapping[str, Any]) -> bool:
    """Equality match where a list/tuple/set value means ``IN``."""

    for key, expected in criteria.items():
        value = record.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def ordering_key(record: Mapping[str, Any], order_by: str) -> tuple[Any, ...]:
    value = record.get(order_by)
    # Nulls sort last in ascending order, mirroring ``NULLS LAST``.
    return (value is None, value, record.get("seq", 0))


def enum_values(values: Sequence[Any]) -> list[Any]:
    return [value.value if isinstance(value, Enum) else value for value in values]
