"""asyncpg backed entity store."""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager, contextmanager
from enum import Enum
from typing import Any, AsyncIterator, Iterator, Mapping

import asyncpg

from ispadmin.errors import ConflictError, NotFoundError, StorageError

from .base import VERSIONED_KINDS, EntityKind, Record, parent_field

logger = logging.getLogger(__name__)


_COLUMNS: Mapping[EntityKind, frozenset[str]] = {
    EntityKind.ADMIN: frozenset(
        {"id", "auth_user_id", "email", "full_name", "role", "permissions", "status", "last_login_at", "created_at"}
    ),
    EntityKind.SESSION: frozenset({"id", "token_hash", "auth_user_id", "expires_at", "created_at"}),
    EntityKind.TICKET: frozenset(
        {
            "id",
            "number",
            "subject",
            "description",
            "category",
            "user_id",
            "user_name",
            "user_email",
            "status",
            "priority",
            "assigned_admin_id",
            "version",
            "created_at",
            "updated_at",
            "first_response_at",
            "resolved_at",
            "closed_at",
        }
    ),
    EntityKind.TICKET_COMMENT: frozenset(
        {
            "id",
            "ticket_id",
            "author_type",
            "author_id",
            "author_name",
            "content",
            "is_internal",
            "is_solution",
            "attachments",
            "created_at",
            "edited_at",
        }
    ),
    EntityKind.TICKET_HISTORY: frozenset(
        {"id", "ticket_id", "admin_id", "admin_name", "action", "old_value", "new_value", "created_at"}
    ),
    EntityKind.CHAT: frozenset(
        {
            "id",
            "user_id",
            "user_name",
            "subject",
            "status",
            "assigned_admin_id",
            "unread_admin_count",
            "unread_user_count",
            "last_message_at",
            "closed_at",
            "version",
            "created_at",
        }
    ),
    EntityKind.CHAT_MESSAGE: frozenset(
        {
            "id",
            "chat_id",
            "sender_type",
            "sender_id",
            "sender_name",
            "content",
            "content_type",
            "attachment_url",
            "attachment_name",
            "attachment_size",
            "system_action",
            "old_value",
            "new_value",
            "is_read",
            "read_at",
            "created_at",
            "edited_at",
        }
    ),
}

_QUERY_ONLY_COLUMNS = frozenset({"seq"})

_UPDATE_COUNT_PREFIX = "UPDATE "


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _column(kind: EntityKind, name: str) -> str:
    if name not in _COLUMNS[kind] and name not in _QUERY_ONLY_COLUMNS:
        raise ValueError(f"Unknown column {name!r} for {kind.value}")
    return name


def _where_clauses(kind: EntityKind, where: Mapping[str, Any] | None, params: list[Any]) -> list[str]:
    clauses: list[str] = []
    for key, value in (where or {}).items():
        column = _column(kind, key)
        if isinstance(value, (list, tuple, set, frozenset)):
            params.append([_plain(item) for item in value])
            clauses.append(f"{column} = ANY(${len(params)})")
        elif value is None:
            clauses.append(f"{column} IS NULL")
        else:
            params.append(_plain(value))
            clauses.append(f"{column} = ${len(params)}")
    return clauses


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
        logger.exception("Entity store operation failed")
        raise StorageError(str(exc) or exc.__class__.__name__) from exc


async def _init_connection(connection: asyncpg.Connection) -> None:
    await connection.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


class _PostgresOperations:
    """Entity store operations bound to one connection."""

    def __init__(self, connection: asyncpg.Connection) -> None:
        self._connection = connection

    async def get(self, kind: EntityKind, entity_id: str, *, lock: bool = False) -> Record:
        sql = f"SELECT * FROM {kind.value} WHERE id = $1"
        if lock:
            sql += " FOR UPDATE"
        with _translate_errors():
            row = await self._connection.fetchrow(sql, str(entity_id))
        if row is None:
            raise NotFoundError(f"{kind.value} record {entity_id} not found")
        return dict(row)

    async def find_one(self, kind: EntityKind, **criteria: Any) -> Record | None:
        rows = await self.query(kind, where=criteria, order_by="seq", limit=1)
        return rows[0] if rows else None

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
        params: list[Any] = []
        clauses = _where_clauses(kind, where, params)
        for key, bound in (before or {}).items():
            params.append(_plain(bound))
            clauses.append(f"{_column(kind, key)} < ${len(params)}")

        direction = "DESC" if descending else "ASC"
        sql = f"SELECT * FROM {kind.value}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY {_column(kind, order_by)} {direction} NULLS LAST, seq {direction}"
        if limit is not None:
            params.append(limit)
            sql += f" LIMIT ${len(params)}"
        if offset:
            params.append(offset)
            sql += f" OFFSET ${len(params)}"

        with _translate_errors():
            rows = await self._connection.fetch(sql, *params)
        return [dict(row) for row in rows]

    async def count(self, kind: EntityKind, *, where: Mapping[str, Any] | None = None) -> int:
        params: list[Any] = []
        clauses = _where_clauses(kind, where, params)
        sql = f"SELECT count(*) FROM {kind.value}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        with _translate_errors():
            total = await self._connection.fetchval(sql, *params)
        return int(total or 0)

    async def insert(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        values = {_column(kind, key): _plain(value) for key, value in record.items()}
        values["id"] = str(values.get("id") or uuid.uuid4())
        if kind in VERSIONED_KINDS:
            values["version"] = 1
        columns = list(values)
        placeholders = ", ".join(f"${index}" for index in range(1, len(columns) + 1))
        sql = f"INSERT INTO {kind.value} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"
        try:
            with _translate_errors():
                row = await self._connection.fetchrow(sql, *values.values())
        except StorageError as exc:
            if isinstance(exc.__cause__, asyncpg.UniqueViolationError):
                raise ConflictError(f"{kind.value} record {values['id']} already exists") from exc
            raise
        return dict(row)

    async def update(
        self,
        kind: EntityKind,
        entity_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Record:
        params: list[Any] = [str(entity_id)]
        assignments: list[str] = []
        for key, value in patch.items():
            params.append(_plain(value))
            assignments.append(f"{_column(kind, key)} = ${len(params)}")
        if kind in VERSIONED_KINDS:
            assignments.append("version = version + 1")
        if not assignments:
            return await self.get(kind, entity_id)

        sql = f"UPDATE {kind.value} SET {', '.join(assignments)} WHERE id = $1"
        if expected_version is not None:
            params.append(expected_version)
            sql += f" AND version = ${len(params)}"
        sql += " RETURNING *"

        with _translate_errors():
            row = await self._connection.fetchrow(sql, *params)
        if row is None:
            # Raises NotFoundError when the record is gone.
            await self.get(kind, entity_id)
            raise ConflictError(f"{kind.value} record {entity_id} was modified concurrently")
        return dict(row)

    async def increment(
        self,
        kind: EntityKind,
        entity_id: str,
        deltas: Mapping[str, int],
        extra: Mapping[str, Any] | None = None,
    ) -> Record:
        params: list[Any] = [str(entity_id)]
        assignments: list[str] = []
        for key, delta in deltas.items():
            column = _column(kind, key)
            params.append(int(delta))
            assignments.append(f"{column} = GREATEST({column} + ${len(params)}, 0)")
        for key, value in (extra or {}).items():
            params.append(_plain(value))
            assignments.append(f"{_column(kind, key)} = ${len(params)}")

        sql = f"UPDATE {kind.value} SET {', '.join(assignments)} WHERE id = $1 RETURNING *"
        with _translate_errors():
            row = await self._connection.fetchrow(sql, *params)
        if row is None:
            raise NotFoundError(f"{kind.value} record {entity_id} not found")
        return dict(row)

    async def append(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        # ``created_at`` always comes from the database clock.
        values = {key: value for key, value in record.items() if key not in {"id", "created_at"}}
        return await self.insert(kind, values)

    async def update_children(
        self,
        kind: EntityKind,
        parent_id: str,
        patch: Mapping[str, Any],
        *,
        match: Mapping[str, Any],
    ) -> int:
        params: list[Any] = [str(parent_id)]
        assignments: list[str] = []
        for key, value in patch.items():
            params.append(_plain(value))
            assignments.append(f"{_column(kind, key)} = ${len(params)}")
        clauses = [f"{parent_field(kind)} = $1"]
        for key, value in match.items():
            column = _column(kind, key)
            if isinstance(value, (list, tuple, set, frozenset)):
                params.append([_plain(item) for item in value])
                clauses.append(f"{column} = ANY(${len(params)})")
            else:
                params.append(_plain(value))
                clauses.append(f"{column} = ${len(params)}")

        sql = f"UPDATE {kind.value} SET {', '.join(assignments)} WHERE {' AND '.join(clauses)}"
        with _translate_errors():
            status = await self._connection.execute(sql, *params)
        if isinstance(status, str) and status.startswith(_UPDATE_COUNT_PREFIX):
            return int(status[len(_UPDATE_COUNT_PREFIX) :])
        return 0

    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        with _translate_errors():
            row = await self._connection.fetchrow(f"DELETE FROM {kind.value} WHERE id = $1 RETURNING id", str(entity_id))
        if row is None:
            raise NotFoundError(f"{kind.value} record {entity_id} not found")

    async def list_by_parent(self, kind: EntityKind, parent_id: str) -> list[Record]:
        return await self.query(kind, where={parent_field(kind): str(parent_id)})

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["_PostgresOperations"]:
        with _translate_errors():
            transaction = self._connection.transaction()
            await transaction.start()
        try:
            yield self
        except BaseException:
            with _translate_errors():
                await transaction.rollback()
            raise
        else:
            with _translate_errors():
                await transaction.commit()


class PostgresEntityStore:
    """Entity store over the console's PostgreSQL tables."""

    _CREATE_ADMINS_SQL = """
    CREATE TABLE IF NOT EXISTS admins (
        id TEXT PRIMARY KEY,
        auth_user_id TEXT UNIQUE,
        email TEXT NOT NULL DEFAULT '',
        full_name TEXT NOT NULL DEFAULT '',
        role TEXT NOT NULL,
        permissions JSONB NOT NULL DEFAULT '{}'::jsonb,
        status TEXT NOT NULL DEFAULT 'active',
        last_login_at TIMESTAMPTZ NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        seq BIGSERIAL
    )
    """

    _CREATE_SESSIONS_SQL = """
    CREATE TABLE IF NOT EXISTS admin_sessions (
        id TEXT PRIMARY KEY,
        token_hash TEXT NOT NULL UNIQUE,
        auth_user_id TEXT NOT NULL,
        expires_at TIMESTAMPTZ NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        seq BIGSERIAL
    )
    """

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        number BIGSERIAL UNIQUE,
        subject TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        category TEXT NULL,
        user_id TEXT NULL,
        user_name TEXT NULL,
        user_email TEXT NULL,
        status TEXT NOT NULL DEFAULT 'new',
        priority TEXT NOT NULL DEFAULT 'normal',
        assigned_admin_id TEXT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        updated_at TIMESTAMPTZ NULL,
        first_response_at TIMESTAMPTZ NULL,
        resolved_at TIMESTAMPTZ NULL,
        closed_at TIMESTAMPTZ NULL,
        seq BIGSERIAL
    )
    """

    _CREATE_TICKET_COMMENTS_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_comments (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL REFERENCES tickets(id),
        author_type TEXT NOT NULL,
        author_id TEXT NULL,
        author_name TEXT NULL,
        content TEXT NOT NULL,
        is_internal BOOLEAN NOT NULL DEFAULT FALSE,
        is_solution BOOLEAN NOT NULL DEFAULT FALSE,
        attachments JSONB NOT NULL DEFAULT '[]'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        edited_at TIMESTAMPTZ NULL,
        seq BIGSERIAL
    )
    """

    _CREATE_TICKET_HISTORY_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_history (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL REFERENCES tickets(id),
        admin_id TEXT NULL,
        admin_name TEXT NULL,
        action TEXT NOT NULL,
        old_value TEXT NULL,
        new_value TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        seq BIGSERIAL
    )
    """

    _CREATE_CHATS_SQL = """
    CREATE TABLE IF NOT EXISTS chats (
        id TEXT PRIMARY KEY,
        user_id TEXT NULL,
        user_name TEXT NULL,
        subject TEXT NULL,
        status TEXT NOT NULL DEFAULT 'waiting',
        assigned_admin_id TEXT NULL,
        unread_admin_count INTEGER NOT NULL DEFAULT 0,
        unread_user_count INTEGER NOT NULL DEFAULT 0,
        last_message_at TIMESTAMPTZ NULL,
        closed_at TIMESTAMPTZ NULL,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        seq BIGSERIAL
    )
    """

    _CREATE_CHAT_MESSAGES_SQL = """
    CREATE TABLE IF NOT EXISTS chat_messages (
        id TEXT PRIMARY KEY,
        chat_id TEXT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
        sender_type TEXT NOT NULL,
        sender_id TEXT NULL,
        sender_name TEXT NULL,
        content TEXT NOT NULL DEFAULT '',
        content_type TEXT NOT NULL DEFAULT 'text',
        attachment_url TEXT NULL,
        attachment_name TEXT NULL,
        attachment_size BIGINT NULL,
        system_action TEXT NULL,
        old_value TEXT NULL,
        new_value TEXT NULL,
        is_read BOOLEAN NOT NULL DEFAULT FALSE,
        read_at TIMESTAMPTZ NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        edited_at TIMESTAMPTZ NULL,
        seq BIGSERIAL
    )
    """

    # Columns added after the first schema release.
    _UPGRADE_SQL = (
        "ALTER TABLE tickets ADD COLUMN IF NOT EXISTS number BIGSERIAL UNIQUE",
        "ALTER TABLE chat_messages ADD COLUMN IF NOT EXISTS old_value TEXT NULL",
        "ALTER TABLE chat_messages ADD COLUMN IF NOT EXISTS new_value TEXT NULL",
    )

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @classmethod
    async def connect(cls, dsn: str, *, min_size: int = 1, max_size: int = 10) -> "PostgresEntityStore":
        with _translate_errors():
            pool = await asyncpg.create_pool(dsn=dsn, min_size=min_size, max_size=max_size, init=_init_connection)
        return cls(pool)

    async def close(self) -> None:
        await self._pool.close()

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            with _translate_errors():
                for statement in (
                    self._CREATE_ADMINS_SQL,
                    self._CREATE_SESSIONS_SQL,
                    self._CREATE_TICKETS_SQL,
                    self._CREATE_TICKET_COMMENTS_SQL,
                    self._CREATE_TICKET_HISTORY_SQL,
                    self._CREATE_CHATS_SQL,
                    self._CREATE_CHAT_MESSAGES_SQL,
                ):
                    await connection.execute(statement)
                for statement in self._UPGRADE_SQL:
                    await connection.execute(statement)

    async def get(self, kind: EntityKind, entity_id: str, *, lock: bool = False) -> Record:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).get(kind, entity_id)

    async def find_one(self, kind: EntityKind, **criteria: Any) -> Record | None:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).find_one(kind, **criteria)

    async def query(self, kind: EntityKind, **kwargs: Any) -> list[Record]:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).query(kind, **kwargs)

    async def count(self, kind: EntityKind, *, where: Mapping[str, Any] | None = None) -> int:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).count(kind, where=where)

    async def insert(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).insert(kind, record)

    async def update(
        self,
        kind: EntityKind,
        entity_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Record:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).update(kind, entity_id, patch, expected_version)

    async def increment(
        self,
        kind: EntityKind,
        entity_id: str,
        deltas: Mapping[str, int],
        extra: Mapping[str, Any] | None = None,
    ) -> Record:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).increment(kind, entity_id, deltas, extra)

    async def append(self, kind: EntityKind, record: Mapping[str, Any]) -> Record:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).append(kind, record)

    async def update_children(
        self,
        kind: EntityKind,
        parent_id: str,
        patch: Mapping[str, Any],
        *,
        match: Mapping[str, Any],
    ) -> int:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).update_children(kind, parent_id, patch, match=match)

    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        async with self._pool.acquire() as connection:
            await _PostgresOperations(connection).delete(kind, entity_id)

    async def list_by_parent(self, kind: EntityKind, parent_id: str) -> list[Record]:
        async with self._pool.acquire() as connection:
            return await _PostgresOperations(connection).list_by_parent(kind, parent_id)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_PostgresOperations]:
        async with self._pool.acquire() as connection:
            async with _PostgresOperations(connection).transaction() as operations:
                yield operations
