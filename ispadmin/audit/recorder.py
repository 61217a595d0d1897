from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from ispadmin.auth.permissions import Actor
from ispadmin.store.base import EntityKind, EntityStore

logger = logging.getLogger(__name__)


class AuditSubject(str, Enum):
    """Entity kinds that carry an audit trail."""

    TICKET = "ticket"
    CHAT = "chat"


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """Immutable record of one state-changing action."""

    id: str
    subject: AuditSubject
    entity_id: str
    actor_id: str | None
    actor_name: str
    action: str
    old_value: str | None
    new_value: str | None
    created_at: datetime
    seq: int = 0


_CHAT_SUMMARIES: Mapping[str, str] = {
    "chat_closed": "Chat closed by {actor}",
    "chat_opened": "Chat reopened by {actor}",
    "admin_assigned": "{actor} assigned the chat to {new}",
    "admin_unassigned": "{actor} removed the chat assignment",
}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class AuditRecorder:
    """Append-only writer for ticket history and chat system messages.

    Ticket entries are stored in ``ticket_history``. Chat entries are stored
    as ``system`` messages so they show up inline in the conversation, with
    the old and new values kept on the message row.
    """

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    def within(self, store: EntityStore) -> "AuditRecorder":
        """Return a recorder writing through ``store`` (usually a transaction)."""

        return AuditRecorder(store)

    async def append(
        self,
        subject: AuditSubject,
        entity_id: str,
        actor: Actor | None,
        action: str,
        old_value: Any = None,
        new_value: Any = None,
        *,
        summary: str | None = None,
    ) -> HistoryEntry:
        actor_id = actor.id if actor is not None else None
        actor_name = actor.full_name if actor is not None else "system"
        old_text, new_text = _text(old_value), _text(new_value)

        if subject is AuditSubject.TICKET:
            record = await self._store.append(
                EntityKind.TICKET_HISTORY,
                {
                    "ticket_id": entity_id,
                    "admin_id": actor_id,
                    "admin_name": actor_name,
                    "action": action,
                    "old_value": old_text,
                    "new_value": new_text,
                },
            )
            entry = self._from_history_row(record)
        else:
            content = summary or _CHAT_SUMMARIES.get(action, "{actor}: {action}").format(
                actor=actor_name, action=action, old=old_text or "", new=new_text or ""
            )
            record = await self._store.append(
                EntityKind.CHAT_MESSAGE,
                {
                    "chat_id": entity_id,
                    "sender_type": "system",
                    "sender_id": actor_id,
                    "sender_name": actor_name,
                    "content": content,
                    "content_type": "system",
                    "system_action": action,
                    "old_value": old_text,
                    "new_value": new_text,
                    "is_read": False,
                },
            )
            entry = self._from_message_row(record)

        logger.info(
            "audit %s %s action=%s actor=%s old=%s new=%s",
            subject.value,
            entity_id,
            action,
            actor_id,
            old_text,
            new_text,
        )
        return entry

    async def history(
        self,
        subject: AuditSubject,
        entity_id: str,
        *,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[HistoryEntry]:
        if subject is AuditSubject.TICKET:
            rows = await self._store.query(
                EntityKind.TICKET_HISTORY,
                where={"ticket_id": entity_id},
                descending=newest_first,
                limit=limit,
            )
            return [self._from_history_row(row) for row in rows]

        rows = await self._store.query(
            EntityKind.CHAT_MESSAGE,
            where={"chat_id": entity_id, "sender_type": "system"},
            descending=newest_first,
            limit=limit,
        )
        return [self._from_message_row(row) for row in rows]

    @staticmethod
    def _from_history_row(row: Mapping[str, Any]) -> HistoryEntry:
        return HistoryEntry(
            id=str(row["id"]),
            subject=AuditSubject.TICKET,
            entity_id=str(row["ticket_id"]),
            actor_id=row.get("admin_id"),
            actor_name=str(row.get("admin_name") or ""),
            action=str(row["action"]),
            old_value=row.get("old_value"),
            new_value=row.get("new_value"),
            created_at=row["created_at"],
            seq=int(row.get("seq") or 0),
        )

    @staticmethod
    def _from_message_row(row: Mapping[str, Any]) -> HistoryEntry:
        return HistoryEntry(
            id=str(row["id"]),
            subject=AuditSubject.CHAT,
            entity_id=str(row["chat_id"]),
            actor_id=row.get("sender_id"),
            actor_name=str(row.get("sender_name") or ""),
            action=str(row.get("system_action") or ""),
            old_value=row.get("old_value"),
            new_value=row.get("new_value"),
            created_at=row["created_at"],
            seq=int(row.get("seq") or 0),
        )
