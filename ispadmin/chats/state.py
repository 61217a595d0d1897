from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from ispadmin.errors import ChatClosedError, InvalidStateError


class ChatStatus(str, Enum):
    """Supported states for a live chat."""

    WAITING = "waiting"
    ACTIVE = "active"
    CLOSED = "closed"


class SenderType(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"
    BOT = "bot"


class ReaderType(str, Enum):
    ADMIN = "admin"
    USER = "user"


CLOSED_ACTION = "chat_closed"
OPENED_ACTION = "chat_opened"
ASSIGNED_ACTION = "admin_assigned"
UNASSIGNED_ACTION = "admin_unassigned"

# Which sender types a reader receives messages from.
READER_SOURCES: Mapping[ReaderType, tuple[SenderType, ...]] = {
    ReaderType.ADMIN: (SenderType.USER,),
    ReaderType.USER: (SenderType.ADMIN, SenderType.BOT),
}

UNREAD_FIELDS: Mapping[ReaderType, str] = {
    ReaderType.ADMIN: "unread_admin_count",
    ReaderType.USER: "unread_user_count",
}


def unread_field_for(sender: SenderType) -> str | None:
    """Counter bumped when ``sender`` posts a message; ``None`` for system notes."""

    for reader, sources in READER_SOURCES.items():
        if sender in sources:
            return UNREAD_FIELDS[reader]
    return None


class ChatStateMachine:
    """Validate chat status transitions and derive their field updates."""

    _TRANSITIONS: Mapping[ChatStatus, frozenset[ChatStatus]] = {
        ChatStatus.WAITING: frozenset({ChatStatus.ACTIVE, ChatStatus.CLOSED}),
        ChatStatus.ACTIVE: frozenset({ChatStatus.CLOSED}),
        ChatStatus.CLOSED: frozenset({ChatStatus.ACTIVE}),
    }

    @classmethod
    def initial_state(cls) -> ChatStatus:
        return ChatStatus.WAITING

    @classmethod
    def can_transition(cls, current: ChatStatus, new: ChatStatus) -> bool:
        return new in cls._TRANSITIONS.get(current, frozenset())

    @classmethod
    def assert_accepts_messages(cls, current: ChatStatus) -> None:
        if current is ChatStatus.CLOSED:
            raise ChatClosedError("Chat is closed and does not accept messages")

    @classmethod
    def close_patch(cls, current: ChatStatus, now: datetime) -> dict[str, Any]:
        if current is ChatStatus.CLOSED:
            raise InvalidStateError("Chat is already closed")
        return {"status": ChatStatus.CLOSED.value, "closed_at": now}

    @classmethod
    def open_patch(cls, current: ChatStatus) -> dict[str, Any]:
        if current is not ChatStatus.CLOSED:
            raise InvalidStateError("Chat is not closed")
        return {"status": ChatStatus.ACTIVE.value, "closed_at": None}

    @classmethod
    def activation_patch(cls, current: ChatStatus) -> dict[str, Any] | None:
        """Field updates for the first operator reply, ``None`` when already active."""

        if current is ChatStatus.WAITING:
            return {"status": ChatStatus.ACTIVE.value}
        return None
