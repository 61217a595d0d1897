from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from .state import ChatStatus, SenderType


@dataclass(slots=True)
class Chat:
    """Aggregate representing a live chat with a customer."""

    id: str
    status: ChatStatus
    assigned_admin_id: str | None
    unread_admin_count: int
    unread_user_count: int
    version: int
    created_at: datetime
    last_message_at: datetime | None = None
    closed_at: datetime | None = None
    user_id: str | None = None
    user_name: str | None = None
    subject: str | None = None


@dataclass(slots=True)
class ChatMessage:
    id: str
    chat_id: str
    sender_type: SenderType
    sender_id: str | None
    sender_name: str | None
    content: str
    content_type: str
    created_at: datetime
    attachment_url: str | None = None
    attachment_name: str | None = None
    attachment_size: int | None = None
    system_action: str | None = None
    is_read: bool = False
    read_at: datetime | None = None
    edited_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class Attachment:
    """Reference to an already uploaded file."""

    url: str
    name: str | None = None
    size: int | None = None
    content_type: str = "file"


@dataclass(slots=True)
class ChatDetails:
    chat: Chat
    assigned_admin_name: str | None
    messages: Sequence[ChatMessage]
    has_more: bool


def chat_from_row(row: Mapping[str, Any]) -> Chat:
    return Chat(
        id=str(row["id"]),
        status=ChatStatus(str(row["status"])),
        assigned_admin_id=row.get("assigned_admin_id"),
        unread_admin_count=int(row.get("unread_admin_count") or 0),
        unread_user_count=int(row.get("unread_user_count") or 0),
        version=int(row.get("version") or 1),
        created_at=row["created_at"],
        last_message_at=row.get("last_message_at"),
        closed_at=row.get("closed_at"),
        user_id=row.get("user_id"),
        user_name=row.get("user_name"),
        subject=row.get("subject"),
    )


def message_from_row(row: Mapping[str, Any]) -> ChatMessage:
    size = row.get("attachment_size")
    return ChatMessage(
        id=str(row["id"]),
        chat_id=str(row["chat_id"]),
        sender_type=SenderType(str(row["sender_type"])),
        sender_id=row.get("sender_id"),
        sender_name=row.get("sender_name"),
        content=str(row.get("content") or ""),
        content_type=str(row.get("content_type") or "text"),
        created_at=row["created_at"],
        attachment_url=row.get("attachment_url"),
        attachment_name=row.get("attachment_name"),
        attachment_size=int(size) if size is not None else None,
        system_action=row.get("system_action"),
        is_read=bool(row.get("is_read")),
        read_at=row.get("read_at"),
        edited_at=row.get("edited_at"),
    )
