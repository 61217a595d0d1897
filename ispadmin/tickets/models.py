from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Sequence

from ispadmin.audit import HistoryEntry

from .state import TicketPriority, TicketStatus


class CommentAudience(str, Enum):
    """Who a comment listing is rendered for."""

    ADMIN = "admin"
    USER = "user"


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket entry."""

    id: str
    subject: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    assigned_admin_id: str | None
    version: int
    created_at: datetime
    updated_at: datetime | None = None
    first_response_at: datetime | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    number: int | None = None
    category: str | None = None
    user_id: str | None = None
    user_name: str | None = None
    user_email: str | None = None


@dataclass(slots=True)
class TicketComment:
    id: str
    ticket_id: str
    author_type: str
    author_id: str | None
    author_name: str | None
    content: str
    is_internal: bool
    is_solution: bool
    created_at: datetime
    attachments: Sequence[Mapping[str, Any]] = field(default_factory=list)
    edited_at: datetime | None = None


@dataclass(slots=True)
class TicketDetails:
    """Ticket bundled with its comments and latest history entries."""

    ticket: Ticket
    assigned_admin_name: str | None
    comments: Sequence[TicketComment]
    history: Sequence[HistoryEntry]


def ticket_from_row(row: Mapping[str, Any]) -> Ticket:
    return Ticket(
        id=str(row["id"]),
        subject=str(row.get("subject") or ""),
        description=str(row.get("description") or ""),
        status=TicketStatus(str(row["status"])),
        priority=TicketPriority(str(row.get("priority") or TicketPriority.NORMAL.value)),
        assigned_admin_id=row.get("assigned_admin_id"),
        version=int(row.get("version") or 1),
        created_at=row["created_at"],
        updated_at=row.get("updated_at"),
        first_response_at=row.get("first_response_at"),
        resolved_at=row.get("resolved_at"),
        closed_at=row.get("closed_at"),
        number=int(row["number"]) if row.get("number") is not None else None,
        category=row.get("category"),
        user_id=row.get("user_id"),
        user_name=row.get("user_name"),
        user_email=row.get("user_email"),
    )


def comment_from_row(row: Mapping[str, Any]) -> TicketComment:
    return TicketComment(
        id=str(row["id"]),
        ticket_id=str(row["ticket_id"]),
        author_type=str(row["author_type"]),
        author_id=row.get("author_id"),
        author_name=row.get("author_name"),
        content=str(row["content"]),
        is_internal=bool(row.get("is_internal")),
        is_solution=bool(row.get("is_solution")),
        created_at=row["created_at"],
        attachments=list(row.get("attachments") or []),
        edited_at=row.get("edited_at"),
    )
