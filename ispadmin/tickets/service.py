from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

from opentelemetry import trace

from ispadmin.audit import AuditRecorder, AuditSubject, HistoryEntry
from ispadmin.auth.directory import AdminDirectory
from ispadmin.auth.gate import require
from ispadmin.auth.permissions import Actor, Permission
from ispadmin.errors import EmptyInputError, TicketClosedError
from ispadmin.notifications import EventNotifier, LifecycleEvent, emit
from ispadmin.store.base import EntityKind, EntityStore

from .models import CommentAudience, Ticket, TicketComment, TicketDetails, comment_from_row, ticket_from_row
from .state import (
    ASSIGNED_ACTION,
    PRIORITY_CHANGE_ACTION,
    STATUS_CHANGE_ACTION,
    UNASSIGNED_ACTION,
    TicketPriority,
    TicketStateMachine,
    TicketStatus,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Listing filters that expand to several statuses.
STATUS_GROUPS: Mapping[str, tuple[TicketStatus, ...]] = {
    "in_progress": (TicketStatus.OPEN, TicketStatus.PENDING),
    "closed": (TicketStatus.RESOLVED, TicketStatus.CLOSED),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def status_filter(value: str | None) -> tuple[TicketStatus, ...] | None:
    """Translate a listing ``status`` query value into concrete statuses.

    ``all`` disables filtering; unknown or missing values fall back to ``new``.
    """

    if value == "all":
        return None
    if value in STATUS_GROUPS:
        return STATUS_GROUPS[value]
    try:
        return (TicketStatus(value),)
    except ValueError:
        return (TicketStatus.NEW,)


def _ticket_filters(
    actor: Actor,
    status: str | None,
    priority: TicketPriority | None,
    assigned_to_me: bool,
) -> dict[str, Any]:
    where: dict[str, Any] = {}
    statuses = status_filter(status)
    if statuses is not None:
        where["status"] = [item.value for item in statuses]
    if priority is not None:
        where["priority"] = priority.value
    if assigned_to_me:
        where["assigned_admin_id"] = actor.id
    return where


class TicketService:
    """Ticket lifecycle engine.

    Every mutation re-reads the ticket inside one store transaction, writes
    the new state with a version check and appends the matching history
    entry before the transaction commits.
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        state_machine: TicketStateMachine | None = None,
        notifier: EventNotifier | None = None,
        history_limit: int = 20,
        max_list_limit: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._state_machine = state_machine or TicketStateMachine()
        self._notifier = notifier
        self._audit = AuditRecorder(store)
        self._directory = AdminDirectory(store)
        self._history_limit = history_limit
        self._max_list_limit = max_list_limit
        self._clock = clock or _utcnow

    async def create_ticket(
        self,
        *,
        subject: str,
        description: str,
        priority: TicketPriority = TicketPriority.NORMAL,
        category: str | None = None,
        user_id: str | None = None,
        user_name: str | None = None,
        user_email: str | None = None,
    ) -> Ticket:
        """Register a ticket submitted through a customer channel."""

        if not subject.strip():
            raise EmptyInputError("Ticket subject is required")
        now = self._clock()
        row = await self._store.insert(
            EntityKind.TICKET,
            {
                "subject": subject.strip(),
                "description": description,
                "category": category,
                "user_id": user_id,
                "user_name": user_name,
                "user_email": user_email,
                "status": TicketStateMachine.initial_state(),
                "priority": priority,
                "assigned_admin_id": None,
                "created_at": now,
                "updated_at": now,
            },
        )
        ticket = ticket_from_row(row)
        logger.info("Ticket %s created", ticket.id)
        await emit(self._notifier, LifecycleEvent("ticket", ticket.id, "created", None))
        return ticket

    async def set_status(self, actor: Actor, ticket_id: str, status: TicketStatus) -> Ticket:
        require(actor, Permission.TICKETS_RESPOND)
        if status is TicketStatus.CLOSED:
            require(actor, Permission.TICKETS_CLOSE)

        with tracer.start_as_current_span("tickets.set_status") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.status", status.value)
            async with self._store.transaction() as tx:
                ticket = ticket_from_row(await tx.get(EntityKind.TICKET, ticket_id, lock=True))
                if ticket.status == status:
                    return ticket

                self._state_machine.check(ticket.status, status)
                patch = self._state_machine.patch_for(ticket, status, self._clock())
                row = await tx.update(EntityKind.TICKET, ticket_id, patch, expected_version=ticket.version)
                await self._audit.within(tx).append(
                    AuditSubject.TICKET, ticket_id, actor, STATUS_CHANGE_ACTION, ticket.status, status
                )

        await emit(
            self._notifier,
            LifecycleEvent("ticket", ticket_id, STATUS_CHANGE_ACTION, actor.id, {"old": ticket.status.value, "new": status.value}),
        )
        return ticket_from_row(row)

    async def set_priority(self, actor: Actor, ticket_id: str, priority: TicketPriority) -> Ticket:
        require(actor, Permission.TICKETS_RESPOND)

        with tracer.start_as_current_span("tickets.set_priority"):
            async with self._store.transaction() as tx:
                ticket = ticket_from_row(await tx.get(EntityKind.TICKET, ticket_id, lock=True))
                if ticket.priority == priority:
                    return ticket

                row = await tx.update(
                    EntityKind.TICKET,
                    ticket_id,
                    {"priority": priority, "updated_at": self._clock()},
                    expected_version=ticket.version,
                )
                await self._audit.within(tx).append(
                    AuditSubject.TICKET, ticket_id, actor, PRIORITY_CHANGE_ACTION, ticket.priority, priority
                )

        await emit(self._notifier, LifecycleEvent("ticket", ticket_id, PRIORITY_CHANGE_ACTION, actor.id))
        return ticket_from_row(row)

    async def assign(self, actor: Actor, ticket_id: str, admin_id: str | None) -> Ticket:
        require(actor, Permission.TICKETS_RESPOND)

        with tracer.start_as_current_span("tickets.assign"):
            async with self._store.transaction() as tx:
                ticket = ticket_from_row(await tx.get(EntityKind.TICKET, ticket_id, lock=True))
                if ticket.assigned_admin_id == admin_id:
                    return ticket

                directory = self._directory.within(tx)
                new_name: str | None = None
                if admin_id is not None:
                    target = await directory.require_active(admin_id)
                    new_name = str(target.get("full_name") or admin_id)
                old_name = await directory.display_name(ticket.assigned_admin_id)

                row = await tx.update(
                    EntityKind.TICKET,
                    ticket_id,
                    {"assigned_admin_id": admin_id, "updated_at": self._clock()},
                    expected_version=ticket.version,
                )
                action = ASSIGNED_ACTION if admin_id is not None else UNASSIGNED_ACTION
                await self._audit.within(tx).append(AuditSubject.TICKET, ticket_id, actor, action, old_name, new_name)

        await emit(self._notifier, LifecycleEvent("ticket", ticket_id, action, actor.id, {"admin_id": admin_id}))
        return ticket_from_row(row)

    async def add_comment(
        self,
        actor: Actor,
        ticket_id: str,
        content: str,
        *,
        is_internal: bool = False,
        is_solution: bool = False,
        attachments: Sequence[Mapping[str, Any]] = (),
    ) -> TicketComment:
        """Add an admin comment; the first comment moves a ``new`` ticket to ``open``.

        Not idempotent: retrying after an ambiguous failure may duplicate the
        comment.
        """

        require(actor, Permission.TICKETS_RESPOND)
        text = (content or "").strip()
        if not text:
            raise EmptyInputError("Comment cannot be empty")

        with tracer.start_as_current_span("tickets.add_comment"):
            async with self._store.transaction() as tx:
                ticket = ticket_from_row(await tx.get(EntityKind.TICKET, ticket_id, lock=True))
                if ticket.status is TicketStatus.CLOSED:
                    raise TicketClosedError("Ticket is closed and does not accept comments")

                comment_row = await tx.append(
                    EntityKind.TICKET_COMMENT,
                    {
                        "ticket_id": ticket_id,
                        "author_type": "admin",
                        "author_id": actor.id,
                        "author_name": actor.full_name,
                        "content": text,
                        "is_internal": is_internal,
                        "is_solution": is_solution,
                        "attachments": [dict(item) for item in attachments],
                    },
                )

                now = self._clock()
                patch: dict[str, Any] = {"updated_at": now}
                if not is_internal and ticket.first_response_at is None:
                    patch["first_response_at"] = now
                opened = ticket.status is TicketStatus.NEW
                if opened:
                    patch.update(self._state_machine.patch_for(ticket, TicketStatus.OPEN, now))

                await tx.update(EntityKind.TICKET, ticket_id, patch, expected_version=ticket.version)
                if opened:
                    await self._audit.within(tx).append(
                        AuditSubject.TICKET,
                        ticket_id,
                        actor,
                        STATUS_CHANGE_ACTION,
                        TicketStatus.NEW,
                        TicketStatus.OPEN,
                    )

        comment = comment_from_row(comment_row)
        await emit(
            self._notifier,
            LifecycleEvent("ticket", ticket_id, "comment_added", actor.id, {"internal": is_internal}),
        )
        return comment

    async def get_ticket(self, actor: Actor, ticket_id: str, *, history_limit: int | None = None) -> TicketDetails:
        require(actor, Permission.TICKETS_READ)
        ticket = ticket_from_row(await self._store.get(EntityKind.TICKET, ticket_id))
        comments = await self.list_comments(ticket_id, audience=CommentAudience.ADMIN)
        history = await self.get_history(
            ticket_id, limit=self._history_limit if history_limit is None else history_limit, newest_first=True
        )
        assigned_name = await self._directory.display_name(ticket.assigned_admin_id)
        return TicketDetails(ticket=ticket, assigned_admin_name=assigned_name, comments=comments, history=history)

    async def list_tickets(
        self,
        actor: Actor,
        *,
        status: str | None = None,
        priority: TicketPriority | None = None,
        assigned_to_me: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Ticket]:
        require(actor, Permission.TICKETS_READ)
        limit = max(1, min(limit, self._max_list_limit))
        rows = await self._store.query(
            EntityKind.TICKET,
            where=_ticket_filters(actor, status, priority, assigned_to_me),
            descending=True,
            limit=limit,
            offset=max(offset, 0),
        )
        return [ticket_from_row(row) for row in rows]

    async def count_tickets(
        self,
        actor: Actor,
        *,
        status: str | None = None,
        priority: TicketPriority | None = None,
        assigned_to_me: bool = False,
    ) -> int:
        require(actor, Permission.TICKETS_READ)
        return await self._store.count(
            EntityKind.TICKET, where=_ticket_filters(actor, status, priority, assigned_to_me)
        )

    async def list_comments(
        self,
        ticket_id: str,
        *,
        audience: CommentAudience = CommentAudience.USER,
    ) -> list[TicketComment]:
        """Return comments in creation order.

        Internal comments are never included for the ``user`` audience.
        """

        rows = await self._store.list_by_parent(EntityKind.TICKET_COMMENT, ticket_id)
        comments = [comment_from_row(row) for row in rows]
        if audience is CommentAudience.USER:
            comments = [comment for comment in comments if not comment.is_internal]
        return comments

    async def get_history(
        self,
        ticket_id: str,
        *,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[HistoryEntry]:
        return await self._audit.history(AuditSubject.TICKET, ticket_id, limit=limit, newest_first=newest_first)
