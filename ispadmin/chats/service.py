from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from opentelemetry import trace

from ispadmin.audit import AuditRecorder, AuditSubject, HistoryEntry
from ispadmin.auth.directory import AdminDirectory
from ispadmin.auth.gate import require
from ispadmin.auth.permissions import Actor, Permission, allowed
from ispadmin.errors import EmptyInputError, ForbiddenError, NotFoundError
from ispadmin.notifications import EventNotifier, LifecycleEvent, emit
from ispadmin.store.base import EntityKind, EntityStore

from .models import Attachment, Chat, ChatDetails, ChatMessage, chat_from_row, message_from_row
from .state import (
    ASSIGNED_ACTION,
    CLOSED_ACTION,
    OPENED_ACTION,
    READER_SOURCES,
    UNASSIGNED_ACTION,
    UNREAD_FIELDS,
    ChatStateMachine,
    ChatStatus,
    ReaderType,
    SenderType,
    unread_field_for,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_INBOUND_SENDERS = frozenset({SenderType.USER, SenderType.BOT})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatService:
    """Live chat lifecycle engine.

    Status and assignment changes are written with a version check together
    with one system message. Unread counters only move through relative
    increments, so messaging and read tracking can interleave freely.
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        notifier: EventNotifier | None = None,
        max_list_limit: int = 100,
        max_messages_limit: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._audit = AuditRecorder(store)
        self._directory = AdminDirectory(store)
        self._max_list_limit = max_list_limit
        self._max_messages_limit = max_messages_limit
        self._clock = clock or _utcnow

    async def start_chat(
        self,
        *,
        user_id: str | None = None,
        user_name: str | None = None,
        subject: str | None = None,
    ) -> Chat:
        """Open a chat for an inbound contact; it waits for an operator."""

        row = await self._store.insert(
            EntityKind.CHAT,
            {
                "user_id": user_id,
                "user_name": user_name,
                "subject": subject,
                "status": ChatStateMachine.initial_state(),
                "assigned_admin_id": None,
                "unread_admin_count": 0,
                "unread_user_count": 0,
                "created_at": self._clock(),
            },
        )
        chat = chat_from_row(row)
        logger.info("Chat %s started", chat.id)
        return chat

    async def assign(self, actor: Actor, chat_id: str, admin_id: str | None) -> Chat:
        require(actor, Permission.CHAT_RESPOND)

        with tracer.start_as_current_span("chats.assign"):
            async with self._store.transaction() as tx:
                chat = chat_from_row(await tx.get(EntityKind.CHAT, chat_id, lock=True))
                if chat.assigned_admin_id == admin_id:
                    return chat

                directory = self._directory.within(tx)
                new_name: str | None = None
                if admin_id is not None:
                    target = await directory.require_active(admin_id)
                    new_name = str(target.get("full_name") or admin_id)
                old_name = await directory.display_name(chat.assigned_admin_id)

                row = await tx.update(
                    EntityKind.CHAT,
                    chat_id,
                    {"assigned_admin_id": admin_id},
                    expected_version=chat.version,
                )
                if admin_id is None:
                    action, summary = UNASSIGNED_ACTION, None
                elif admin_id == actor.id:
                    action, summary = ASSIGNED_ACTION, f"{actor.full_name} took the chat"
                else:
                    action, summary = ASSIGNED_ACTION, None
                await self._audit.within(tx).append(
                    AuditSubject.CHAT, chat_id, actor, action, old_name, new_name, summary=summary
                )

        await emit(self._notifier, LifecycleEvent("chat", chat_id, action, actor.id, {"admin_id": admin_id}))
        return chat_from_row(row)

    async def send_message(
        self,
        actor: Actor,
        chat_id: str,
        content: str | None,
        attachment: Attachment | None = None,
    ) -> ChatMessage:
        """Post an operator reply; a ``waiting`` chat becomes ``active``."""

        require(actor, Permission.CHAT_RESPOND)
        text = (content or "").strip()
        if not text and attachment is None:
            raise EmptyInputError("Message text or attachment is required")

        with tracer.start_as_current_span("chats.send_message"):
            async with self._store.transaction() as tx:
                chat = chat_from_row(await tx.get(EntityKind.CHAT, chat_id, lock=True))
                ChatStateMachine.assert_accepts_messages(chat.status)

                activation = ChatStateMachine.activation_patch(chat.status)
                if activation is not None:
                    await tx.update(EntityKind.CHAT, chat_id, activation, expected_version=chat.version)

                message = await self._append_message(
                    tx,
                    chat_id,
                    sender_type=SenderType.ADMIN,
                    sender_id=actor.id,
                    sender_name=actor.full_name,
                    content=text,
                    attachment=attachment,
                )

        await emit(self._notifier, LifecycleEvent("chat", chat_id, "message_sent", actor.id, {"message_id": message.id}))
        return message

    async def receive_message(
        self,
        chat_id: str,
        content: str | None,
        *,
        sender_type: SenderType = SenderType.USER,
        sender_id: str | None = None,
        sender_name: str | None = None,
        attachment: Attachment | None = None,
    ) -> ChatMessage:
        """Append a message arriving from the customer or the external bot."""

        if sender_type not in _INBOUND_SENDERS:
            raise ValueError(f"Inbound messages cannot be sent as {sender_type.value}")
        text = (content or "").strip()
        if not text and attachment is None:
            raise EmptyInputError("Message text or attachment is required")

        async with self._store.transaction() as tx:
            chat = chat_from_row(await tx.get(EntityKind.CHAT, chat_id, lock=True))
            ChatStateMachine.assert_accepts_messages(chat.status)
            message = await self._append_message(
                tx,
                chat_id,
                sender_type=sender_type,
                sender_id=sender_id,
                sender_name=sender_name,
                content=text,
                attachment=attachment,
            )
        return message

    async def edit_message(
        self,
        actor: Actor,
        message_id: str,
        content: str,
        *,
        chat_id: str | None = None,
    ) -> ChatMessage:
        require(actor, Permission.CHAT_RESPOND)
        text = (content or "").strip()
        if not text:
            raise EmptyInputError("Message text cannot be empty")

        async with self._store.transaction() as tx:
            message = await self._get_message(tx, message_id, chat_id)
            if not self._may_edit(actor, message):
                raise ForbiddenError()
            row = await tx.update(
                EntityKind.CHAT_MESSAGE,
                message_id,
                {"content": text, "edited_at": self._clock()},
            )
        return message_from_row(row)

    async def delete_message(self, actor: Actor, message_id: str, *, chat_id: str | None = None) -> None:
        """Hard-delete an operator's own message."""

        require(actor, Permission.CHAT_RESPOND)
        async with self._store.transaction() as tx:
            message = await self._get_message(tx, message_id, chat_id)
            if not self._is_own_admin_message(actor, message):
                raise ForbiddenError()
            await tx.delete(EntityKind.CHAT_MESSAGE, message_id)
            if not message.is_read:
                await tx.increment(EntityKind.CHAT, message.chat_id, {UNREAD_FIELDS[ReaderType.USER]: -1})
        logger.info("Chat message %s deleted by %s", message_id, actor.id)

    async def close(self, actor: Actor, chat_id: str) -> Chat:
        require(actor, Permission.CHAT_RESPOND)

        with tracer.start_as_current_span("chats.close"):
            async with self._store.transaction() as tx:
                chat = chat_from_row(await tx.get(EntityKind.CHAT, chat_id, lock=True))
                patch = ChatStateMachine.close_patch(chat.status, self._clock())
                row = await tx.update(EntityKind.CHAT, chat_id, patch, expected_version=chat.version)
                await self._audit.within(tx).append(
                    AuditSubject.CHAT, chat_id, actor, CLOSED_ACTION, chat.status, ChatStatus.CLOSED
                )

        await emit(self._notifier, LifecycleEvent("chat", chat_id, CLOSED_ACTION, actor.id))
        return chat_from_row(row)

    async def open(self, actor: Actor, chat_id: str) -> Chat:
        require(actor, Permission.CHAT_RESPOND)

        with tracer.start_as_current_span("chats.open"):
            async with self._store.transaction() as tx:
                chat = chat_from_row(await tx.get(EntityKind.CHAT, chat_id, lock=True))
                patch = ChatStateMachine.open_patch(chat.status)
                row = await tx.update(EntityKind.CHAT, chat_id, patch, expected_version=chat.version)
                await self._audit.within(tx).append(
                    AuditSubject.CHAT, chat_id, actor, OPENED_ACTION, chat.status, ChatStatus.ACTIVE
                )

        await emit(self._notifier, LifecycleEvent("chat", chat_id, OPENED_ACTION, actor.id))
        return chat_from_row(row)

    async def mark_read(self, chat_id: str, reader_type: ReaderType) -> int:
        """Mark every unread message addressed to ``reader_type`` as read.

        Returns the number of messages stamped; the unread counter drops by
        exactly that amount.
        """

        async with self._store.transaction() as tx:
            await tx.get(EntityKind.CHAT, chat_id)
            stamped = await tx.update_children(
                EntityKind.CHAT_MESSAGE,
                chat_id,
                {"is_read": True, "read_at": self._clock()},
                match={"is_read": False, "sender_type": [sender.value for sender in READER_SOURCES[reader_type]]},
            )
            if stamped:
                await tx.increment(EntityKind.CHAT, chat_id, {UNREAD_FIELDS[reader_type]: -stamped})
        return stamped

    async def get_chat(
        self,
        actor: Actor,
        chat_id: str,
        *,
        limit: int = 50,
        before: datetime | None = None,
    ) -> ChatDetails:
        """Return the newest ``limit`` messages older than ``before``.

        A ``before`` without timezone is read as UTC.
        """

        require(actor, Permission.CHAT_READ)
        chat = chat_from_row(await self._store.get(EntityKind.CHAT, chat_id))
        limit = max(1, min(limit, self._max_messages_limit))
        if before is not None and before.tzinfo is None:
            before = before.replace(tzinfo=timezone.utc)
        rows = await self._store.query(
            EntityKind.CHAT_MESSAGE,
            where={"chat_id": chat_id},
            descending=True,
            limit=limit,
            before={"created_at": before} if before is not None else None,
        )
        messages = [message_from_row(row) for row in reversed(rows)]
        assigned_name = await self._directory.display_name(chat.assigned_admin_id)
        return ChatDetails(chat=chat, assigned_admin_name=assigned_name, messages=messages, has_more=len(rows) == limit)

    async def list_chats(
        self,
        actor: Actor,
        *,
        status: ChatStatus | None = None,
        assigned_to_me: bool = False,
    ) -> list[Chat]:
        require(actor, Permission.CHAT_READ)
        statuses = [status.value] if status is not None else [ChatStatus.ACTIVE.value, ChatStatus.WAITING.value]
        where: dict[str, Any] = {"status": statuses}
        if assigned_to_me:
            where["assigned_admin_id"] = actor.id
        rows = await self._store.query(
            EntityKind.CHAT,
            where=where,
            order_by="last_message_at",
            descending=True,
            limit=self._max_list_limit,
        )
        return [chat_from_row(row) for row in rows]

    async def get_history(self, chat_id: str) -> list[HistoryEntry]:
        return await self._audit.history(AuditSubject.CHAT, chat_id)

    async def _append_message(
        self,
        tx: EntityStore,
        chat_id: str,
        *,
        sender_type: SenderType,
        sender_id: str | None,
        sender_name: str | None,
        content: str,
        attachment: Attachment | None,
    ) -> ChatMessage:
        record: dict[str, Any] = {
            "chat_id": chat_id,
            "sender_type": sender_type,
            "sender_id": sender_id,
            "sender_name": sender_name,
            "content": content,
            "content_type": attachment.content_type if attachment is not None else "text",
            "is_read": False,
        }
        if attachment is not None:
            record.update(
                attachment_url=attachment.url,
                attachment_name=attachment.name,
                attachment_size=attachment.size,
            )
        row = await tx.append(EntityKind.CHAT_MESSAGE, record)

        deltas: Mapping[str, int] = {}
        counter = unread_field_for(sender_type)
        if counter is not None:
            deltas = {counter: 1}
        await tx.increment(EntityKind.CHAT, chat_id, deltas, extra={"last_message_at": row["created_at"]})
        return message_from_row(row)

    @staticmethod
    async def _get_message(tx: EntityStore, message_id: str, chat_id: str | None) -> ChatMessage:
        message = message_from_row(await tx.get(EntityKind.CHAT_MESSAGE, message_id, lock=True))
        if chat_id is not None and message.chat_id != chat_id:
            raise NotFoundError(f"Message {message_id} not found")
        return message

    @staticmethod
    def _is_own_admin_message(actor: Actor, message: ChatMessage) -> bool:
        return message.sender_type is SenderType.ADMIN and message.sender_id == actor.id

    @classmethod
    def _may_edit(cls, actor: Actor, message: ChatMessage) -> bool:
        if cls._is_own_admin_message(actor, message):
            return True
        # Bot replies may be corrected by whoever manages the AI assistant.
        return message.sender_type is SenderType.BOT and allowed(actor, Permission.AI_MANAGE)
