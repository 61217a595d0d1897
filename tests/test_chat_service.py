from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from ispadmin.chats.models import Attachment
from ispadmin.chats.service import ChatService
from ispadmin.chats.state import ChatStatus, ReaderType, SenderType
from ispadmin.errors import (
    ChatClosedError,
    EmptyInputError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from ispadmin.store.base import EntityKind


async def _messages(store, chat_id: str) -> list[dict]:
    return await store.list_by_parent(EntityKind.CHAT_MESSAGE, chat_id)


@pytest.mark.asyncio
async def test_start_chat_waits_for_operator(chat_service):
    chat = await chat_service.start_chat(user_id="customer-1", user_name="Cara Customer")

    assert chat.status == ChatStatus.WAITING
    assert chat.unread_admin_count == 0
    assert chat.unread_user_count == 0


@pytest.mark.asyncio
async def test_first_reply_activates_waiting_chat(chat_service, actors, store):
    chat = await chat_service.start_chat(user_id="customer-1")

    message = await chat_service.send_message(actors["support"], chat.id, " Hello! ")

    assert message.sender_type == SenderType.ADMIN
    assert message.sender_id == "support-1"
    assert message.content == "Hello!"
    details = await chat_service.get_chat(actors["support"], chat.id)
    assert details.chat.status == ChatStatus.ACTIVE
    assert details.chat.unread_user_count == 1
    assert details.chat.last_message_at == message.created_at
    assert await chat_service.get_history(chat.id) == []


@pytest.mark.asyncio
async def test_closed_chat_rejects_messages(chat_service, actors, store):
    chat = await chat_service.start_chat(user_id="customer-1")
    await chat_service.close(actors["support"], chat.id)

    with pytest.raises(ChatClosedError):
        await chat_service.send_message(actors["support"], chat.id, "Are you there?")
    with pytest.raises(ChatClosedError):
        await chat_service.receive_message(chat.id, "Hello?")

    rows = await _messages(store, chat.id)
    assert [row["sender_type"] for row in rows] == ["system"]
    stored = await store.get(EntityKind.CHAT, chat.id)
    assert stored["unread_admin_count"] == 0


@pytest.mark.asyncio
async def test_close_and_open_guard_current_status(chat_service, actors):
    chat = await chat_service.start_chat()
    support = actors["support"]

    with pytest.raises(InvalidStateError):
        await chat_service.open(support, chat.id)

    closed = await chat_service.close(support, chat.id)
    assert closed.status == ChatStatus.CLOSED
    assert closed.closed_at is not None

    with pytest.raises(InvalidStateError):
        await chat_service.close(support, chat.id)

    reopened = await chat_service.open(support, chat.id)
    assert reopened.status == ChatStatus.ACTIVE
    assert reopened.closed_at is None

    history = await chat_service.get_history(chat.id)
    assert [entry.action for entry in history] == ["chat_closed", "chat_opened"]
    assert all(entry.actor_name == "Sam Support" for entry in history)


@pytest.mark.asyncio
async def test_inbound_messages_bump_the_right_counter(chat_service, store):
    chat = await chat_service.start_chat()

    await chat_service.receive_message(chat.id, "My internet is down")
    await chat_service.receive_message(chat.id, "Try restarting the router", sender_type=SenderType.BOT)

    stored = await store.get(EntityKind.CHAT, chat.id)
    assert stored["unread_admin_count"] == 1
    assert stored["unread_user_count"] == 1

    with pytest.raises(ValueError):
        await chat_service.receive_message(chat.id, "spoofed", sender_type=SenderType.SYSTEM)


@pytest.mark.asyncio
async def test_empty_message_is_rejected(chat_service, actors):
    chat = await chat_service.start_chat()

    with pytest.raises(EmptyInputError):
        await chat_service.send_message(actors["support"], chat.id, "   ")


@pytest.mark.asyncio
async def test_attachment_only_message_is_accepted(chat_service, actors):
    chat = await chat_service.start_chat()
    attachment = Attachment(url="https://files.example.net/speedtest.png", name="speedtest.png", size=2048, content_type="image")

    message = await chat_service.send_message(actors["support"], chat.id, None, attachment)

    assert message.content == ""
    assert message.content_type == "image"
    assert message.attachment_url == attachment.url
    assert message.attachment_size == 2048


@pytest.mark.asyncio
async def test_admin_cannot_edit_another_admins_message(chat_service, actors, store):
    chat = await chat_service.start_chat()
    message = await chat_service.send_message(actors["support"], chat.id, "Original reply")

    with pytest.raises(ForbiddenError):
        await chat_service.edit_message(actors["support_b"], message.id, "Hijacked")
    with pytest.raises(ForbiddenError):
        await chat_service.edit_message(actors["admin"], message.id, "Hijacked")

    stored = await store.get(EntityKind.CHAT_MESSAGE, message.id)
    assert stored["content"] == "Original reply"
    assert stored.get("edited_at") is None


@pytest.mark.asyncio
async def test_author_can_edit_own_message(chat_service, actors):
    chat = await chat_service.start_chat()
    message = await chat_service.send_message(actors["support"], chat.id, "Teh router")

    edited = await chat_service.edit_message(actors["support"], message.id, "The router", chat_id=chat.id)

    assert edited.content == "The router"
    assert edited.edited_at is not None


@pytest.mark.asyncio
async def test_bot_messages_editable_with_ai_manage(chat_service, actors):
    chat = await chat_service.start_chat()
    bot_message = await chat_service.receive_message(chat.id, "Wrong answer", sender_type=SenderType.BOT)

    with pytest.raises(ForbiddenError):
        await chat_service.edit_message(actors["support"], bot_message.id, "Corrected answer")

    edited = await chat_service.edit_message(actors["bot_keeper"], bot_message.id, "Corrected answer")
    assert edited.content == "Corrected answer"


@pytest.mark.asyncio
async def test_system_messages_are_never_editable(chat_service, actors, store):
    chat = await chat_service.start_chat()
    await chat_service.close(actors["admin"], chat.id)
    system_row = (await _messages(store, chat.id))[0]

    with pytest.raises(ForbiddenError):
        await chat_service.edit_message(actors["admin"], system_row["id"], "Rewritten history")
    with pytest.raises(ForbiddenError):
        await chat_service.delete_message(actors["admin"], system_row["id"])


@pytest.mark.asyncio
async def test_delete_own_unread_message_decrements_counter(chat_service, actors, store):
    chat = await chat_service.start_chat()
    message = await chat_service.send_message(actors["support"], chat.id, "Sent to the wrong customer")

    with pytest.raises(ForbiddenError):
        await chat_service.delete_message(actors["support_b"], message.id)

    await chat_service.delete_message(actors["support"], message.id, chat_id=chat.id)

    assert await _messages(store, chat.id) == []
    stored = await store.get(EntityKind.CHAT, chat.id)
    assert stored["unread_user_count"] == 0


@pytest.mark.asyncio
async def test_message_lookup_checks_chat(chat_service, actors):
    chat = await chat_service.start_chat()
    other = await chat_service.start_chat()
    message = await chat_service.send_message(actors["support"], chat.id, "Hello")

    with pytest.raises(NotFoundError):
        await chat_service.delete_message(actors["support"], message.id, chat_id=other.id)


@pytest.mark.asyncio
async def test_self_assignment_posts_took_the_chat_note(chat_service, actors, store):
    chat = await chat_service.start_chat()

    assigned = await chat_service.assign(actors["support"], chat.id, "support-1")
    await chat_service.assign(actors["support"], chat.id, "support-1")
    await chat_service.assign(actors["admin"], chat.id, "support-2")
    await chat_service.assign(actors["admin"], chat.id, None)

    assert assigned.assigned_admin_id == "support-1"
    rows = await _messages(store, chat.id)
    assert [row["system_action"] for row in rows] == ["admin_assigned", "admin_assigned", "admin_unassigned"]
    assert rows[0]["content"] == "Sam Support took the chat"
    assert rows[1]["content"] == "Ada Admin assigned the chat to Sid Support"
    stored = await store.get(EntityKind.CHAT, chat.id)
    assert stored["unread_user_count"] == 0
    assert stored["unread_admin_count"] == 0


@pytest.mark.asyncio
async def test_assign_requires_active_target(chat_service, actors):
    chat = await chat_service.start_chat()
    with pytest.raises(NotFoundError):
        await chat_service.assign(actors["admin"], chat.id, "support-5")


@pytest.mark.asyncio
async def test_mark_read_stamps_only_messages_for_reader(chat_service, actors, store):
    chat = await chat_service.start_chat()
    await chat_service.receive_message(chat.id, "Hello")
    await chat_service.receive_message(chat.id, "Anyone?")
    await chat_service.send_message(actors["support"], chat.id, "Hi, checking")

    marked = await chat_service.mark_read(chat.id, ReaderType.ADMIN)

    assert marked == 2
    stored = await store.get(EntityKind.CHAT, chat.id)
    assert stored["unread_admin_count"] == 0
    assert stored["unread_user_count"] == 1
    rows = await _messages(store, chat.id)
    assert [row["is_read"] for row in rows] == [True, True, False]
    assert await chat_service.mark_read(chat.id, ReaderType.ADMIN) == 0

    assert await chat_service.mark_read(chat.id, ReaderType.USER) == 1
    stored = await store.get(EntityKind.CHAT, chat.id)
    assert stored["unread_user_count"] == 0


@pytest.mark.asyncio
async def test_concurrent_reads_and_messages_keep_counter_consistent(chat_service, store):
    chat = await chat_service.start_chat()

    operations = []
    for index in range(10):
        operations.append(chat_service.receive_message(chat.id, f"message {index}"))
        if index % 3 == 1:
            operations.append(chat_service.mark_read(chat.id, ReaderType.ADMIN))
    await asyncio.gather(*operations)

    rows = await _messages(store, chat.id)
    unread = sum(1 for row in rows if row["sender_type"] == "user" and not row["is_read"])
    stored = await store.get(EntityKind.CHAT, chat.id)
    assert stored["unread_admin_count"] == unread

    await chat_service.receive_message(chat.id, "one more")
    stored = await store.get(EntityKind.CHAT, chat.id)
    assert stored["unread_admin_count"] == unread + 1


@pytest.mark.asyncio
async def test_get_chat_pages_backwards(chat_service, actors):
    chat = await chat_service.start_chat()
    for index in range(5):
        await chat_service.receive_message(chat.id, f"line {index}")

    page = await chat_service.get_chat(actors["support"], chat.id, limit=2)
    assert [message.content for message in page.messages] == ["line 3", "line 4"]
    assert page.has_more

    earlier = await chat_service.get_chat(actors["support"], chat.id, limit=10, before=page.messages[0].created_at)
    assert [message.content for message in earlier.messages] == ["line 0", "line 1", "line 2"]
    assert not earlier.has_more


@pytest.mark.asyncio
async def test_list_chats_defaults_to_open_conversations(store, actors, clock):
    service = ChatService(store, clock=clock)
    waiting = await service.start_chat(subject="waiting")
    active = await service.start_chat(subject="active")
    closed = await service.start_chat(subject="closed")
    await service.send_message(actors["support"], active.id, "On it")
    await service.close(actors["support"], closed.id)
    await service.assign(actors["support"], waiting.id, "support-1")

    listed = await service.list_chats(actors["support"])
    assert [chat.id for chat in listed] == [active.id, waiting.id]

    only_closed = await service.list_chats(actors["support"], status=ChatStatus.CLOSED)
    assert [chat.id for chat in only_closed] == [closed.id]

    mine = await service.list_chats(actors["support"], assigned_to_me=True)
    assert [chat.id for chat in mine] == [waiting.id]


@pytest.mark.asyncio
async def test_roles_without_chat_access_are_rejected(chat_service, actors):
    chat = await chat_service.start_chat()

    with pytest.raises(ForbiddenError):
        await chat_service.send_message(actors["moderator"], chat.id, "Hello")
    with pytest.raises(ForbiddenError):
        await chat_service.list_chats(actors["moderator"])


@pytest.mark.asyncio
async def test_history_reads_back_audit_values(chat_service, actors):
    chat = await chat_service.start_chat()

    await chat_service.assign(actors["support"], chat.id, "support-2")
    await chat_service.close(actors["support"], chat.id)

    history = await chat_service.get_history(chat.id)
    assert [(entry.action, entry.old_value, entry.new_value) for entry in history] == [
        ("admin_assigned", None, "Sid Support"),
        ("chat_closed", "waiting", "closed"),
    ]


@pytest.mark.asyncio
async def test_get_chat_accepts_naive_before(chat_service, actors):
    chat = await chat_service.start_chat()
    for index in range(3):
        await chat_service.receive_message(chat.id, f"line {index}")

    page = await chat_service.get_chat(actors["support"], chat.id, before=datetime(2030, 1, 1))

    assert [message.content for message in page.messages] == ["line 0", "line 1", "line 2"]
