from __future__ import annotations

import asyncio

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from ispadmin.api.errors import console_error_handler
from ispadmin.auth.sessions import StaticTokenSessionResolver
from ispadmin.chats.service import ChatService
from ispadmin.core.config import Settings
from ispadmin.errors import StorageError
from ispadmin.main import create_app
from ispadmin.store.base import EntityKind
from ispadmin.store.memory import InMemoryEntityStore
from ispadmin.tickets.service import TicketService

TOKENS = {
    "token-admin": "auth-admin",
    "token-support": "auth-support",
    "token-support-b": "auth-support-b",
    "token-moderator": "auth-moderator",
    "token-no-close": "auth-no-close",
}


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _seed(store: InMemoryEntityStore, admin_rows) -> dict[str, str]:
    for row in admin_rows.values():
        await store.insert(EntityKind.ADMIN, row)
    ticket = await TicketService(store).create_ticket(subject="No internet", description="Since 8am")
    chat = await ChatService(store).start_chat(user_id="customer-1", user_name="Cara Customer")
    await ChatService(store).receive_message(chat.id, "Hello, my line is down")
    return {"ticket": ticket.id, "chat": chat.id}


@pytest.fixture
def console(admin_rows):
    store = InMemoryEntityStore()
    ids = asyncio.run(_seed(store, admin_rows))
    app = create_app(
        settings=Settings(store_backend="memory", otel_enabled=False),
        store=store,
        session_resolver=StaticTokenSessionResolver(TOKENS),
    )
    with TestClient(app) as client:
        yield client, ids


def test_ping_is_public(console):
    client, _ = console
    assert client.get("/ping").json() == {"status": "ok"}


def test_requests_without_session_are_rejected(console):
    client, ids = console

    missing = client.get(f"/tickets/{ids['ticket']}")
    bogus = client.get("/auth/me", headers=_auth("forged"))

    assert missing.status_code == 401
    assert bogus.status_code == 401
    assert bogus.json() == {"detail": "Not authenticated"}


def test_me_lists_effective_permissions(console):
    client, _ = console

    response = client.get("/auth/me", headers=_auth("token-no-close"))

    assert response.status_code == 200
    body = response.json()
    assert body["fullName"] == "Nic Noclose"
    assert body["role"] == "support"
    assert "tickets:respond" in body["permissions"]
    assert "tickets:close" not in body["permissions"]


def test_ticket_status_change_and_details(console):
    client, ids = console

    response = client.put(f"/tickets/{ids['ticket']}/status", json={"status": "open"}, headers=_auth("token-support"))
    assert response.status_code == 200
    assert response.json()["status"] == "open"

    details = client.get(f"/tickets/{ids['ticket']}", headers=_auth("token-support")).json()
    assert details["ticket"]["id"] == ids["ticket"]
    assert details["history"][0]["actorName"] == "Sam Support"
    assert details["history"][0]["oldValue"] == "new"
    assert details["history"][0]["newValue"] == "open"


def test_ticket_listing_requires_read_permission(console):
    client, ids = console

    denied = client.get("/tickets", headers=_auth("token-moderator"))
    listed = client.get("/tickets", params={"status": "all"}, headers=_auth("token-support"))

    assert denied.status_code == 403
    assert denied.json() == {"detail": "Not authorized"}
    assert [ticket["id"] for ticket in listed.json()] == [ids["ticket"]]
    assert listed.json()[0]["number"] == 1
    assert listed.headers["X-Total-Count"] == "1"


def test_close_without_close_permission_is_forbidden(console):
    client, ids = console

    response = client.put(f"/tickets/{ids['ticket']}/status", json={"status": "closed"}, headers=_auth("token-no-close"))

    assert response.status_code == 403
    assert response.json() == {"detail": "Not authorized"}


def test_comment_errors_map_to_http_statuses(console):
    client, ids = console
    path = f"/tickets/{ids['ticket']}/comments"

    blank = client.post(path, json={"content": "   "}, headers=_auth("token-support"))
    created = client.post(path, json={"content": "Checking", "isInternal": True}, headers=_auth("token-support"))
    client.put(f"/tickets/{ids['ticket']}/status", json={"status": "closed"}, headers=_auth("token-support"))
    closed = client.post(path, json={"content": "Too late"}, headers=_auth("token-support"))
    missing = client.post("/tickets/unknown/comments", json={"content": "Hi"}, headers=_auth("token-support"))

    assert blank.status_code == 400
    assert created.status_code == 201
    assert created.json()["isInternal"] is True
    assert closed.status_code == 409
    assert missing.status_code == 404


def test_assign_ticket_to_unknown_admin_is_not_found(console):
    client, ids = console

    response = client.post(f"/tickets/{ids['ticket']}/assign", json={"adminId": "ghost"}, headers=_auth("token-admin"))

    assert response.status_code == 404


def test_chat_message_lifecycle(console):
    client, ids = console
    base = f"/chats/{ids['chat']}"

    sent = client.post(f"{base}/messages", json={"content": "Hi Cara"}, headers=_auth("token-support"))
    assert sent.status_code == 201
    message_id = sent.json()["id"]
    assert sent.json()["senderType"] == "admin"

    hijack = client.patch(f"{base}/messages/{message_id}", json={"content": "x"}, headers=_auth("token-support-b"))
    assert hijack.status_code == 403

    edited = client.patch(f"{base}/messages/{message_id}", json={"content": "Hi Cara!"}, headers=_auth("token-support"))
    assert edited.json()["content"] == "Hi Cara!"

    read = client.post(f"{base}/read", headers=_auth("token-support"))
    assert read.json() == {"marked": 1}

    details = client.get(base, headers=_auth("token-support")).json()
    assert details["chat"]["status"] == "active"
    assert details["chat"]["unreadAdminCount"] == 0
    assert details["chat"]["unreadUserCount"] == 1

    deleted = client.delete(f"{base}/messages/{message_id}", headers=_auth("token-support"))
    assert deleted.status_code == 204


def test_closed_chat_rejects_replies(console):
    client, ids = console
    base = f"/chats/{ids['chat']}"

    assert client.post(f"{base}/close", headers=_auth("token-support")).status_code == 200
    again = client.post(f"{base}/close", headers=_auth("token-support"))
    reply = client.post(f"{base}/messages", json={"content": "Still there?"}, headers=_auth("token-support"))

    assert again.status_code == 409
    assert reply.status_code == 409

    reopened = client.post(f"{base}/open", headers=_auth("token-support"))
    assert reopened.json()["status"] == "active"


def test_chat_listing(console):
    client, ids = console

    listed = client.get("/chats", headers=_auth("token-support"))
    denied = client.get("/chats", headers=_auth("token-moderator"))

    assert [chat["id"] for chat in listed.json()] == [ids["chat"]]
    assert denied.status_code == 403


def test_chat_paging_accepts_timestamp_without_timezone(console):
    client, ids = console

    response = client.get(f"/chats/{ids['chat']}", params={"before": "2030-01-01T00:00:00"}, headers=_auth("token-support"))

    assert response.status_code == 200
    assert [message["content"] for message in response.json()["messages"]] == ["Hello, my line is down"]


@pytest.mark.asyncio
async def test_storage_errors_map_to_service_unavailable():
    request = Request({"type": "http", "method": "GET", "path": "/tickets", "headers": [], "query_string": b""})

    response = await console_error_handler(request, StorageError("connection refused"))

    assert response.status_code == 503
    assert response.body == b'{"detail":"Storage is temporarily unavailable"}'
