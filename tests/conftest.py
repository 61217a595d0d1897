from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from ispadmin.auth.directory import actor_from_row
from ispadmin.auth.permissions import Actor
from ispadmin.chats.service import ChatService
from ispadmin.store.base import EntityKind
from ispadmin.store.memory import InMemoryEntityStore
from ispadmin.tickets.service import TicketService

ADMIN_ROWS = {
    "admin": {
        "id": "admin-1",
        "auth_user_id": "auth-admin",
        "email": "ada@example.net",
        "full_name": "Ada Admin",
        "role": "admin",
        "permissions": {},
        "status": "active",
    },
    "support": {
        "id": "support-1",
        "auth_user_id": "auth-support",
        "email": "sam@example.net",
        "full_name": "Sam Support",
        "role": "support",
        "permissions": {},
        "status": "active",
    },
    "support_b": {
        "id": "support-2",
        "auth_user_id": "auth-support-b",
        "email": "sid@example.net",
        "full_name": "Sid Support",
        "role": "support",
        "permissions": {},
        "status": "active",
    },
    "moderator": {
        "id": "moderator-1",
        "auth_user_id": "auth-moderator",
        "email": "mo@example.net",
        "full_name": "Mo Moderator",
        "role": "moderator",
        "permissions": {},
        "status": "active",
    },
    "no_close": {
        "id": "support-3",
        "auth_user_id": "auth-no-close",
        "email": "nc@example.net",
        "full_name": "Nic Noclose",
        "role": "support",
        "permissions": {"tickets:close": False},
        "status": "active",
    },
    "bot_keeper": {
        "id": "support-4",
        "auth_user_id": "auth-bot-keeper",
        "email": "bk@example.net",
        "full_name": "Bea Botkeeper",
        "role": "support",
        "permissions": {"ai:manage": True},
        "status": "active",
    },
    "disabled": {
        "id": "support-5",
        "auth_user_id": "auth-disabled",
        "email": "dd@example.net",
        "full_name": "Dee Disabled",
        "role": "support",
        "permissions": {},
        "status": "disabled",
    },
}


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest_asyncio.fixture
async def store(clock: TickingClock) -> InMemoryEntityStore:
    store = InMemoryEntityStore(clock=clock)
    for row in ADMIN_ROWS.values():
        await store.insert(EntityKind.ADMIN, row)
    return store


@pytest.fixture
def actors() -> dict[str, Actor]:
    return {key: actor_from_row(row) for key, row in ADMIN_ROWS.items()}


@pytest.fixture
def ticket_service(store: InMemoryEntityStore, clock: TickingClock) -> TicketService:
    return TicketService(store, clock=clock)


@pytest.fixture
def chat_service(store: InMemoryEntityStore, clock: TickingClock) -> ChatService:
    return ChatService(store, clock=clock)


@pytest.fixture
def admin_rows() -> dict[str, dict]:
    return ADMIN_ROWS
