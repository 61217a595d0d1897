"""Session token resolution."""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Protocol

from ispadmin.errors import UnauthenticatedError
from ispadmin.store.base import EntityKind, EntityStore


class SessionResolver(Protocol):
    async def resolve(self, token: str) -> str:
        """Return the external auth user id owning ``token``."""
        ...


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class StaticTokenSessionResolver:
    """Resolve a fixed token map, for local development and tests."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    async def resolve(self, token: str) -> str:
        try:
            return self._tokens[token]
        except KeyError:
            raise UnauthenticatedError() from None


class StoreSessionResolver:
    """Resolve tokens against hashed rows in ``admin_sessions``."""

    def __init__(
        self,
        store: EntityStore,
        *,
        ttl: timedelta = timedelta(hours=12),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def issue(self, auth_user_id: str) -> str:
        """Create a session for ``auth_user_id`` and return the raw token."""

        token = secrets.token_urlsafe(32)
        await self._store.insert(
            EntityKind.SESSION,
            {
                "token_hash": hash_token(token),
                "auth_user_id": auth_user_id,
                "expires_at": self._clock() + self._ttl,
            },
        )
        return token

    async def resolve(self, token: str) -> str:
        row = await self._store.find_one(EntityKind.SESSION, token_hash=hash_token(token))
        if row is None:
            raise UnauthenticatedError()
        expires_at = row.get("expires_at")
        if expires_at is not None and expires_at <= self._clock():
            raise UnauthenticatedError("Session expired")
        return str(row["auth_user_id"])

    async def revoke(self, token: str) -> None:
        row = await self._store.find_one(EntityKind.SESSION, token_hash=hash_token(token))
        if row is not None:
            await self._store.delete(EntityKind.SESSION, row["id"])
