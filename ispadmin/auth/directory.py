from __future__ import annotations

import logging
from typing import Any, Mapping

from ispadmin.errors import NotFoundError
from ispadmin.store.base import EntityKind, EntityStore

from .permissions import Actor, Role, parse_overrides

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "active"


def actor_from_row(row: Mapping[str, Any]) -> Actor | None:
    """Build an :class:`Actor` from an ``admins`` row, ``None`` for unknown roles."""

    try:
        role = Role(str(row["role"]))
    except ValueError:
        logger.warning("Admin %s has unknown role %r", row.get("id"), row.get("role"))
        return None
    return Actor(
        id=str(row["id"]),
        role=role,
        full_name=str(row.get("full_name") or ""),
        email=str(row.get("email") or ""),
        auth_user_id=row.get("auth_user_id"),
        overrides=parse_overrides(row.get("permissions")),
    )


class AdminDirectory:
    """Lookup of operator accounts stored in the ``admins`` collection."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    def within(self, store: EntityStore) -> "AdminDirectory":
        return AdminDirectory(store)

    async def by_auth_user(self, auth_user_id: str) -> Actor | None:
        row = await self._store.find_one(EntityKind.ADMIN, auth_user_id=auth_user_id, status=ACTIVE_STATUS)
        if row is None:
            return None
        return actor_from_row(row)

    async def require_active(self, admin_id: str) -> Mapping[str, Any]:
        """Return the admin row for an assignment target or raise ``NotFoundError``."""

        row = await self._store.find_one(EntityKind.ADMIN, id=str(admin_id), status=ACTIVE_STATUS)
        if row is None:
            raise NotFoundError("Assigned administrator not found")
        return row

    async def display_name(self, admin_id: str | None) -> str | None:
        """Best-effort name for a possibly stale admin reference."""

        if admin_id is None:
            return None
        row = await self._store.find_one(EntityKind.ADMIN, id=str(admin_id))
        if row is None:
            return str(admin_id)
        return str(row.get("full_name") or admin_id)
