from __future__ import annotations

import logging

from ispadmin.errors import ForbiddenError, UnauthenticatedError

from .directory import AdminDirectory
from .permissions import Actor, Permission, allowed
from .sessions import SessionResolver

logger = logging.getLogger(__name__)


def require(actor: Actor, permission: Permission) -> Actor:
    """Return ``actor`` if it holds ``permission``, raise ``ForbiddenError`` otherwise.

    The raised error never names the missing permission; it is only logged.
    """

    if not allowed(actor, permission):
        logger.info("Actor %s (%s) denied %s", actor.id, actor.role.value, permission.value)
        raise ForbiddenError()
    return actor


class AuthorizationGate:
    """Resolve session tokens to actors and guard engine entry points."""

    def __init__(self, resolver: SessionResolver, directory: AdminDirectory) -> None:
        self._resolver = resolver
        self._directory = directory

    async def resolve_actor(self, token: str | None) -> Actor:
        if not token:
            raise UnauthenticatedError()

        auth_user_id = await self._resolver.resolve(token)
        actor = await self._directory.by_auth_user(auth_user_id)
        if actor is None:
            logger.info("Session for %s has no active admin account", auth_user_id)
            raise UnauthenticatedError()
        return actor

    @staticmethod
    def require(actor: Actor, permission: Permission) -> Actor:
        return require(actor, permission)
