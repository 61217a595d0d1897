"""Role and permission model for console operators."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class Role(str, Enum):
    """Supported operator roles."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    SUPPORT = "support"


class Permission(str, Enum):
    """Closed set of permissions checked by console entry points."""

    NEWS_READ = "news:read"
    NEWS_CREATE = "news:create"
    NEWS_UPDATE = "news:update"
    NEWS_DELETE = "news:delete"

    PAGES_READ = "pages:read"
    PAGES_CREATE = "pages:create"
    PAGES_UPDATE = "pages:update"
    PAGES_DELETE = "pages:delete"

    CATALOG_READ = "catalog:read"
    CATALOG_CREATE = "catalog:create"
    CATALOG_UPDATE = "catalog:update"
    CATALOG_DELETE = "catalog:delete"

    COVERAGE_READ = "coverage:read"
    COVERAGE_CREATE = "coverage:create"
    COVERAGE_UPDATE = "coverage:update"
    COVERAGE_DELETE = "coverage:delete"

    REQUESTS_READ = "requests:read"
    REQUESTS_UPDATE = "requests:update"

    CHAT_READ = "chat:read"
    CHAT_RESPOND = "chat:respond"

    TICKETS_READ = "tickets:read"
    TICKETS_RESPOND = "tickets:respond"
    TICKETS_CLOSE = "tickets:close"

    AI_READ = "ai:read"
    AI_MANAGE = "ai:manage"

    USERS_READ = "users:read"
    USERS_CREATE = "users:create"
    USERS_UPDATE = "users:update"
    USERS_MANAGE = "users:manage"

    ACCOUNTS_READ = "accounts:read"
    ACCOUNTS_CREATE = "accounts:create"
    ACCOUNTS_UPDATE = "accounts:update"
    ACCOUNTS_MANAGE = "accounts:manage"

    ADMINS_MANAGE = "admins:manage"


_CONTENT_PERMISSIONS = frozenset(
    {
        Permission.NEWS_READ,
        Permission.NEWS_CREATE,
        Permission.NEWS_UPDATE,
        Permission.NEWS_DELETE,
        Permission.PAGES_READ,
        Permission.PAGES_CREATE,
        Permission.PAGES_UPDATE,
        Permission.PAGES_DELETE,
        Permission.CATALOG_READ,
        Permission.CATALOG_CREATE,
        Permission.CATALOG_UPDATE,
        Permission.CATALOG_DELETE,
        Permission.COVERAGE_READ,
        Permission.COVERAGE_CREATE,
        Permission.COVERAGE_UPDATE,
        Permission.COVERAGE_DELETE,
    }
)

ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = MappingProxyType(
    {
        Role.ADMIN: frozenset(Permission),
        Role.MODERATOR: _CONTENT_PERMISSIONS
        | {
            Permission.REQUESTS_READ,
            Permission.REQUESTS_UPDATE,
            Permission.USERS_READ,
            Permission.USERS_UPDATE,
            Permission.ACCOUNTS_READ,
            Permission.ACCOUNTS_UPDATE,
        },
        Role.SUPPORT: frozenset(
            {
                Permission.NEWS_READ,
                Permission.NEWS_CREATE,
                Permission.NEWS_UPDATE,
                Permission.REQUESTS_READ,
                Permission.REQUESTS_UPDATE,
                Permission.CHAT_READ,
                Permission.CHAT_RESPOND,
                Permission.TICKETS_READ,
                Permission.TICKETS_RESPOND,
                Permission.TICKETS_CLOSE,
                Permission.USERS_READ,
                Permission.ACCOUNTS_READ,
            }
        ),
    }
)


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated operator resolved for the duration of one request."""

    id: str
    role: Role
    full_name: str = ""
    email: str = ""
    auth_user_id: str | None = None
    overrides: Mapping[Permission, bool] = field(default_factory=dict)


def parse_overrides(raw: Mapping[str, object] | None) -> dict[Permission, bool]:
    """Convert a stored ``{"tickets:close": false}`` map into typed overrides.

    Unknown permission keys and non-boolean values are ignored.
    """

    overrides: dict[Permission, bool] = {}
    for key, value in (raw or {}).items():
        if not isinstance(value, bool):
            continue
        try:
            overrides[Permission(key)] = value
        except ValueError:
            continue
    return overrides


def allowed(actor: Actor, permission: Permission) -> bool:
    """Return whether ``actor`` holds ``permission``.

    An explicit override wins; otherwise the role default applies.
    """

    override = actor.overrides.get(permission)
    if override is not None:
        return override
    return permission in ROLE_PERMISSIONS.get(actor.role, frozenset())


def effective_permissions(actor: Actor) -> frozenset[Permission]:
    """Return every permission the actor currently holds."""

    return frozenset(permission for permission in Permission if allowed(actor, permission))
