"""Permission model, admin directory and authorization gate."""

from .directory import AdminDirectory, actor_from_row
from .gate import AuthorizationGate, require
from .permissions import ROLE_PERMISSIONS, Actor, Permission, Role, allowed, effective_permissions
from .sessions import SessionResolver, StaticTokenSessionResolver, StoreSessionResolver

__all__ = [
    "ROLE_PERMISSIONS",
    "Actor",
    "AdminDirectory",
    "AuthorizationGate",
    "Permission",
    "Role",
    "SessionResolver",
    "StaticTokenSessionResolver",
    "StoreSessionResolver",
    "actor_from_row",
    "allowed",
    "effective_permissions",
    "require",
]
