from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ispadmin.auth.gate import AuthorizationGate, require
from ispadmin.auth.permissions import Actor, Permission
from ispadmin.errors import ForbiddenError, UnauthenticatedError

bearer_scheme = HTTPBearer(auto_error=False)


async def get_gate(request: Request) -> AuthorizationGate:
    gate = getattr(request.app.state, "gate", None)
    if gate is None:
        raise HTTPException(status_code=503, detail="Authorization gate is not configured")
    return gate


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
) -> Actor:
    """Resolve the bearer token once per request and cache the actor."""

    cached = getattr(request.state, "actor", None)
    if isinstance(cached, Actor):
        return cached

    token = credentials.credentials if credentials is not None else None
    try:
        actor = await gate.resolve_actor(token)
    except UnauthenticatedError as exc:
        raise HTTPException(status_code=401, detail="Not authenticated") from exc
    request.state.actor = actor
    return actor


def permission_required(permission: Permission) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current actor holds ``permission``."""

    async def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        try:
            return require(actor, permission)
        except ForbiddenError as exc:
            raise HTTPException(status_code=403, detail="Not authorized") from exc

    return dependency


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
