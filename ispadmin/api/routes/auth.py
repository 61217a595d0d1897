from fastapi import APIRouter

from ispadmin.api.schemas import CamelModel
from ispadmin.auth.permissions import Role, effective_permissions
from ispadmin.dependencies.auth import CurrentActor

router = APIRouter(prefix="/auth", tags=["auth"])


class CurrentAdminResponse(CamelModel):
    id: str
    email: str
    full_name: str
    role: Role
    permissions: list[str]


@router.get("/me", response_model=CurrentAdminResponse, summary="Current administrator and permissions")
async def me(actor: CurrentActor) -> CurrentAdminResponse:
    return CurrentAdminResponse(
        id=actor.id,
        email=actor.email,
        full_name=actor.full_name,
        role=actor.role,
        permissions=sorted(permission.value for permission in effective_permissions(actor)),
    )
