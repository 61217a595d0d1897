from fastapi import APIRouter, Depends

from ispadmin.auth.permissions import Permission
from ispadmin.dependencies.auth import CurrentActor, permission_required

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/secure",
    summary="Permission protected endpoint",
    dependencies=[Depends(permission_required(Permission.TICKETS_READ))],
)
async def secure_ping(actor: CurrentActor) -> dict[str, str]:
    return {"status": "ok", "admin": actor.id}
