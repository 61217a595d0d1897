from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from ispadmin.auth.permissions import Actor, Permission
from ispadmin.chats.service import ChatService
from ispadmin.tickets.service import TicketService

from .auth import permission_required

require_tickets_read = permission_required(Permission.TICKETS_READ)
require_chat_read = permission_required(Permission.CHAT_READ)

TicketReader = Annotated[Actor, Depends(require_tickets_read)]
ChatReader = Annotated[Actor, Depends(require_chat_read)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_chat_service(request: Request) -> ChatService:
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Chat service is not configured")
    return service


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]
