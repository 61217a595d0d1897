from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query, Response, status
from pydantic import Field

from ispadmin.api.schemas import CamelModel
from ispadmin.dependencies.auth import CurrentActor
from ispadmin.dependencies.services import TicketReader, TicketServiceDep
from ispadmin.tickets.models import TicketComment, TicketDetails
from ispadmin.tickets.state import TicketPriority, TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketStatusChangeRequest(CamelModel):
    status: TicketStatus


class TicketPriorityChangeRequest(CamelModel):
    priority: TicketPriority


class TicketAssignRequest(CamelModel):
    admin_id: str | None = None


class AttachmentModel(CamelModel):
    url: str
    name: str
    size: int | None = None
    type: str | None = None


class TicketCommentRequest(CamelModel):
    content: str = Field(..., max_length=10_000)
    is_internal: bool = False
    is_solution: bool = False
    attachments: list[AttachmentModel] = Field(default_factory=list)


class TicketResponse(CamelModel):
    id: str
    number: int | None
    subject: str
    description: str
    category: str | None
    status: TicketStatus
    priority: TicketPriority
    assigned_admin_id: str | None
    user_id: str | None
    user_name: str | None
    user_email: str | None
    created_at: datetime
    updated_at: datetime | None
    first_response_at: datetime | None
    resolved_at: datetime | None
    closed_at: datetime | None


class TicketCommentResponse(CamelModel):
    id: str
    ticket_id: str
    author_type: str
    author_id: str | None
    author_name: str | None
    content: str
    is_internal: bool
    is_solution: bool
    attachments: list[dict[str, Any]]
    created_at: datetime
    edited_at: datetime | None


class TicketHistoryResponse(CamelModel):
    id: str
    actor_name: str
    action: str
    old_value: str | None
    new_value: str | None
    created_at: datetime


class TicketDetailsResponse(CamelModel):
    ticket: TicketResponse
    assigned_admin_name: str | None
    comments: list[TicketCommentResponse]
    history: list[TicketHistoryResponse]


def _to_details(details: TicketDetails) -> TicketDetailsResponse:
    return TicketDetailsResponse.model_validate(details)


def _to_comment(comment: TicketComment) -> TicketCommentResponse:
    return TicketCommentResponse.model_validate(comment)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    actor: TicketReader,
    response: Response,
    status_filter: str | None = Query(default=None, alias="status"),
    priority: TicketPriority | None = Query(default=None),
    assigned_to_me: bool = Query(default=False, alias="assignedToMe"),
    limit: int = Query(default=50, ge=1),
    offset: int = Query(default=0, ge=0),
) -> list[TicketResponse]:
    tickets = await service.list_tickets(
        actor,
        status=status_filter,
        priority=priority,
        assigned_to_me=assigned_to_me,
        limit=limit,
        offset=offset,
    )
    total = await service.count_tickets(
        actor, status=status_filter, priority=priority, assigned_to_me=assigned_to_me
    )
    response.headers["X-Total-Count"] = str(total)
    return [TicketResponse.model_validate(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketDetailsResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, actor: CurrentActor) -> TicketDetailsResponse:
    return _to_details(await service.get_ticket(actor, ticket_id))


@router.put("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    ticket = await service.set_status(actor, ticket_id, payload.status)
    return TicketResponse.model_validate(ticket)


@router.put("/{ticket_id}/priority", response_model=TicketResponse)
async def change_ticket_priority(
    ticket_id: str,
    payload: TicketPriorityChangeRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    ticket = await service.set_priority(actor, ticket_id, payload.priority)
    return TicketResponse.model_validate(ticket)


@router.post("/{ticket_id}/assign", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: str,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    ticket = await service.assign(actor, ticket_id, payload.admin_id)
    return TicketResponse.model_validate(ticket)


@router.post("/{ticket_id}/comments", response_model=TicketCommentResponse, status_code=status.HTTP_201_CREATED)
async def add_ticket_comment(
    ticket_id: str,
    payload: TicketCommentRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketCommentResponse:
    comment = await service.add_comment(
        actor,
        ticket_id,
        payload.content,
        is_internal=payload.is_internal,
        is_solution=payload.is_solution,
        attachments=[item.model_dump(exclude_none=True) for item in payload.attachments],
    )
    return _to_comment(comment)
