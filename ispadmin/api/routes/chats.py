from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, status
from pydantic import Field

from ispadmin.api.schemas import CamelModel
from ispadmin.chats.models import Attachment, ChatDetails, ChatMessage
from ispadmin.chats.state import ChatStatus, ReaderType, SenderType
from ispadmin.dependencies.auth import CurrentActor
from ispadmin.dependencies.services import ChatReader, ChatServiceDep

router = APIRouter(prefix="/chats", tags=["chats"])


class ChatAssignRequest(CamelModel):
    admin_id: str | None = None


class ChatMessageRequest(CamelModel):
    content: str | None = Field(default=None, max_length=10_000)
    attachment_url: str | None = None
    attachment_name: str | None = None
    attachment_size: int | None = None
    content_type: str = "file"

    def attachment(self) -> Attachment | None:
        if not self.attachment_url:
            return None
        return Attachment(
            url=self.attachment_url,
            name=self.attachment_name,
            size=self.attachment_size,
            content_type=self.content_type,
        )


class ChatMessageEditRequest(CamelModel):
    content: str = Field(..., max_length=10_000)


class ChatResponse(CamelModel):
    id: str
    status: ChatStatus
    assigned_admin_id: str | None
    user_id: str | None
    user_name: str | None
    subject: str | None
    unread_admin_count: int
    unread_user_count: int
    created_at: datetime
    last_message_at: datetime | None
    closed_at: datetime | None


class ChatMessageResponse(CamelModel):
    id: str
    chat_id: str
    sender_type: SenderType
    sender_id: str | None
    sender_name: str | None
    content: str
    content_type: str
    attachment_url: str | None
    attachment_name: str | None
    attachment_size: int | None
    system_action: str | None
    is_read: bool
    read_at: datetime | None
    edited_at: datetime | None
    created_at: datetime


class ChatDetailsResponse(CamelModel):
    chat: ChatResponse
    assigned_admin_name: str | None
    messages: list[ChatMessageResponse]
    has_more: bool


class MarkReadResponse(CamelModel):
    marked: int


def _to_message(message: ChatMessage) -> ChatMessageResponse:
    return ChatMessageResponse.model_validate(message)


def _to_details(details: ChatDetails) -> ChatDetailsResponse:
    return ChatDetailsResponse.model_validate(details)


@router.get("", response_model=list[ChatResponse])
async def list_chats(
    service: ChatServiceDep,
    actor: ChatReader,
    status_filter: ChatStatus | None = Query(default=None, alias="status"),
    assigned_to_me: bool = Query(default=False, alias="assignedToMe"),
) -> list[ChatResponse]:
    chats = await service.list_chats(actor, status=status_filter, assigned_to_me=assigned_to_me)
    return [ChatResponse.model_validate(chat) for chat in chats]


@router.get("/{chat_id}", response_model=ChatDetailsResponse)
async def get_chat(
    chat_id: str,
    service: ChatServiceDep,
    actor: CurrentActor,
    limit: int = Query(default=50, ge=1),
    before: datetime | None = Query(default=None),
) -> ChatDetailsResponse:
    return _to_details(await service.get_chat(actor, chat_id, limit=limit, before=before))


@router.post("/{chat_id}/assign", response_model=ChatResponse)
async def assign_chat(
    chat_id: str,
    payload: ChatAssignRequest,
    service: ChatServiceDep,
    actor: CurrentActor,
) -> ChatResponse:
    return ChatResponse.model_validate(await service.assign(actor, chat_id, payload.admin_id))


@router.post("/{chat_id}/messages", response_model=ChatMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_chat_message(
    chat_id: str,
    payload: ChatMessageRequest,
    service: ChatServiceDep,
    actor: CurrentActor,
) -> ChatMessageResponse:
    message = await service.send_message(actor, chat_id, payload.content, payload.attachment())
    return _to_message(message)


@router.patch("/{chat_id}/messages/{message_id}", response_model=ChatMessageResponse)
async def edit_chat_message(
    chat_id: str,
    message_id: str,
    payload: ChatMessageEditRequest,
    service: ChatServiceDep,
    actor: CurrentActor,
) -> ChatMessageResponse:
    message = await service.edit_message(actor, message_id, payload.content, chat_id=chat_id)
    return _to_message(message)


@router.delete("/{chat_id}/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat_message(
    chat_id: str,
    message_id: str,
    service: ChatServiceDep,
    actor: CurrentActor,
) -> None:
    await service.delete_message(actor, message_id, chat_id=chat_id)


@router.post("/{chat_id}/close", response_model=ChatResponse)
async def close_chat(chat_id: str, service: ChatServiceDep, actor: CurrentActor) -> ChatResponse:
    return ChatResponse.model_validate(await service.close(actor, chat_id))


@router.post("/{chat_id}/open", response_model=ChatResponse)
async def open_chat(chat_id: str, service: ChatServiceDep, actor: CurrentActor) -> ChatResponse:
    return ChatResponse.model_validate(await service.open(actor, chat_id))


@router.post("/{chat_id}/read", response_model=MarkReadResponse)
async def mark_chat_read(chat_id: str, service: ChatServiceDep, actor: ChatReader) -> MarkReadResponse:
    marked = await service.mark_read(chat_id, ReaderType.ADMIN)
    return MarkReadResponse(marked=marked)
