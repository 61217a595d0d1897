"""Live chat domain models and lifecycle engine."""

from .models import Attachment, Chat, ChatDetails, ChatMessage
from .service import ChatService
from .state import ChatStateMachine, ChatStatus, ReaderType, SenderType

__all__ = [
    "Attachment",
    "Chat",
    "ChatDetails",
    "ChatMessage",
    "ChatService",
    "ChatStateMachine",
    "ChatStatus",
    "ReaderType",
    "SenderType",
]
