"""Support ticket domain models and lifecycle engine."""

from .models import CommentAudience, Ticket, TicketComment, TicketDetails
from .service import TicketService, status_filter
from .state import TicketPriority, TicketStateMachine, TicketStatus

__all__ = [
    "CommentAudience",
    "Ticket",
    "TicketComment",
    "TicketDetails",
    "TicketPriority",
    "TicketService",
    "TicketStateMachine",
    "TicketStatus",
    "status_filter",
]
