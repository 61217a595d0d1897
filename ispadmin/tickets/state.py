from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

from ispadmin.errors import InvalidTransitionError

if TYPE_CHECKING:
    from .models import Ticket

logger = logging.getLogger(__name__)


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    NEW = "new"
    OPEN = "open"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


STATUS_CHANGE_ACTION = "status_change"
PRIORITY_CHANGE_ACTION = "priority_change"
ASSIGNED_ACTION = "assigned"
UNASSIGNED_ACTION = "unassigned"


class TicketStateMachine:
    """Validate ticket lifecycle transitions and derive their side effects.

    Any status may be closed administratively, and ``pending``/``resolved``
    tickets may be reopened. When ``strict`` is false, transitions outside
    this graph are accepted and logged as warnings.
    """

    _TRANSITIONS: Mapping[TicketStatus, frozenset[TicketStatus]] = {
        TicketStatus.NEW: frozenset({TicketStatus.OPEN, TicketStatus.CLOSED}),
        TicketStatus.OPEN: frozenset({TicketStatus.PENDING, TicketStatus.RESOLVED, TicketStatus.CLOSED}),
        TicketStatus.PENDING: frozenset({TicketStatus.OPEN, TicketStatus.CLOSED}),
        TicketStatus.RESOLVED: frozenset({TicketStatus.OPEN, TicketStatus.CLOSED}),
        TicketStatus.CLOSED: frozenset(),
    }

    def __init__(self, *, strict: bool = False) -> None:
        self.strict = strict

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.NEW

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        if current == new:
            return True
        return new in cls._TRANSITIONS.get(current, frozenset())

    def check(self, current: TicketStatus, new: TicketStatus) -> None:
        if self.can_transition(current, new):
            return
        if self.strict:
            raise InvalidTransitionError(f"Cannot change ticket status from {current.value} to {new.value}")
        logger.warning("Off-graph ticket status transition %s -> %s accepted", current.value, new.value)

    def patch_for(self, ticket: "Ticket", new: TicketStatus, now: datetime) -> dict[str, Any]:
        """Return the field updates for moving ``ticket`` into ``new``."""

        patch: dict[str, Any] = {"status": new.value, "updated_at": now}
        if new is TicketStatus.RESOLVED and ticket.resolved_at is None:
            patch["resolved_at"] = now
        if new is TicketStatus.CLOSED:
            patch["closed_at"] = now
        return patch
