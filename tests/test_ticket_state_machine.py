import logging
from datetime import datetime, timezone

import pytest

from ispadmin.errors import InvalidTransitionError
from ispadmin.tickets.models import Ticket
from ispadmin.tickets.state import TicketPriority, TicketStateMachine, TicketStatus


def _ticket(status: TicketStatus, **fields) -> Ticket:
    return Ticket(
        id="t-1",
        subject="No internet",
        description="Router blinks red",
        status=status,
        priority=TicketPriority.NORMAL,
        assigned_admin_id=None,
        version=1,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        **fields,
    )


def test_ticket_state_machine_allows_expected_transitions():
    assert TicketStateMachine.can_transition(TicketStatus.NEW, TicketStatus.OPEN)
    assert TicketStateMachine.can_transition(TicketStatus.OPEN, TicketStatus.PENDING)
    assert TicketStateMachine.can_transition(TicketStatus.PENDING, TicketStatus.OPEN)
    assert TicketStateMachine.can_transition(TicketStatus.OPEN, TicketStatus.RESOLVED)
    assert TicketStateMachine.can_transition(TicketStatus.RESOLVED, TicketStatus.OPEN)
    assert TicketStateMachine.can_transition(TicketStatus.NEW, TicketStatus.CLOSED)
    assert TicketStateMachine.can_transition(TicketStatus.CLOSED, TicketStatus.CLOSED)


def test_ticket_state_machine_flags_off_graph_transitions():
    assert not TicketStateMachine.can_transition(TicketStatus.CLOSED, TicketStatus.OPEN)
    assert not TicketStateMachine.can_transition(TicketStatus.NEW, TicketStatus.RESOLVED)


def test_strict_machine_rejects_off_graph_transition():
    machine = TicketStateMachine(strict=True)
    with pytest.raises(InvalidTransitionError):
        machine.check(TicketStatus.CLOSED, TicketStatus.OPEN)


def test_permissive_machine_logs_off_graph_transition(caplog):
    machine = TicketStateMachine()
    with caplog.at_level(logging.WARNING, logger="ispadmin.tickets.state"):
        machine.check(TicketStatus.CLOSED, TicketStatus.OPEN)
    assert "closed -> open" in caplog.text


def test_patch_stamps_resolved_at_only_once():
    machine = TicketStateMachine()
    first = datetime(2024, 1, 2, tzinfo=timezone.utc)
    later = datetime(2024, 1, 5, tzinfo=timezone.utc)

    patch = machine.patch_for(_ticket(TicketStatus.OPEN), TicketStatus.RESOLVED, first)
    assert patch == {"status": "resolved", "updated_at": first, "resolved_at": first}

    repeat = machine.patch_for(_ticket(TicketStatus.OPEN, resolved_at=first), TicketStatus.RESOLVED, later)
    assert "resolved_at" not in repeat


def test_patch_stamps_closed_at():
    now = datetime(2024, 1, 3, tzinfo=timezone.utc)
    patch = TicketStateMachine().patch_for(_ticket(TicketStatus.OPEN), TicketStatus.CLOSED, now)
    assert patch["closed_at"] == now
    assert patch["status"] == "closed"
