"""Error taxonomy shared by the authorization gate, engines and stores."""

from __future__ import annotations


class ConsoleError(RuntimeError):
    """Base error for every failure raised by the support-workflow core."""


class UnauthenticatedError(ConsoleError):
    """Raised when a request carries no valid admin session."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class ForbiddenError(ConsoleError):
    """Raised when an authenticated actor may not perform an action.

    The message is intentionally generic so callers never learn which
    permission was missing.
    """

    def __init__(self, message: str = "Not authorized") -> None:
        super().__init__(message)


class NotFoundError(ConsoleError):
    """Raised when an entity or a referenced entity does not exist."""


class InvalidStateError(ConsoleError):
    """Raised when an operation is not valid for the entity's current status."""


class InvalidTransitionError(InvalidStateError):
    """Raised by strict state machines for transitions outside the graph."""


class TicketClosedError(InvalidStateError):
    """Raised when writing to a closed ticket."""


class ChatClosedError(InvalidStateError):
    """Raised when writing to a closed chat."""


class EmptyInputError(ConsoleError):
    """Raised when required content is missing or blank."""


class ConflictError(ConsoleError):
    """Raised when a conditional write lost a race against another writer."""


class StorageError(ConsoleError):
    """Raised when the backing store fails."""
