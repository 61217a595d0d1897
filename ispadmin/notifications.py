"""Best-effort post-commit notifications for lifecycle events."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """A committed ticket or chat change."""

    entity: str
    entity_id: str
    action: str
    actor_id: str | None
    payload: Mapping[str, Any] = field(default_factory=dict)


class EventNotifier(Protocol):
    async def notify(self, event: LifecycleEvent) -> None:
        ...


class LoggingNotifier:
    """Notifier that only writes events to the log."""

    async def notify(self, event: LifecycleEvent) -> None:
        logger.debug("event %s %s %s by %s", event.entity, event.entity_id, event.action, event.actor_id)


async def emit(notifier: EventNotifier | None, event: LifecycleEvent) -> None:
    """Deliver ``event`` and swallow delivery failures.

    Notification is optional side work; the state change it describes is
    already committed.
    """

    if notifier is None:
        return
    try:
        await notifier.notify(event)
    except Exception:
        logger.warning("Failed to deliver %s event for %s %s", event.action, event.entity, event.entity_id, exc_info=True)
