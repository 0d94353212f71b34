"""Event status state machine.

DRAFT -> PUBLISHED | CANCELLED
PUBLISHED -> CANCELLED | COMPLETED
CANCELLED, COMPLETED are terminal.
"""

from dataclasses import replace
from datetime import datetime

from events.domain.errors import InvalidStateTransitionError
from events.domain.models import Event
from events.domain.value_objects import EventStatus

TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.DRAFT: frozenset({EventStatus.PUBLISHED, EventStatus.CANCELLED}),
    EventStatus.PUBLISHED: frozenset({EventStatus.CANCELLED, EventStatus.COMPLETED}),
    EventStatus.CANCELLED: frozenset(),
    EventStatus.COMPLETED: frozenset(),
}


class EventLifecycle:
    """Validates and applies event status transitions."""

    @staticmethod
    def can_transition(current: EventStatus, target: EventStatus) -> bool:
        return target in TRANSITIONS[current]

    @staticmethod
    def allowed_transitions(current: EventStatus) -> frozenset[EventStatus]:
        return TRANSITIONS[current]

    @staticmethod
    def is_terminal(status: EventStatus) -> bool:
        return not TRANSITIONS[status]

    @staticmethod
    def accepts_registrations(status: EventStatus) -> bool:
        return status is EventStatus.PUBLISHED

    @staticmethod
    def is_editable(status: EventStatus) -> bool:
        return status in (EventStatus.DRAFT, EventStatus.PUBLISHED)

    @staticmethod
    def is_deletable(status: EventStatus) -> bool:
        return status is EventStatus.DRAFT

    @classmethod
    def transition(cls, event: Event, target: EventStatus, now: datetime) -> Event:
        """Return ``event`` moved to ``target``.

        Raises:
            InvalidStateTransitionError: If the table forbids the move, or the
                target is PUBLISHED and the event has already started.
        """
        if not cls.can_transition(event.status, target):
            raise InvalidStateTransitionError(
                f"Cannot move event from {event.status.value} to {target.value}"
            )
        if target is EventStatus.PUBLISHED and event.has_started(now):
            raise InvalidStateTransitionError(
                "Cannot publish an event that has already started"
            )
        return replace(event, status=target, updated_at=now)

    @classmethod
    def ensure_editable(cls, event: Event) -> None:
        if not cls.is_editable(event.status):
            raise InvalidStateTransitionError(
                f"Cannot edit event in {event.status.value} status"
            )

    @classmethod
    def ensure_deletable(cls, event: Event) -> None:
        if not cls.is_deletable(event.status):
            raise InvalidStateTransitionError(
                f"Cannot delete event in {event.status.value} status. Cancel it instead."
            )
