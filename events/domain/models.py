"""Domain models representing persisted state.

These are pure domain objects with no API input rules.
Django ORM models are in events/models.py (persistence layer).
"""

from dataclasses import dataclass
from datetime import datetime

from events.domain.value_objects import (
    Capacity,
    EventId,
    EventStatus,
    RegistrationId,
    RegistrationStatus,
    Role,
    UserId,
)


@dataclass(frozen=True)
class User:
    """Domain representation of a User."""

    id: UserId
    email: str
    name: str
    role: Role = Role.USER


@dataclass(frozen=True)
class Event:
    """Domain representation of an Event."""

    id: EventId
    title: str
    description: str
    location: str
    start_date: datetime
    end_date: datetime
    capacity: Capacity
    status: EventStatus
    organizer_id: UserId
    created_at: datetime
    updated_at: datetime

    def has_started(self, now: datetime) -> bool:
        return self.start_date <= now


@dataclass(frozen=True)
class Registration:
    """Domain representation of a Registration."""

    id: RegistrationId
    user_id: UserId
    event_id: EventId
    status: RegistrationStatus
    ticket_code: str
    registered_at: datetime
    cancelled_at: datetime | None = None
    checked_in_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is RegistrationStatus.CONFIRMED
