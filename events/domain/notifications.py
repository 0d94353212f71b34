"""Domain notifications handed to the notification sink.

A closed set of frozen payloads. Each carries only the fields its consumers
need, plus an id and timestamp so downstream workers can de-duplicate.
"""

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID, uuid4

from events.domain.models import Event, Registration, User


class NotificationType(str, Enum):
    REGISTRATION_CONFIRMED = "REGISTRATION_CONFIRMED"
    REGISTRATION_CANCELLED = "REGISTRATION_CANCELLED"
    EVENT_PUBLISHED = "EVENT_PUBLISHED"
    EVENT_CANCELLED = "EVENT_CANCELLED"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    return value


@dataclass(frozen=True, kw_only=True)
class Notification:
    type: ClassVar[NotificationType]

    notification_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        payload = {f.name: _jsonable(getattr(self, f.name)) for f in fields(self)}
        payload["type"] = self.type.value
        return payload


@dataclass(frozen=True, kw_only=True)
class RegistrationConfirmed(Notification):
    type: ClassVar[NotificationType] = NotificationType.REGISTRATION_CONFIRMED

    registration_id: UUID
    user_id: UUID
    user_email: str
    user_name: str
    event_id: UUID
    event_title: str
    event_location: str
    event_start_date: datetime
    event_end_date: datetime
    ticket_code: str
    current_participants: int

    @classmethod
    def build(
        cls, registration: Registration, user: User, event: Event, current_participants: int
    ) -> "RegistrationConfirmed":
        return cls(
            registration_id=registration.id.value,
            user_id=user.id.value,
            user_email=user.email,
            user_name=user.name,
            event_id=event.id.value,
            event_title=event.title,
            event_location=event.location,
            event_start_date=event.start_date,
            event_end_date=event.end_date,
            ticket_code=registration.ticket_code,
            current_participants=current_participants,
        )


@dataclass(frozen=True, kw_only=True)
class RegistrationCancelled(Notification):
    type: ClassVar[NotificationType] = NotificationType.REGISTRATION_CANCELLED

    registration_id: UUID
    user_id: UUID
    user_email: str
    user_name: str
    event_id: UUID
    event_title: str
    event_location: str
    event_start_date: datetime
    event_end_date: datetime
    ticket_code: str
    cancelled_at: datetime | None
    current_participants: int

    @classmethod
    def build(
        cls, registration: Registration, user: User, event: Event, current_participants: int
    ) -> "RegistrationCancelled":
        return cls(
            registration_id=registration.id.value,
            user_id=user.id.value,
            user_email=user.email,
            user_name=user.name,
            event_id=event.id.value,
            event_title=event.title,
            event_location=event.location,
            event_start_date=event.start_date,
            event_end_date=event.end_date,
            ticket_code=registration.ticket_code,
            cancelled_at=registration.cancelled_at,
            current_participants=current_participants,
        )


@dataclass(frozen=True, kw_only=True)
class EventPublished(Notification):
    type: ClassVar[NotificationType] = NotificationType.EVENT_PUBLISHED

    event_id: UUID
    event_title: str
    event_description: str
    event_location: str
    start_date: datetime
    end_date: datetime
    capacity: int
    organizer_id: UUID
    organizer_name: str
    organizer_email: str

    @classmethod
    def build(cls, event: Event, organizer: User) -> "EventPublished":
        return cls(
            event_id=event.id.value,
            event_title=event.title,
            event_description=event.description,
            event_location=event.location,
            start_date=event.start_date,
            end_date=event.end_date,
            capacity=event.capacity.value,
            organizer_id=organizer.id.value,
            organizer_name=organizer.name,
            organizer_email=organizer.email,
        )


@dataclass(frozen=True, kw_only=True)
class EventCancelled(Notification):
    type: ClassVar[NotificationType] = NotificationType.EVENT_CANCELLED

    event_id: UUID
    event_title: str
    original_start_date: datetime
    organizer_id: UUID
    organizer_email: str
    affected_registrations: int

    @classmethod
    def build(cls, event: Event, organizer: User, affected_registrations: int) -> "EventCancelled":
        return cls(
            event_id=event.id.value,
            event_title=event.title,
            original_start_date=event.start_date,
            organizer_id=organizer.id.value,
            organizer_email=organizer.email,
            affected_registrations=affected_registrations,
        )


DomainNotification = RegistrationConfirmed | RegistrationCancelled | EventPublished | EventCancelled
