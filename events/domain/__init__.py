from events.domain.models import Event, Registration, User
from events.domain.value_objects import (
    CallerIdentity,
    Capacity,
    EventId,
    EventStatus,
    RegistrationId,
    RegistrationStatus,
    Role,
    UserId,
)

__all__ = [
    "Event",
    "Registration",
    "User",
    "EventId",
    "RegistrationId",
    "UserId",
    "Capacity",
    "EventStatus",
    "RegistrationStatus",
    "Role",
    "CallerIdentity",
]
