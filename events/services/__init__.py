from events.services.capacity_guard import CapacityGuard
from events.services.event_service import EventService
from events.services.notifier import LoggingNotificationSink, NotificationSink, Notifier
from events.services.registration_service import RegistrationService
from events.services.ticket_service import TicketService, ValidationOutcome, ValidationResult

__all__ = [
    "CapacityGuard",
    "EventService",
    "RegistrationService",
    "TicketService",
    "ValidationOutcome",
    "ValidationResult",
    "NotificationSink",
    "LoggingNotificationSink",
    "Notifier",
]
