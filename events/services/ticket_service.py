"""Ticket service - check-in at the door and ticket lookup.

Validation is idempotent: scanning a ticket twice reports ``ALREADY_USED``
with the original check-in time instead of failing. Scans of one ticket are
serialized in-process and run under a row lock on the registration; the
stamp itself is a conditional update, so of two simultaneous scans exactly
one sees ``SUCCESS`` even across processes.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog
from django.conf import settings
from django.utils import timezone

from events.domain import CallerIdentity, EventStatus, Registration, RegistrationStatus
from events.domain.errors import AccessDeniedError, ContentionError, NotFoundError
from events.domain.registration_lifecycle import RegistrationLifecycle
from events.locks import LockRegistry, hold
from events.services.boundary import returns_result
from events.stores.interfaces import Store

logger = structlog.get_logger(__name__)

_registry = LockRegistry()


class ValidationOutcome(str, Enum):
    SUCCESS = "success"
    ALREADY_USED = "already_used"
    INVALID = "invalid"


@dataclass(frozen=True)
class ValidationResult:
    """What the door scanner shows for one scan."""

    outcome: ValidationOutcome
    message: str
    ticket_code: str
    user_name: str | None = None
    user_email: str | None = None
    event_title: str | None = None
    checked_in_at: datetime | None = None

    @property
    def valid(self) -> bool:
        return self.outcome is ValidationOutcome.SUCCESS

    @classmethod
    def invalid(cls, ticket_code: str, message: str) -> "ValidationResult":
        return cls(outcome=ValidationOutcome.INVALID, message=message, ticket_code=ticket_code)


class TicketService:
    """Service for ticket validation and lookup."""

    def __init__(
        self,
        store: Store,
        timeout: float | None = None,
        registry: LockRegistry | None = None,
    ) -> None:
        self._store = store
        self._timeout = settings.REGISTRATION_LOCK_TIMEOUT if timeout is None else timeout
        self._registry = registry or _registry

    @returns_result
    def validate(self, ticket_code: str) -> ValidationResult:
        """Check a ticket in.

        Never fails for business reasons: unknown, cancelled or otherwise
        unusable tickets come back as ``INVALID`` inside a ``Success``.
        """
        deadline = time.monotonic() + self._timeout
        with hold(self._registry, ("ticket", ticket_code), self._timeout), self._store.atomic():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ContentionError(self._timeout)
            registration = self._store.get_registration_by_ticket_code_for_update(
                ticket_code, timeout=remaining
            )
            if registration is None:
                result = ValidationResult.invalid(ticket_code, "Ticket not found. Invalid ticket code.")
            else:
                result = self._check_in(registration)
        logger.info(
            "ticket_scanned",
            ticket_code=ticket_code,
            outcome=result.outcome.value,
        )
        return result

    @returns_result
    def get_ticket(self, ticket_code: str, caller: CallerIdentity) -> Registration:
        """Return a ticket visible to its holder, the event organizer or an admin."""
        registration = self._store.get_registration_by_ticket_code(ticket_code)
        if registration is None:
            raise NotFoundError("Ticket", ticket_code)
        holder = self._store.get_user(registration.user_id)
        event = self._store.get_event(registration.event_id)
        allowed = set()
        if holder is not None:
            allowed.add(holder.email.lower())
        if event is not None:
            organizer = self._store.get_user(event.organizer_id)
            if organizer is not None:
                allowed.add(organizer.email.lower())
        if caller.email.lower() not in allowed and not caller.is_admin:
            raise AccessDeniedError("You don't have permission to view this ticket")
        return registration

    def _check_in(self, registration: Registration) -> ValidationResult:
        code = registration.ticket_code
        if registration.status is RegistrationStatus.CANCELLED:
            return ValidationResult.invalid(code, "This registration has been cancelled.")
        if registration.status is not RegistrationStatus.CONFIRMED:
            return ValidationResult.invalid(
                code, f"This registration is marked {registration.status.value}."
            )

        event = self._store.get_event(registration.event_id)
        if event is None or event.status is EventStatus.CANCELLED:
            return ValidationResult.invalid(code, "This event has been cancelled.")

        user = self._store.get_user(registration.user_id)
        user_name = user.name if user else None
        user_email = user.email if user else None

        if registration.checked_in_at is not None:
            return self._already_used(registration, user_name, user_email, event.title)

        registration = RegistrationLifecycle.check_in(registration, timezone.now())
        if not self._store.mark_checked_in(registration.id, registration.checked_in_at):
            # Another scan stamped first; report its time.
            registration = self._store.get_registration(registration.id)
            return self._already_used(registration, user_name, user_email, event.title)

        return ValidationResult(
            outcome=ValidationOutcome.SUCCESS,
            message="Ticket validated successfully. Welcome!",
            ticket_code=code,
            user_name=user_name,
            user_email=user_email,
            event_title=event.title,
            checked_in_at=registration.checked_in_at,
        )

    @staticmethod
    def _already_used(
        registration: Registration, user_name: str | None, user_email: str | None, event_title: str
    ) -> ValidationResult:
        return ValidationResult(
            outcome=ValidationOutcome.ALREADY_USED,
            message=f"Ticket already used. Checked in at: {registration.checked_in_at.isoformat()}",
            ticket_code=registration.ticket_code,
            user_name=user_name,
            user_email=user_email,
            event_title=event_title,
            checked_in_at=registration.checked_in_at,
        )
