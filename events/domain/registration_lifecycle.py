"""Registration status state machine and ticket code generation."""

import secrets
from dataclasses import replace
from datetime import datetime

from events.domain.errors import InvalidStateTransitionError
from events.domain.models import Event, Registration
from events.domain.value_objects import EventId, RegistrationId, RegistrationStatus, UserId

TICKET_PREFIX = "TKT-"
# Crockford base32: no I, L, O or U, so codes survive being read aloud at the door.
TICKET_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
TICKET_LENGTH = 10


def generate_ticket_code() -> str:
    """Return a fresh ``TKT-`` code with 50 bits of randomness."""
    body = "".join(secrets.choice(TICKET_ALPHABET) for _ in range(TICKET_LENGTH))
    return f"{TICKET_PREFIX}{body}"


class RegistrationLifecycle:
    """Validates and applies registration status transitions.

    CONFIRMED <-> CANCELLED is the only cycle. ATTENDED and NO_SHOW are
    terminal marks set by post-event reconciliation.
    """

    @staticmethod
    def new(user_id: UserId, event_id: EventId, now: datetime) -> Registration:
        return Registration(
            id=RegistrationId.new(),
            user_id=user_id,
            event_id=event_id,
            status=RegistrationStatus.CONFIRMED,
            ticket_code=generate_ticket_code(),
            registered_at=now,
        )

    @staticmethod
    def with_new_ticket_code(registration: Registration) -> Registration:
        return replace(registration, ticket_code=generate_ticket_code())

    @staticmethod
    def cancel(registration: Registration, event: Event, now: datetime) -> Registration:
        """Move a CONFIRMED registration to CANCELLED.

        Raises:
            InvalidStateTransitionError: If the registration is not CONFIRMED, has
                been checked in, or the event has already started.
        """
        if registration.status is RegistrationStatus.CANCELLED:
            raise InvalidStateTransitionError("Registration is already cancelled")
        if registration.status is not RegistrationStatus.CONFIRMED:
            raise InvalidStateTransitionError(
                f"Cannot cancel a registration marked {registration.status.value}"
            )
        if registration.checked_in_at is not None:
            raise InvalidStateTransitionError("Cannot cancel a registration that has been checked in")
        if event.has_started(now):
            raise InvalidStateTransitionError(
                "Cannot cancel registration for an event that has already started"
            )
        return replace(registration, status=RegistrationStatus.CANCELLED, cancelled_at=now)

    @staticmethod
    def reactivate(registration: Registration, now: datetime) -> Registration:
        """Bring a CANCELLED registration back to CONFIRMED on the same row.

        The ticket code is kept. A checked-in registration cannot have been
        cancelled, so there is never a check-in stamp to carry over.
        """
        if registration.status is not RegistrationStatus.CANCELLED:
            raise InvalidStateTransitionError(
                f"Cannot reactivate a registration marked {registration.status.value}"
            )
        return replace(
            registration,
            status=RegistrationStatus.CONFIRMED,
            registered_at=now,
            cancelled_at=None,
        )

    @staticmethod
    def check_in(registration: Registration, now: datetime) -> Registration:
        if registration.checked_in_at is not None:
            raise InvalidStateTransitionError("Ticket has already been used")
        return replace(registration, checked_in_at=now)
