"""Registration service - register, cancel and look up registrations.

Register runs inside the CapacityGuard section for the event so the confirmed
count cannot exceed capacity. Cancel only ever frees a seat and runs under a
row lock on the registration alone. Notifications go out after commit and
never affect the returned result.
"""

import structlog
from django.conf import settings
from django.utils import timezone

from events.domain import (
    CallerIdentity,
    Event,
    EventId,
    Registration,
    RegistrationId,
    RegistrationStatus,
    User,
)
from events.domain.errors import (
    AccessDeniedError,
    DuplicateRegistrationError,
    EventNotAvailableError,
    NotFoundError,
    UnavailableReason,
    UniqueViolation,
)
from events.domain.event_lifecycle import EventLifecycle
from events.domain.notifications import RegistrationCancelled, RegistrationConfirmed
from events.domain.registration_lifecycle import RegistrationLifecycle
from events.services.boundary import returns_result
from events.services.capacity_guard import CapacityGuard
from events.services.notifier import Notifier
from events.stores.interfaces import Store

logger = structlog.get_logger(__name__)


class RegistrationService:
    """Coordinates registration decisions for events."""

    def __init__(
        self,
        store: Store,
        notifier: Notifier | None = None,
        guard: CapacityGuard | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier or Notifier()
        self._guard = guard or CapacityGuard(store)

    # Commands

    @returns_result
    def register(self, event_id: EventId, caller: CallerIdentity) -> Registration:
        """Claim a seat on ``event_id`` for the caller.

        Fails with NotFound, EventNotAvailable (reason ``not_published``,
        ``already_started`` or ``full``), DuplicateRegistration or Contention.
        """
        user = self._require_user(caller.email)
        registration, event, confirmed = self._guard.with_exclusive_event_access(
            event_id, lambda event: self._admit(event, user)
        )
        logger.info(
            "registration_confirmed",
            registration_id=str(registration.id),
            event_id=str(event.id),
            user_id=str(user.id),
            confirmed=confirmed,
            capacity=event.capacity.value,
        )
        self._notifier.notify(RegistrationConfirmed.build(registration, user, event, confirmed))
        return registration

    @returns_result
    def cancel(self, registration_id: RegistrationId, caller: CallerIdentity) -> Registration:
        """Cancel the caller's registration, freeing its seat.

        Fails with NotFound, AccessDenied or InvalidStateTransition.
        """
        with self._store.atomic():
            registration = self._store.get_registration_for_update(registration_id)
            if registration is None:
                raise NotFoundError("Registration", registration_id)
            owner = self._store.get_user(registration.user_id)
            if owner is None:
                raise NotFoundError("User", registration.user_id)
            if owner.email.lower() != caller.email.lower() and not caller.is_admin:
                raise AccessDeniedError("You can only cancel your own registrations")
            event = self._require_event(registration.event_id)

            registration = RegistrationLifecycle.cancel(registration, event, timezone.now())
            self._store.save_registration(registration)
            confirmed = self._store.count_registrations(event.id, RegistrationStatus.CONFIRMED)

        logger.info(
            "registration_cancelled",
            registration_id=str(registration.id),
            event_id=str(event.id),
            confirmed=confirmed,
        )
        self._notifier.notify(RegistrationCancelled.build(registration, owner, event, confirmed))
        return registration

    # Queries

    @returns_result
    def get_registration(self, registration_id: RegistrationId) -> Registration:
        registration = self._store.get_registration(registration_id)
        if registration is None:
            raise NotFoundError("Registration", registration_id)
        return registration

    @returns_result
    def get_by_ticket_code(self, ticket_code: str) -> Registration:
        registration = self._store.get_registration_by_ticket_code(ticket_code)
        if registration is None:
            raise NotFoundError("Registration", ticket_code)
        return registration

    @returns_result
    def list_for_user(self, caller: CallerIdentity, active_only: bool = False) -> list[Registration]:
        """Return the caller's registrations, newest first."""
        user = self._require_user(caller.email)
        status = RegistrationStatus.CONFIRMED if active_only else None
        return self._store.list_registrations_for_user(user.id, status)

    @returns_result
    def list_for_event(self, event_id: EventId) -> list[Registration]:
        """Return the event's registrations, oldest first."""
        self._require_event(event_id)
        return self._store.list_registrations_for_event(event_id)

    @returns_result
    def is_registered(self, event_id: EventId, caller: CallerIdentity) -> bool:
        user = self._require_user(caller.email)
        registration = self._store.get_registration_for(user.id, event_id)
        return registration is not None and registration.is_active

    @returns_result
    def confirmed_count(self, event_id: EventId) -> int:
        return self._store.count_registrations(event_id, RegistrationStatus.CONFIRMED)

    # Helpers

    def _admit(self, event: Event, user: User) -> tuple[Registration, Event, int]:
        """Decide and persist one registration. Runs inside the event's section."""
        now = timezone.now()
        if not EventLifecycle.accepts_registrations(event.status):
            raise EventNotAvailableError(
                UnavailableReason.NOT_PUBLISHED,
                f"event is not accepting registrations (status: {event.status.value})",
            )
        if event.has_started(now):
            raise EventNotAvailableError(UnavailableReason.ALREADY_STARTED, "event has already started")

        existing = self._store.get_registration_for(user.id, event.id)
        if existing is not None and existing.is_active:
            raise DuplicateRegistrationError()

        confirmed = self._store.count_registrations(event.id, RegistrationStatus.CONFIRMED)
        if not event.capacity.admits(confirmed):
            logger.warning(
                "event_full",
                event_id=str(event.id),
                confirmed=confirmed,
                capacity=event.capacity.value,
                user_id=str(user.id),
            )
            raise EventNotAvailableError(
                UnavailableReason.FULL,
                f"event is at full capacity ({confirmed}/{event.capacity.value})",
            )

        if existing is not None:
            registration = RegistrationLifecycle.reactivate(existing, now)
            self._store.save_registration(registration)
            logger.info("registration_reactivated", registration_id=str(registration.id))
        else:
            registration = self._insert(RegistrationLifecycle.new(user.id, event.id, now))
        return registration, event, confirmed + 1

    def _insert(self, registration: Registration) -> Registration:
        """Insert, drawing a fresh ticket code if the storage reports a clash."""
        attempts = settings.TICKET_CODE_ATTEMPTS
        for attempt in range(1, attempts + 1):
            try:
                return self._store.add_registration(registration)
            except UniqueViolation as exc:
                if exc.field != "ticket_code":
                    raise DuplicateRegistrationError() from exc
                logger.warning("ticket_code_collision", attempt=attempt)
                if attempt == attempts:
                    raise
                registration = RegistrationLifecycle.with_new_ticket_code(registration)
        raise AssertionError("unreachable")

    def _require_user(self, email: str) -> User:
        user = self._store.get_user_by_email(email)
        if user is None:
            raise NotFoundError("User", email)
        return user

    def _require_event(self, event_id: EventId) -> Event:
        event = self._store.get_event(event_id)
        if event is None:
            raise NotFoundError("Event", event_id)
        return event
