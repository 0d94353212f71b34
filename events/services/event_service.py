"""Event service - organizer operations over the event lifecycle.

Services:
- Depend only on interfaces (stores)
- Validate domain invariants
- Perform orchestration and error mapping
- Return Result values wrapping domain models or domain errors
"""

from dataclasses import replace
from datetime import datetime

import structlog
from django.utils import timezone

from events.domain import (
    CallerIdentity,
    Capacity,
    Event,
    EventId,
    EventStatus,
    RegistrationStatus,
    User,
)
from events.domain.errors import (
    AccessDeniedError,
    NotFoundError,
    ValidationError,
)
from events.domain.event_lifecycle import EventLifecycle
from events.domain.notifications import EventCancelled, EventPublished
from events.services.boundary import returns_result
from events.services.capacity_guard import CapacityGuard
from events.services.notifier import Notifier
from events.stores.interfaces import Store

logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = frozenset({"title", "description", "location", "start_date", "end_date", "capacity"})


def _validate_schedule(start_date: datetime, end_date: datetime) -> None:
    if end_date <= start_date:
        raise ValidationError("End date must be after start date")


def _capacity(value: int) -> Capacity:
    try:
        return Capacity(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


class EventService:
    """Service for organizer-side event operations."""

    def __init__(
        self,
        store: Store,
        notifier: Notifier | None = None,
        guard: CapacityGuard | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier or Notifier()
        self._guard = guard or CapacityGuard(store)

    @returns_result
    def get_event(self, event_id: EventId) -> Event:
        """Return an event by ID.

        Fails with NotFound if the event does not exist.
        """
        event = self._store.get_event(event_id)
        if event is None:
            raise NotFoundError("Event", event_id)
        return event

    @returns_result
    def create_event(
        self,
        caller: CallerIdentity,
        title: str,
        description: str,
        location: str,
        start_date: datetime,
        end_date: datetime,
        capacity: int,
    ) -> Event:
        """Create a DRAFT event owned by the caller."""
        organizer = self._store.get_user_by_email(caller.email)
        if organizer is None:
            raise NotFoundError("User", caller.email)
        _validate_schedule(start_date, end_date)
        now = timezone.now()
        event = Event(
            id=EventId.new(),
            title=title,
            description=description,
            location=location,
            start_date=start_date,
            end_date=end_date,
            capacity=_capacity(capacity),
            status=EventStatus.DRAFT,
            organizer_id=organizer.id,
            created_at=now,
            updated_at=now,
        )
        self._store.add_event(event)
        logger.info("event_created", event_id=str(event.id), organizer_id=str(organizer.id))
        return event

    @returns_result
    def update_event(self, event_id: EventId, caller: CallerIdentity, **changes) -> Event:
        """Edit event fields while the event is DRAFT or PUBLISHED.

        Capacity may not be lowered below the current confirmed count, so the
        edit runs inside the event's CapacityGuard section.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit fields: {', '.join(sorted(unknown))}")

        def apply(event: Event) -> Event:
            self._authorize(event, caller)
            EventLifecycle.ensure_editable(event)
            fields = dict(changes)
            if "capacity" in fields:
                fields["capacity"] = _capacity(fields["capacity"])
                confirmed = self._store.count_registrations(event.id, RegistrationStatus.CONFIRMED)
                if fields["capacity"].value < confirmed:
                    raise ValidationError(
                        f"Capacity cannot drop below the {confirmed} confirmed registrations"
                    )
            updated = replace(event, **fields, updated_at=timezone.now())
            _validate_schedule(updated.start_date, updated.end_date)
            return self._store.save_event(updated)

        event = self._guard.with_exclusive_event_access(event_id, apply)
        logger.info("event_updated", event_id=str(event.id), fields=sorted(changes))
        return event

    @returns_result
    def publish_event(self, event_id: EventId, caller: CallerIdentity) -> Event:
        """DRAFT -> PUBLISHED. The event must not have started yet."""
        event, organizer = self._transition(event_id, caller, EventStatus.PUBLISHED)
        self._notifier.notify(EventPublished.build(event, organizer))
        return event

    @returns_result
    def cancel_event(self, event_id: EventId, caller: CallerIdentity) -> Event:
        """DRAFT or PUBLISHED -> CANCELLED.

        Confirmed registrations are left as they are; the notification carries
        how many attendees are affected.
        """
        with self._store.atomic():
            event, organizer = self._transition(event_id, caller, EventStatus.CANCELLED)
            affected = self._store.count_registrations(event.id, RegistrationStatus.CONFIRMED)
        logger.info("event_cancelled_affected", event_id=str(event.id), affected=affected)
        self._notifier.notify(EventCancelled.build(event, organizer, affected))
        return event

    @returns_result
    def complete_event(self, event_id: EventId, caller: CallerIdentity) -> Event:
        """PUBLISHED -> COMPLETED."""
        event, _ = self._transition(event_id, caller, EventStatus.COMPLETED)
        return event

    @returns_result
    def delete_event(self, event_id: EventId, caller: CallerIdentity) -> None:
        """Delete a DRAFT event. Anything else must be cancelled instead."""
        with self._store.atomic():
            event = self._locked_event(event_id)
            self._authorize(event, caller)
            EventLifecycle.ensure_deletable(event)
            self._store.delete_event(event_id)
        logger.info("event_deleted", event_id=str(event_id))

    # Helpers

    def _transition(
        self, event_id: EventId, caller: CallerIdentity, target: EventStatus
    ) -> tuple[Event, User]:
        with self._store.atomic():
            event = self._locked_event(event_id)
            organizer = self._authorize(event, caller)
            previous = event.status
            event = EventLifecycle.transition(event, target, timezone.now())
            self._store.save_event(event)
        logger.info(
            "event_status_changed",
            event_id=str(event.id),
            from_status=previous.value,
            to_status=target.value,
        )
        return event, organizer

    def _locked_event(self, event_id: EventId) -> Event:
        event = self._store.get_event_for_update(event_id)
        if event is None:
            raise NotFoundError("Event", event_id)
        return event

    def _authorize(self, event: Event, caller: CallerIdentity) -> User:
        """Return the event's organizer if the caller may manage the event."""
        organizer = self._store.get_user(event.organizer_id)
        if organizer is None:
            raise NotFoundError("User", event.organizer_id)
        if organizer.email.lower() != caller.email.lower() and not caller.is_admin:
            raise AccessDeniedError("You are not the organizer of this event")
        return organizer
