"""Django ORM implementation of the Store.

Row locks use ``select_for_update``. On PostgreSQL the wait for a row lock is
bounded with ``lock_timeout`` and a timeout surfaces as ``ContentionError``.

SQLite has no row locks and allows a single writer; a second connection that
touches a table with uncommitted writes fails at once instead of waiting.
On that backend every store call is serialized in-process, and a transaction
holds the serialization lock until it ends.
"""

import functools
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from django.conf import settings
from django.db import IntegrityError, OperationalError, connection, transaction
from django.db.models import QuerySet
from django.utils import timezone

from events import models
from events.domain import (
    Capacity,
    Event,
    EventId,
    EventStatus,
    Registration,
    RegistrationId,
    RegistrationStatus,
    Role,
    User,
    UserId,
)
from events.domain.errors import ContentionError, UniqueViolation
from events.stores.interfaces import Store

# PostgreSQL SQLSTATE for lock_not_available.
LOCK_NOT_AVAILABLE = "55P03"

_sqlite_lock = threading.RLock()


def _user_to_domain(row: models.User) -> User:
    return User(id=UserId(row.id), email=row.email, name=row.name, role=Role(row.role))


def _event_to_domain(row: models.Event) -> Event:
    return Event(
        id=EventId(row.id),
        title=row.title,
        description=row.description,
        location=row.location,
        start_date=row.start_date,
        end_date=row.end_date,
        capacity=Capacity(row.capacity),
        status=EventStatus(row.status),
        organizer_id=UserId(row.organizer_id),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _registration_to_domain(row: models.Registration) -> Registration:
    return Registration(
        id=RegistrationId(row.id),
        user_id=UserId(row.user_id),
        event_id=EventId(row.event_id),
        status=RegistrationStatus(row.status),
        ticket_code=row.ticket_code,
        registered_at=row.registered_at,
        cancelled_at=row.cancelled_at,
        checked_in_at=row.checked_in_at,
    )


def _first(queryset: QuerySet, to_domain):
    row = queryset.first()
    return to_domain(row) if row is not None else None


def _is_lock_timeout(exc: OperationalError) -> bool:
    cause = exc.__cause__
    return LOCK_NOT_AVAILABLE in (getattr(cause, "sqlstate", None), getattr(cause, "pgcode", None))


def _serialized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._exclusive():
            return method(self, *args, **kwargs)

    return wrapper


class DjangoStore(Store):
    """Database-backed store using Django ORM."""

    def __init__(self, lock_timeout: float | None = None) -> None:
        if lock_timeout is None:
            lock_timeout = settings.REGISTRATION_LOCK_TIMEOUT
        self._lock_timeout = lock_timeout

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if connection.vendor != "sqlite":
            yield
            return
        if not _sqlite_lock.acquire(timeout=self._lock_timeout):
            raise ContentionError(self._lock_timeout)
        try:
            yield
        finally:
            _sqlite_lock.release()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._exclusive(), transaction.atomic():
            yield

    def _locked(self, queryset: QuerySet, to_domain, timeout: float | None):
        """Evaluate ``queryset.select_for_update()`` waiting at most ``timeout`` seconds."""
        queryset = queryset.select_for_update()
        if connection.vendor != "postgresql":
            return _first(queryset, to_domain)
        timeout = self._lock_timeout if timeout is None else timeout
        with connection.cursor() as cursor:
            cursor.execute("SELECT current_setting('lock_timeout')")
            (previous,) = cursor.fetchone()
            cursor.execute(
                "SELECT set_config('lock_timeout', %s, true)",
                [f"{max(int(timeout * 1000), 1)}ms"],
            )
        try:
            found = _first(queryset, to_domain)
        except OperationalError as exc:
            if _is_lock_timeout(exc):
                raise ContentionError(timeout) from exc
            raise
        with connection.cursor() as cursor:
            cursor.execute("SELECT set_config('lock_timeout', %s, true)", [previous])
        return found

    # Users

    @_serialized
    def get_user(self, user_id: UserId) -> User | None:
        return _first(models.User.objects.filter(pk=user_id.value), _user_to_domain)

    @_serialized
    def get_user_by_email(self, email: str) -> User | None:
        return _first(models.User.objects.filter(email__iexact=email), _user_to_domain)

    @_serialized
    def add_user(self, user: User) -> User:
        try:
            with transaction.atomic():
                models.User.objects.create(
                    id=user.id.value, email=user.email, name=user.name, role=user.role.value
                )
        except IntegrityError as exc:
            raise UniqueViolation("email") from exc
        return user

    # Events

    @_serialized
    def get_event(self, event_id: EventId) -> Event | None:
        return _first(models.Event.objects.filter(pk=event_id.value), _event_to_domain)

    @_serialized
    def get_event_for_update(self, event_id: EventId, timeout: float | None = None) -> Event | None:
        return self._locked(models.Event.objects.filter(pk=event_id.value), _event_to_domain, timeout)

    @_serialized
    def add_event(self, event: Event) -> Event:
        models.Event.objects.create(
            id=event.id.value,
            title=event.title,
            description=event.description,
            location=event.location,
            start_date=event.start_date,
            end_date=event.end_date,
            capacity=event.capacity.value,
            status=event.status.value,
            organizer_id=event.organizer_id.value,
            created_at=event.created_at,
            updated_at=event.updated_at,
        )
        return event

    @_serialized
    def save_event(self, event: Event) -> Event:
        models.Event.objects.filter(pk=event.id.value).update(
            title=event.title,
            description=event.description,
            location=event.location,
            start_date=event.start_date,
            end_date=event.end_date,
            capacity=event.capacity.value,
            status=event.status.value,
            updated_at=event.updated_at,
        )
        return event

    @_serialized
    def delete_event(self, event_id: EventId) -> None:
        models.Event.objects.filter(pk=event_id.value).delete()

    # Registrations

    @_serialized
    def count_registrations(self, event_id: EventId, status: RegistrationStatus) -> int:
        return models.Registration.objects.filter(event_id=event_id.value, status=status.value).count()

    @_serialized
    def get_registration(self, registration_id: RegistrationId) -> Registration | None:
        queryset = models.Registration.objects.filter(pk=registration_id.value)
        return _first(queryset, _registration_to_domain)

    @_serialized
    def get_registration_for_update(
        self, registration_id: RegistrationId, timeout: float | None = None
    ) -> Registration | None:
        queryset = models.Registration.objects.filter(pk=registration_id.value)
        return self._locked(queryset, _registration_to_domain, timeout)

    @_serialized
    def get_registration_for(self, user_id: UserId, event_id: EventId) -> Registration | None:
        queryset = models.Registration.objects.filter(user_id=user_id.value, event_id=event_id.value)
        return _first(queryset, _registration_to_domain)

    @_serialized
    def get_registration_by_ticket_code(self, ticket_code: str) -> Registration | None:
        queryset = models.Registration.objects.filter(ticket_code=ticket_code)
        return _first(queryset, _registration_to_domain)

    @_serialized
    def get_registration_by_ticket_code_for_update(
        self, ticket_code: str, timeout: float | None = None
    ) -> Registration | None:
        queryset = models.Registration.objects.filter(ticket_code=ticket_code)
        return self._locked(queryset, _registration_to_domain, timeout)

    @_serialized
    def add_registration(self, registration: Registration) -> Registration:
        try:
            # Savepoint, so a violation leaves the outer transaction usable.
            with transaction.atomic():
                models.Registration.objects.create(
                    id=registration.id.value,
                    user_id=registration.user_id.value,
                    event_id=registration.event_id.value,
                    status=registration.status.value,
                    ticket_code=registration.ticket_code,
                    registered_at=registration.registered_at,
                    cancelled_at=registration.cancelled_at,
                    checked_in_at=registration.checked_in_at,
                )
        except IntegrityError as exc:
            if models.Registration.objects.filter(ticket_code=registration.ticket_code).exists():
                raise UniqueViolation("ticket_code") from exc
            raise UniqueViolation("user_event") from exc
        return registration

    @_serialized
    def save_registration(self, registration: Registration) -> Registration:
        models.Registration.objects.filter(pk=registration.id.value).update(
            status=registration.status.value,
            ticket_code=registration.ticket_code,
            registered_at=registration.registered_at,
            cancelled_at=registration.cancelled_at,
            checked_in_at=registration.checked_in_at,
            updated_at=timezone.now(),
        )
        return registration

    @_serialized
    def mark_checked_in(self, registration_id: RegistrationId, checked_in_at: datetime) -> bool:
        stamped = models.Registration.objects.filter(
            pk=registration_id.value, checked_in_at__isnull=True
        ).update(checked_in_at=checked_in_at, updated_at=timezone.now())
        return stamped == 1

    @_serialized
    def list_registrations_for_user(
        self, user_id: UserId, status: RegistrationStatus | None = None
    ) -> list[Registration]:
        queryset = models.Registration.objects.filter(user_id=user_id.value)
        if status is not None:
            queryset = queryset.filter(status=status.value)
        return [_registration_to_domain(row) for row in queryset.order_by("-registered_at")]

    @_serialized
    def list_registrations_for_event(self, event_id: EventId) -> list[Registration]:
        queryset = models.Registration.objects.filter(event_id=event_id.value).order_by("registered_at")
        return [_registration_to_domain(row) for row in queryset]
