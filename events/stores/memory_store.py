"""Embedded, process-local implementation of the Store.

Used when no database is configured and throughout the concurrency tests.
Writes made inside ``atomic()`` are staged per thread and applied on commit,
where the unique constraints are checked against committed state. Row locks
taken by the ``*_for_update`` reads are held until the transaction ends.
"""

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime

from events.domain import (
    Event,
    EventId,
    Registration,
    RegistrationId,
    RegistrationStatus,
    User,
    UserId,
)
from events.domain.errors import ContentionError, UniqueViolation
from events.locks import FairLock, LockRegistry
from events.stores.interfaces import Store

_DELETED = None


@dataclass
class _Transaction:
    users: dict[UserId, User] = field(default_factory=dict)
    events: dict[EventId, Event | None] = field(default_factory=dict)
    registrations: dict[RegistrationId, Registration] = field(default_factory=dict)
    held: dict[Hashable, FairLock] = field(default_factory=dict)


class InMemoryStore(Store):
    """Thread-safe in-memory store with read-committed transactions."""

    def __init__(self, lock_timeout: float = 30.0) -> None:
        self._lock_timeout = lock_timeout
        self._mutex = threading.RLock()
        self._users: dict[UserId, User] = {}
        self._events: dict[EventId, Event] = {}
        self._registrations: dict[RegistrationId, Registration] = {}
        self._row_locks = LockRegistry()
        self._local = threading.local()

    # Transactions

    @property
    def _tx(self) -> _Transaction | None:
        return getattr(self._local, "tx", None)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if self._tx is not None:
            yield
            return
        tx = _Transaction()
        self._local.tx = tx
        try:
            yield
            self._commit(tx)
        finally:
            self._local.tx = None
            for key, lock in tx.held.items():
                lock.release()
                self._row_locks.checkin(key)

    def _commit(self, tx: _Transaction) -> None:
        with self._mutex:
            self._check_unique(tx)
            self._users.update(tx.users)
            for event_id, event in tx.events.items():
                if event is _DELETED:
                    self._events.pop(event_id, None)
                else:
                    self._events[event_id] = event
            self._registrations.update(tx.registrations)

    def _check_unique(self, tx: _Transaction) -> None:
        emails = {u.email.lower(): u.id for u in self._users.values()}
        for user in tx.users.values():
            if emails.get(user.email.lower(), user.id) != user.id:
                raise UniqueViolation("email")
        codes = {r.ticket_code: r.id for r in self._registrations.values()}
        pairs = {(r.user_id, r.event_id): r.id for r in self._registrations.values()}
        for registration in tx.registrations.values():
            if codes.get(registration.ticket_code, registration.id) != registration.id:
                raise UniqueViolation("ticket_code")
            pair = (registration.user_id, registration.event_id)
            if pairs.get(pair, registration.id) != registration.id:
                raise UniqueViolation("user_event")

    def _write(self, table: str, key, value) -> None:
        with self.atomic():
            getattr(self._tx, table)[key] = value

    def _lock_row(self, key: Hashable, timeout: float | None = None) -> None:
        tx = self._tx
        if tx is None:
            raise RuntimeError("select-for-update reads require an open transaction")
        if key in tx.held:
            return
        timeout = self._lock_timeout if timeout is None else timeout
        lock = self._row_locks.checkout(key)
        if not lock.acquire(timeout):
            self._row_locks.checkin(key)
            raise ContentionError(timeout)
        tx.held[key] = lock

    # Views merge committed rows with the current thread's staged writes.

    def _user_view(self) -> dict[UserId, User]:
        with self._mutex:
            view = dict(self._users)
        if self._tx is not None:
            view.update(self._tx.users)
        return view

    def _event_view(self) -> dict[EventId, Event]:
        with self._mutex:
            view = dict(self._events)
        if self._tx is not None:
            for event_id, event in self._tx.events.items():
                if event is _DELETED:
                    view.pop(event_id, None)
                else:
                    view[event_id] = event
        return view

    def _registration_view(self) -> dict[RegistrationId, Registration]:
        with self._mutex:
            view = dict(self._registrations)
        if self._tx is not None:
            view.update(self._tx.registrations)
        return view

    # Users

    def get_user(self, user_id: UserId) -> User | None:
        return self._user_view().get(user_id)

    def get_user_by_email(self, email: str) -> User | None:
        return next(
            (u for u in self._user_view().values() if u.email.lower() == email.lower()),
            None,
        )

    def add_user(self, user: User) -> User:
        if self.get_user_by_email(user.email) is not None:
            raise UniqueViolation("email")
        self._write("users", user.id, user)
        return user

    # Events

    def get_event(self, event_id: EventId) -> Event | None:
        return self._event_view().get(event_id)

    def get_event_for_update(self, event_id: EventId, timeout: float | None = None) -> Event | None:
        self._lock_row(("event", event_id), timeout)
        return self.get_event(event_id)

    def add_event(self, event: Event) -> Event:
        self._write("events", event.id, event)
        return event

    def save_event(self, event: Event) -> Event:
        self._write("events", event.id, event)
        return event

    def delete_event(self, event_id: EventId) -> None:
        self._write("events", event_id, _DELETED)

    # Registrations

    def count_registrations(self, event_id: EventId, status: RegistrationStatus) -> int:
        return sum(
            1
            for r in self._registration_view().values()
            if r.event_id == event_id and r.status is status
        )

    def get_registration(self, registration_id: RegistrationId) -> Registration | None:
        return self._registration_view().get(registration_id)

    def get_registration_for_update(
        self, registration_id: RegistrationId, timeout: float | None = None
    ) -> Registration | None:
        self._lock_row(("registration", registration_id), timeout)
        return self.get_registration(registration_id)

    def get_registration_for(self, user_id: UserId, event_id: EventId) -> Registration | None:
        return next(
            (
                r
                for r in self._registration_view().values()
                if r.user_id == user_id and r.event_id == event_id
            ),
            None,
        )

    def get_registration_by_ticket_code(self, ticket_code: str) -> Registration | None:
        return next(
            (r for r in self._registration_view().values() if r.ticket_code == ticket_code),
            None,
        )

    def get_registration_by_ticket_code_for_update(
        self, ticket_code: str, timeout: float | None = None
    ) -> Registration | None:
        registration = self.get_registration_by_ticket_code(ticket_code)
        if registration is None:
            return None
        self._lock_row(("registration", registration.id), timeout)
        # Re-read: another transaction may have committed while we waited.
        return self.get_registration(registration.id)

    def add_registration(self, registration: Registration) -> Registration:
        if self.get_registration_by_ticket_code(registration.ticket_code) is not None:
            raise UniqueViolation("ticket_code")
        if self.get_registration_for(registration.user_id, registration.event_id) is not None:
            raise UniqueViolation("user_event")
        self._write("registrations", registration.id, registration)
        return registration

    def save_registration(self, registration: Registration) -> Registration:
        self._write("registrations", registration.id, registration)
        return registration

    def mark_checked_in(self, registration_id: RegistrationId, checked_in_at: datetime) -> bool:
        with self.atomic():
            self._lock_row(("registration", registration_id))
            registration = self.get_registration(registration_id)
            if registration is None or registration.checked_in_at is not None:
                return False
            stamped = replace(registration, checked_in_at=checked_in_at)
            self._write("registrations", registration_id, stamped)
            return True

    def list_registrations_for_user(
        self, user_id: UserId, status: RegistrationStatus | None = None
    ) -> list[Registration]:
        rows = [
            r
            for r in self._registration_view().values()
            if r.user_id == user_id and (status is None or r.status is status)
        ]
        return sorted(rows, key=lambda r: r.registered_at, reverse=True)

    def list_registrations_for_event(self, event_id: EventId) -> list[Registration]:
        rows = [r for r in self._registration_view().values() if r.event_id == event_id]
        return sorted(rows, key=lambda r: r.registered_at)
