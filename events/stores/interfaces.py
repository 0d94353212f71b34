"""Store interfaces (repository pattern).

Stores must be swappable and return domain models. The ``*_for_update``
variants must be called inside ``atomic()`` and hold a row lock until the
transaction ends; their wait for that lock is bounded.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
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


class UserStore(ABC):
    """Interface for user lookups."""

    @abstractmethod
    def get_user(self, user_id: UserId) -> User | None:
        """Return a user by ID, or None if not found."""
        ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> User | None:
        """Return a user by email, or None if not found."""
        ...

    @abstractmethod
    def add_user(self, user: User) -> User:
        """Persist a new user.

        Raises:
            UniqueViolation: If the email is taken.
        """
        ...


class EventStore(ABC):
    """Interface for event persistence operations."""

    @abstractmethod
    def get_event(self, event_id: EventId) -> Event | None:
        """Return an event by ID, or None if not found."""
        ...

    @abstractmethod
    def get_event_for_update(self, event_id: EventId, timeout: float | None = None) -> Event | None:
        """Return an event by ID and lock its row until the transaction ends.

        Raises:
            ContentionError: If the row lock was not granted within ``timeout``
                seconds (the store default when None).
        """
        ...

    @abstractmethod
    def add_event(self, event: Event) -> Event:
        ...

    @abstractmethod
    def save_event(self, event: Event) -> Event:
        ...

    @abstractmethod
    def delete_event(self, event_id: EventId) -> None:
        ...


class RegistrationStore(ABC):
    """Interface for registration persistence operations."""

    @abstractmethod
    def count_registrations(self, event_id: EventId, status: RegistrationStatus) -> int:
        ...

    @abstractmethod
    def get_registration(self, registration_id: RegistrationId) -> Registration | None:
        ...

    @abstractmethod
    def get_registration_for_update(
        self, registration_id: RegistrationId, timeout: float | None = None
    ) -> Registration | None:
        ...

    @abstractmethod
    def get_registration_for(self, user_id: UserId, event_id: EventId) -> Registration | None:
        """Return the single registration row for a (user, event) pair."""
        ...

    @abstractmethod
    def get_registration_by_ticket_code(self, ticket_code: str) -> Registration | None:
        ...

    @abstractmethod
    def get_registration_by_ticket_code_for_update(
        self, ticket_code: str, timeout: float | None = None
    ) -> Registration | None:
        ...

    @abstractmethod
    def add_registration(self, registration: Registration) -> Registration:
        """Persist a new registration.

        Raises:
            UniqueViolation: On a duplicate ticket code or (user, event) pair.
        """
        ...

    @abstractmethod
    def save_registration(self, registration: Registration) -> Registration:
        ...

    @abstractmethod
    def mark_checked_in(self, registration_id: RegistrationId, checked_in_at: datetime) -> bool:
        """Stamp ``checked_in_at`` unless it is already set.

        A single conditional update: returns True if this call set the stamp,
        False if an earlier check-in got there first.
        """
        ...

    @abstractmethod
    def list_registrations_for_user(
        self, user_id: UserId, status: RegistrationStatus | None = None
    ) -> list[Registration]:
        """Return a user's registrations ordered by registered_at descending."""
        ...

    @abstractmethod
    def list_registrations_for_event(self, event_id: EventId) -> list[Registration]:
        """Return an event's registrations ordered by registered_at ascending."""
        ...


class Store(UserStore, EventStore, RegistrationStore):
    """Everything the registrations core needs from persistence."""

    @abstractmethod
    def atomic(self) -> AbstractContextManager[None]:
        """Open a transaction; commit on clean exit, roll back on exception.

        Nested calls join the outer transaction.
        """
        ...
