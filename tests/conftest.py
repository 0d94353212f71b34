"""Pytest configuration and shared fixtures."""

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from django.db import connection
from django.utils import timezone

from events.domain import (
    CallerIdentity,
    Capacity,
    Event,
    EventId,
    EventStatus,
    Role,
    User,
    UserId,
)
from events.domain.notifications import DomainNotification
from events.services import (
    EventService,
    NotificationSink,
    Notifier,
    RegistrationService,
    TicketService,
)
from events.stores.django_store import DjangoStore
from events.stores.memory_store import InMemoryStore


class RecordingSink(NotificationSink):
    """Keeps every notification it receives."""

    def __init__(self) -> None:
        self.sent: list[DomainNotification] = []
        self._lock = threading.Lock()

    def send(self, notification: DomainNotification) -> None:
        with self._lock:
            self.sent.append(notification)


class FailingSink(NotificationSink):
    """Simulates a broker that is down."""

    def send(self, notification: DomainNotification) -> None:
        raise ConnectionError("broker unreachable")


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore(lock_timeout=5.0)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


@pytest.fixture
def notifier(sink: RecordingSink) -> Notifier:
    return Notifier(sink)


@pytest.fixture
def registration_service(store: InMemoryStore, notifier: Notifier) -> RegistrationService:
    return RegistrationService(store, notifier)


@pytest.fixture
def event_service(store: InMemoryStore, notifier: Notifier) -> EventService:
    return EventService(store, notifier)


@pytest.fixture
def ticket_service(store: InMemoryStore) -> TicketService:
    return TicketService(store)


@pytest.fixture
def make_user(store: InMemoryStore) -> Callable[..., User]:
    counter = iter(range(1, 10_000))

    def _make(email: str | None = None, name: str | None = None, role: Role = Role.USER) -> User:
        n = next(counter)
        user = User(
            id=UserId.new(),
            email=email or f"attendee-{n}@example.com",
            name=name or f"Attendee {n}",
            role=role,
        )
        return store.add_user(user)

    return _make


@pytest.fixture
def organizer(make_user: Callable[..., User]) -> User:
    return make_user("organizer@example.com", "Event Organizer", Role.ORGANIZER)


@pytest.fixture
def attendee(make_user: Callable[..., User]) -> User:
    return make_user("attendee@example.com", "First Attendee")


@pytest.fixture
def make_event(store: InMemoryStore, organizer: User) -> Callable[..., Event]:
    def _make(
        capacity: int = 5,
        status: EventStatus = EventStatus.PUBLISHED,
        starts_in: timedelta = timedelta(days=30),
        owner: User | None = None,
    ) -> Event:
        now = timezone.now()
        start = now + starts_in
        event = Event(
            id=EventId.new(),
            title="Python Meetup",
            description="Lightning talks",
            location="Hall A",
            start_date=start,
            end_date=start + timedelta(hours=8),
            capacity=Capacity(capacity),
            status=status,
            organizer_id=(owner or organizer).id,
            created_at=now,
            updated_at=now,
        )
        return store.add_event(event)

    return _make


@pytest.fixture
def caller_for() -> Callable[[User], CallerIdentity]:
    def _caller(user: User) -> CallerIdentity:
        return CallerIdentity(email=user.email, role=user.role)

    return _caller


@pytest.fixture
def race() -> Callable[[Callable, Iterable], list]:
    """Run ``fn`` once per argument on its own thread, all released at once."""

    def _race(fn: Callable, args: Iterable) -> list:
        args = list(args)
        barrier = threading.Barrier(len(args))

        def worker(arg):
            barrier.wait(timeout=10)
            try:
                return fn(arg)
            finally:
                # Each thread opens its own database connection.
                connection.close()

        with ThreadPoolExecutor(max_workers=len(args)) as pool:
            return list(pool.map(worker, args, timeout=30))

    return _race


# Django store fixtures. Tests using these need the ``django_db`` mark.


@pytest.fixture
def db_store() -> DjangoStore:
    return DjangoStore()


@pytest.fixture
def make_db_user(db_store: DjangoStore) -> Callable[..., User]:
    def _make(email: str, role: Role = Role.USER) -> User:
        return db_store.add_user(User(id=UserId.new(), email=email, name=email.split("@")[0], role=role))

    return _make


@pytest.fixture
def db_organizer(make_db_user: Callable[..., User]) -> User:
    return make_db_user("host@example.com", Role.ORGANIZER)


@pytest.fixture
def make_db_event(db_store: DjangoStore, db_organizer: User) -> Callable[..., Event]:
    def _make(capacity: int = 2, title: str = "PyCon sprint") -> Event:
        now = timezone.now()
        return db_store.add_event(
            Event(
                id=EventId.new(),
                title=title,
                description="",
                location="Room 2",
                start_date=now + timedelta(days=3),
                end_date=now + timedelta(days=3, hours=4),
                capacity=Capacity(capacity),
                status=EventStatus.PUBLISHED,
                organizer_id=db_organizer.id,
                created_at=now,
                updated_at=now,
            )
        )

    return _make
