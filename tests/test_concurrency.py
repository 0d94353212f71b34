"""Concurrency tests for the registration core.

Many callers race for the same seats; the confirmed count must never exceed
capacity. Most tests run against the in-memory store. ``TestDjangoStoreRaces``
repeats the main races on the configured database, which is SQLite unless
DATABASE_URL points elsewhere.
Run with: pytest tests/test_concurrency.py -v
"""

import threading
import time
from collections import Counter

import pytest
from django.db import connection

from events.domain import CallerIdentity, RegistrationStatus
from events.domain.errors import ContentionError, ErrorCode
from events.domain.result import Failure, Success
from events.locks import FairLock, LockRegistry
from events.services import (
    CapacityGuard,
    Notifier,
    RegistrationService,
    TicketService,
    ValidationOutcome,
)
from events.stores.django_store import DjangoStore


def outcome(result):
    if isinstance(result, Success):
        return "ok"
    reason = result.error.reason
    return f"{result.error.code.value}:{reason}" if reason else result.error.code.value


class TestCapacityUnderContention:
    def test_fifteen_callers_five_seats(self, store, sink, make_event, make_user, caller_for, race):
        registry = LockRegistry()
        service = RegistrationService(store, Notifier(sink), CapacityGuard(store, registry=registry))
        event = make_event(capacity=5)
        callers = [caller_for(make_user()) for _ in range(15)]

        started = time.monotonic()
        results = race(lambda caller: service.register(event.id, caller), callers)
        elapsed = time.monotonic() - started

        outcomes = Counter(outcome(r) for r in results)
        assert outcomes == {"ok": 5, "EVENT_NOT_AVAILABLE:full": 10}
        assert store.count_registrations(event.id, RegistrationStatus.CONFIRMED) == 5
        assert len(store.list_registrations_for_event(event.id)) == 5
        assert elapsed < 30
        assert len(registry) == 0

    def test_confirmation_counts_are_distinct(self, store, sink, make_event, make_user, caller_for, race):
        service = RegistrationService(store, Notifier(sink))
        event = make_event(capacity=8)
        callers = [caller_for(make_user()) for _ in range(8)]

        race(lambda caller: service.register(event.id, caller), callers)

        assert sorted(n.current_participants for n in sink.sent) == list(range(1, 9))

    def test_same_user_racing_gets_one_seat(
        self, registration_service, make_event, attendee, caller_for, store, race
    ):
        event = make_event(capacity=5)
        caller = caller_for(attendee)

        results = race(lambda _: registration_service.register(event.id, caller), range(10))

        outcomes = Counter(outcome(r) for r in results)
        assert outcomes == {"ok": 1, "DUPLICATE_REGISTRATION": 9}
        assert store.count_registrations(event.id, RegistrationStatus.CONFIRMED) == 1

    def test_reactivation_race_keeps_single_row(
        self, registration_service, make_event, attendee, caller_for, store, race
    ):
        event = make_event(capacity=5)
        caller = caller_for(attendee)
        first = registration_service.register(event.id, caller).value
        registration_service.cancel(first.id, caller)

        results = race(lambda _: registration_service.register(event.id, caller), range(8))

        assert sum(isinstance(r, Success) for r in results) == 1
        rows = store.list_registrations_for_event(event.id)
        assert len(rows) == 1
        assert rows[0].id == first.id
        assert rows[0].status is RegistrationStatus.CONFIRMED
        assert store.count_registrations(event.id, RegistrationStatus.CONFIRMED) == 1

    def test_register_and_cancel_storm_stays_within_capacity(
        self, registration_service, make_event, make_user, caller_for, store, race
    ):
        event = make_event(capacity=3)
        holders = [caller_for(make_user()) for _ in range(3)]
        held = [registration_service.register(event.id, c).value for c in holders]
        newcomers = [caller_for(make_user()) for _ in range(12)]

        def act(job):
            kind, payload = job
            if kind == "cancel":
                registration, caller = payload
                return kind, registration_service.cancel(registration.id, caller)
            return kind, registration_service.register(event.id, payload)

        jobs = [("cancel", pair) for pair in zip(held, holders)] + [("register", c) for c in newcomers]
        results = race(act, jobs)

        cancelled = sum(1 for kind, r in results if kind == "cancel" and isinstance(r, Success))
        admitted = sum(1 for kind, r in results if kind == "register" and isinstance(r, Success))
        confirmed = store.count_registrations(event.id, RegistrationStatus.CONFIRMED)
        assert cancelled == 3
        assert confirmed <= 3
        assert confirmed == 3 - cancelled + admitted


class TestGuard:
    def test_timeout_reports_contention_and_applies_nothing(
        self, store, notifier, make_event, attendee, caller_for
    ):
        event = make_event(capacity=5)
        entered, release = threading.Event(), threading.Event()

        def hold(_event):
            entered.set()
            release.wait(timeout=10)

        blocker = threading.Thread(
            target=CapacityGuard(store).with_exclusive_event_access, args=(event.id, hold)
        )
        blocker.start()
        try:
            assert entered.wait(timeout=5)
            impatient = RegistrationService(store, notifier, CapacityGuard(store, timeout=0.2))
            result = impatient.register(event.id, caller_for(attendee))
        finally:
            release.set()
            blocker.join(timeout=10)

        assert isinstance(result, Failure)
        assert result.error.code is ErrorCode.CONTENTION
        assert store.get_registration_for(attendee.id, event.id) is None

    def test_other_events_are_not_blocked(
        self, store, notifier, make_event, attendee, caller_for
    ):
        busy, free = make_event(), make_event()
        entered, release = threading.Event(), threading.Event()

        def hold(_event):
            entered.set()
            release.wait(timeout=10)

        blocker = threading.Thread(
            target=CapacityGuard(store).with_exclusive_event_access, args=(busy.id, hold)
        )
        blocker.start()
        try:
            assert entered.wait(timeout=5)
            service = RegistrationService(store, notifier, CapacityGuard(store, timeout=0.5))
            result = service.register(free.id, caller_for(attendee))
        finally:
            release.set()
            blocker.join(timeout=10)

        assert isinstance(result, Success)

    def test_section_is_released_after_failure(self, store, make_event):
        event = make_event()
        registry = LockRegistry()
        guard = CapacityGuard(store, timeout=0.5, registry=registry)

        def boom(_event):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            guard.with_exclusive_event_access(event.id, boom)

        assert guard.with_exclusive_event_access(event.id, lambda e: e.id) == event.id
        assert len(registry) == 0

    def test_deadline_covers_the_row_lock(self, store, notifier, make_event, attendee, caller_for):
        # The row is locked outside any guard, so only the row-lock wait can block.
        event = make_event(capacity=5)
        entered, release = threading.Event(), threading.Event()

        def lock_row():
            with store.atomic():
                store.get_event_for_update(event.id)
                entered.set()
                release.wait(timeout=10)

        blocker = threading.Thread(target=lock_row)
        blocker.start()
        try:
            assert entered.wait(timeout=5)
            guard = CapacityGuard(store, timeout=0.2)
            started = time.monotonic()
            with pytest.raises(ContentionError):
                guard.with_exclusive_event_access(event.id, lambda e: e)
            waited = time.monotonic() - started
            result = RegistrationService(store, notifier, guard).register(event.id, caller_for(attendee))
        finally:
            release.set()
            blocker.join(timeout=10)

        assert waited < 2
        assert result.error.code is ErrorCode.CONTENTION
        assert store.get_registration_for(attendee.id, event.id) is None

    def test_scan_of_locked_registration_reports_contention(
        self, registration_service, make_event, attendee, caller_for, store
    ):
        registration = registration_service.register(make_event().id, caller_for(attendee)).value
        entered, release = threading.Event(), threading.Event()

        def lock_row():
            with store.atomic():
                store.get_registration_for_update(registration.id)
                entered.set()
                release.wait(timeout=10)

        blocker = threading.Thread(target=lock_row)
        blocker.start()
        try:
            assert entered.wait(timeout=5)
            result = TicketService(store, timeout=0.2).validate(registration.ticket_code)
        finally:
            release.set()
            blocker.join(timeout=10)

        assert result.error.code is ErrorCode.CONTENTION
        assert store.get_registration(registration.id).checked_in_at is None


class TestRowLocks:
    def test_row_locks_are_forgotten_after_use(
        self, registration_service, ticket_service, make_event, make_user, caller_for, store, race
    ):
        event = make_event(capacity=10)
        callers = [caller_for(make_user()) for _ in range(10)]

        registered = race(lambda c: registration_service.register(event.id, c), callers)
        registrations = [r.value for r in registered]
        race(lambda r: ticket_service.validate(r.ticket_code), registrations[:5])
        cancellations = list(zip(registrations[5:], callers[5:]))
        race(lambda pair: registration_service.cancel(pair[0].id, pair[1]), cancellations)

        assert len(store._row_locks) == 0

    def test_row_lock_timeout_forgets_the_waiter(self, store, make_event):
        event = make_event()
        entered, release = threading.Event(), threading.Event()

        def lock_row():
            with store.atomic():
                store.get_event_for_update(event.id)
                entered.set()
                release.wait(timeout=10)

        blocker = threading.Thread(target=lock_row)
        blocker.start()
        try:
            assert entered.wait(timeout=5)
            with pytest.raises(ContentionError), store.atomic():
                store.get_event_for_update(event.id, timeout=0.05)
            assert len(store._row_locks) == 1
        finally:
            release.set()
            blocker.join(timeout=10)

        assert len(store._row_locks) == 0


class TestFairLock:
    def test_waiters_are_served_in_arrival_order(self):
        lock = FairLock()
        assert lock.acquire(timeout=1)
        served = []

        def wait_turn(n):
            assert lock.acquire(timeout=10)
            served.append(n)
            lock.release()

        threads = []
        for n in range(5):
            thread = threading.Thread(target=wait_turn, args=(n,))
            thread.start()
            threads.append(thread)
            # Each waiter must hold its ticket before the next one arrives.
            deadline = time.monotonic() + 5
            while lock._next_ticket < n + 2 and time.monotonic() < deadline:
                time.sleep(0.001)

        lock.release()
        for thread in threads:
            thread.join(timeout=10)

        assert served == [0, 1, 2, 3, 4]

    def test_abandoned_ticket_is_skipped(self):
        lock = FairLock()
        assert lock.acquire(timeout=1)
        assert lock.acquire(timeout=0.05) is False
        lock.release()
        assert lock.acquire(timeout=0.5) is True
        lock.release()


class TestCheckInRace:
    def test_only_one_scan_succeeds(
        self, registration_service, make_event, attendee, caller_for, store, race
    ):
        registration = registration_service.register(make_event().id, caller_for(attendee)).value
        tickets = TicketService(store)

        results = race(lambda _: tickets.validate(registration.ticket_code).value, range(10))

        outcomes = Counter(r.outcome for r in results)
        assert outcomes == {ValidationOutcome.SUCCESS: 1, ValidationOutcome.ALREADY_USED: 9}
        assert len({r.checked_in_at for r in results}) == 1




@pytest.mark.django_db(transaction=True)
class TestDjangoStoreRaces:
    def test_fifteen_callers_five_seats(self, db_store, make_db_event, make_db_user, sink, race):
        event = make_db_event(capacity=5)
        callers = [CallerIdentity(email=make_db_user(f"seat-{n}@example.com").email) for n in range(15)]
        service = RegistrationService(db_store, Notifier(sink))

        results = race(lambda caller: service.register(event.id, caller), callers)

        assert Counter(outcome(r) for r in results) == {"ok": 5, "EVENT_NOT_AVAILABLE:full": 10}
        assert db_store.count_registrations(event.id, RegistrationStatus.CONFIRMED) == 5
        assert len(db_store.list_registrations_for_event(event.id)) == 5

    def test_register_and_cancel_storm_stays_within_capacity(
        self, db_store, make_db_event, make_db_user, sink, race
    ):
        event = make_db_event(capacity=3)
        service = RegistrationService(db_store, Notifier(sink))
        holders = [CallerIdentity(email=make_db_user(f"holder-{n}@example.com").email) for n in range(3)]
        held = [service.register(event.id, c).value for c in holders]
        newcomers = [CallerIdentity(email=make_db_user(f"new-{n}@example.com").email) for n in range(9)]

        def act(job):
            kind, payload = job
            if kind == "cancel":
                registration, caller = payload
                return kind, service.cancel(registration.id, caller)
            return kind, service.register(event.id, payload)

        jobs = [("cancel", pair) for pair in zip(held, holders)] + [("register", c) for c in newcomers]
        results = race(act, jobs)

        assert all(isinstance(r, Success) or r.error.reason == "full" for _, r in results)
        cancelled = sum(1 for kind, r in results if kind == "cancel" and isinstance(r, Success))
        admitted = sum(1 for kind, r in results if kind == "register" and isinstance(r, Success))
        confirmed = db_store.count_registrations(event.id, RegistrationStatus.CONFIRMED)
        assert cancelled == 3
        assert confirmed <= 3
        assert confirmed == 3 - cancelled + admitted

    def test_only_one_scan_succeeds(self, db_store, make_db_event, make_db_user, sink, race):
        event = make_db_event()
        caller = CallerIdentity(email=make_db_user("scanner@example.com").email)
        registration = RegistrationService(db_store, Notifier(sink)).register(event.id, caller).value
        tickets = TicketService(db_store)

        results = race(lambda _: tickets.validate(registration.ticket_code), range(10))

        assert all(isinstance(r, Success) for r in results)
        outcomes = Counter(r.value.outcome for r in results)
        assert outcomes == {ValidationOutcome.SUCCESS: 1, ValidationOutcome.ALREADY_USED: 9}
        assert len({r.value.checked_in_at for r in results}) == 1

    def test_locked_event_reports_contention(self, db_store, make_db_event, make_db_user, sink):
        event = make_db_event()
        user = make_db_user("late@example.com")
        entered, release = threading.Event(), threading.Event()

        def lock_row():
            try:
                with db_store.atomic():
                    db_store.get_event_for_update(event.id)
                    entered.set()
                    release.wait(timeout=10)
            finally:
                connection.close()

        blocker = threading.Thread(target=lock_row)
        blocker.start()
        try:
            assert entered.wait(timeout=5)
            impatient = DjangoStore(lock_timeout=0.3)
            service = RegistrationService(impatient, Notifier(sink), CapacityGuard(impatient, timeout=0.3))
            started = time.monotonic()
            result = service.register(event.id, CallerIdentity(email=user.email))
            waited = time.monotonic() - started
        finally:
            release.set()
            blocker.join(timeout=10)

        assert isinstance(result, Failure)
        assert result.error.code is ErrorCode.CONTENTION
        assert waited < 5
        assert db_store.get_registration_for(user.id, event.id) is None
