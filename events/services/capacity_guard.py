"""Per-event critical section for capacity decisions.

A caller holding the section for an event is the only one deciding whether
that event admits another registration. The section is a process-local,
first-come-first-served lock keyed by event id, wrapped around a store
transaction that also row-locks the event (``select_for_update``), so the
confirmed count is always read after the lock is taken and the lock is only
released once the decision is committed.

One deadline covers both waits: whatever is left of it after the process
lock is handed to the store for the row lock.
"""

import time
from collections.abc import Callable
from typing import TypeVar

from django.conf import settings

from events.domain import Event, EventId
from events.domain.errors import ContentionError, NotFoundError
from events.locks import LockRegistry, hold
from events.stores.interfaces import Store

T = TypeVar("T")

# Shared by every guard in the process so that two services built over the
# same store still serialize on the same event.
_registry = LockRegistry()


class CapacityGuard:
    """Serializes capacity decisions per event, never across events."""

    def __init__(
        self,
        store: Store,
        timeout: float | None = None,
        registry: LockRegistry | None = None,
    ) -> None:
        self._store = store
        self._timeout = settings.REGISTRATION_LOCK_TIMEOUT if timeout is None else timeout
        self._registry = registry or _registry

    def with_exclusive_event_access(
        self, event_id: EventId, fn: Callable[[Event], T], timeout: float | None = None
    ) -> T:
        """Run ``fn(event)`` while holding the event's section.

        ``fn`` receives the event as read under the row lock and runs inside
        the store transaction; its writes are committed before the section is
        released. Exceptions from ``fn`` roll the transaction back.

        Raises:
            ContentionError: If the section was not entered within ``timeout``
                seconds. Nothing has been applied in that case.
            NotFoundError: If the event does not exist.
        """
        timeout = self._timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        with hold(self._registry, ("event", event_id), timeout):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ContentionError(timeout)
            with self._store.atomic():
                event = self._store.get_event_for_update(event_id, timeout=remaining)
                if event is None:
                    raise NotFoundError("Event", event_id)
                return fn(event)
