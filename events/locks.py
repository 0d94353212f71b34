"""Process-local locks keyed by id.

``FairLock`` serves waiters in arrival order. ``LockRegistry`` hands out one
``FairLock`` per key and forgets the key once nobody holds or waits on it,
so memory stays bounded by the number of keys currently in use.
"""

import threading
import time
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

import structlog

from events.domain.errors import ContentionError

logger = structlog.get_logger(__name__)


class FairLock:
    """Ticket lock: waiters acquire in arrival order.

    A waiter that gives up leaves its ticket behind; the ticket is skipped
    when its turn comes.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._next_ticket = 0
        self._serving = 0
        self._abandoned: set[int] = set()

    def acquire(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._serving:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._abandoned.add(ticket)
                    return False
                self._cond.wait(remaining)
            return True

    def release(self) -> None:
        with self._cond:
            self._serving += 1
            while self._serving in self._abandoned:
                self._abandoned.discard(self._serving)
                self._serving += 1
            self._cond.notify_all()


@dataclass
class _Entry:
    lock: FairLock = field(default_factory=FairLock)
    users: int = 0


class LockRegistry:
    """One FairLock per key, dropped once nobody needs it."""

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def checkout(self, key: Hashable) -> FairLock:
        with self._mutex:
            entry = self._entries.setdefault(key, _Entry())
            entry.users += 1
            return entry.lock

    def checkin(self, key: Hashable) -> None:
        with self._mutex:
            entry = self._entries[key]
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    def __len__(self) -> int:
        with self._mutex:
            return len(self._entries)


@contextmanager
def hold(registry: LockRegistry, key: Hashable, timeout: float) -> Iterator[None]:
    """Hold the lock for ``key`` for the duration of the block.

    Raises:
        ContentionError: If the lock was not acquired within ``timeout`` seconds.
    """
    lock = registry.checkout(key)
    try:
        started = time.monotonic()
        if not lock.acquire(timeout):
            logger.warning("lock_timeout", key=str(key), timeout=timeout)
            raise ContentionError(timeout)
        logger.debug(
            "lock_acquired",
            key=str(key),
            waited_ms=round((time.monotonic() - started) * 1000, 1),
        )
        try:
            yield
        finally:
            lock.release()
    finally:
        registry.checkin(key)
