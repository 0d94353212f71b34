"""Outcome values for service operations.

Every public service method hands back either ``Success(value=...)`` or
``Failure(error=...)``. Business rejections such as a full event or a
duplicate registration are ordinary outcomes, so callers branch on the
result instead of catching exceptions:

    match registrations.register(event_id, caller):
        case Success(value=registration):
            send_ticket(registration.ticket_code)
        case Failure(error=error) if error.code is ErrorCode.CONTENTION:
            ask_to_retry()
        case Failure(error=error):
            show(error.message)
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True, kw_only=True)
class Success(Generic[T]):
    """The operation completed; ``value`` is what it produced."""

    value: T


@dataclass(frozen=True, slots=True, kw_only=True)
class Failure(Generic[E]):
    """The operation was refused or faulted; ``error`` says why."""

    error: E


type Result[T, E] = Success[T] | Failure[E]
