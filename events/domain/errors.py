"""Domain error codes for the registrations core.

Errors are raised inside the core to abort the surrounding transaction and
are turned into ``Failure`` values at the service boundary.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_REGISTRATION = "DUPLICATE_REGISTRATION"
    EVENT_NOT_AVAILABLE = "EVENT_NOT_AVAILABLE"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    ACCESS_DENIED = "ACCESS_DENIED"
    CONTENTION = "CONTENTION"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL = "INTERNAL"


class UnavailableReason(str, Enum):
    """Why an event refused a registration."""

    NOT_PUBLISHED = "not_published"
    ALREADY_STARTED = "already_started"
    FULL = "full"


@dataclass(frozen=True)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str
    reason: str | None = None

    def __str__(self) -> str:
        if self.reason:
            return f"{self.code.value}: {self.message} ({self.reason})"
        return f"{self.code.value}: {self.message}"


class NotFoundError(DomainError):
    """Raised when a user, event or registration does not exist."""

    def __init__(self, resource: str, identifier: object) -> None:
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"{resource} not found",
            reason=str(identifier),
        )


class DuplicateRegistrationError(DomainError):
    """Raised when the user already holds an active registration."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.DUPLICATE_REGISTRATION,
            message="You are already registered for this event",
        )


class EventNotAvailableError(DomainError):
    """Raised when an event does not admit a new registration."""

    def __init__(self, reason: UnavailableReason, detail: str) -> None:
        super().__init__(
            code=ErrorCode.EVENT_NOT_AVAILABLE,
            message=f"Cannot register for this event: {detail}",
            reason=reason.value,
        )


class InvalidStateTransitionError(DomainError):
    """Raised on an illegal lifecycle move."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.INVALID_STATE_TRANSITION, message=message)


class AccessDeniedError(DomainError):
    """Raised when the caller neither owns the resource nor is privileged."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.ACCESS_DENIED, message=message)


class ContentionError(DomainError):
    """Raised when the per-event section could not be entered in time."""

    def __init__(self, timeout: float) -> None:
        super().__init__(
            code=ErrorCode.CONTENTION,
            message="The event is busy, please try again",
            reason=f"lock not acquired within {timeout:g}s",
        )


class ValidationError(DomainError):
    """Raised when event fields are malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.VALIDATION_ERROR, message=message)


class InternalError(DomainError):
    """Stand-in for unexpected faults; never carries implementation detail."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.INTERNAL,
            message="An unexpected error occurred",
        )


class UniqueViolation(Exception):
    """Raised by stores when a storage-level unique constraint is violated.

    ``field`` names the constraint that fired (``ticket_code`` or
    ``user_event``).
    """

    def __init__(self, field: str) -> None:
        super().__init__(f"unique constraint violated: {field}")
        self.field = field
