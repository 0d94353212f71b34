"""Turns raised domain errors into ``Result`` values at the service edge."""

import functools
from collections.abc import Callable
from typing import ParamSpec, TypeVar

import structlog

from events.domain.errors import DomainError, InternalError
from events.domain.result import Failure, Result, Success

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def returns_result(func: Callable[P, T]) -> Callable[P, Result[T, DomainError]]:
    """Wrap ``func`` so it returns ``Success``/``Failure`` instead of raising.

    Domain errors become ``Failure(error)``. Anything else is logged with its
    traceback and reported as a generic ``InternalError``.
    """

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T, DomainError]:
        try:
            return Success(value=func(*args, **kwargs))
        except DomainError as error:
            logger.info(
                "operation_rejected",
                operation=func.__qualname__,
                code=error.code.value,
                reason=error.reason,
            )
            return Failure(error=error)
        except Exception:
            logger.exception("operation_failed", operation=func.__qualname__)
            return Failure(error=InternalError())

    return wrapper
