"""
Result values returned by the public service operations.

Expected conditions (capacity exceeded, not found, invalid transition,
exhausted retries) are raised inside transactions and converted into a
failed ``Result`` at the service boundary. Anything else is a programming
error and propagates as an exception.
"""

import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .exceptions import EnrollmentError, ErrorCode

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a typed enrollment error."""

    value: Optional[T] = None
    error: Optional[EnrollmentError] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: EnrollmentError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.error_code if self.error else None

    def unwrap(self) -> T:
        """Return the value, raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        return self.value

    def value_or(self, default: T) -> T:
        return default if self.error is not None else self.value


def as_result(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Result]]:
    """Wrap an async operation so enrollment errors come back as failed results."""

    @wraps(func)
    async def wrapper(*args, **kwargs) -> Result:
        try:
            value = await func(*args, **kwargs)
        except EnrollmentError as e:
            logger.info(f"{func.__name__} failed with {e.error_code.value}: {e.message}")
            return Result.failure(e)
        return Result.ok(value)

    return wrapper
