"""
Explicit execution outcome.

Every ``DataAccess`` mode returns an ``Outcome``: either a value or a
classified ``DataAccessError`` that keeps the original driver exception
as its cause.  Call sites pick their own policy::

    affected = db.non_query(spec).value_or(-1)      # best effort
    rows = db.procedure_query(...).unwrap()          # raise on failure
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from .errors import DataAccessError, ErrorKind

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[DataAccessError] = None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: DataAccessError) -> "Outcome[Any]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    @property
    def cause(self) -> Optional[BaseException]:
        return self.error.cause if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def value_or(self, default: U) -> "T | U":
        return default if self.error is not None else self.value  # type: ignore[return-value]

    def map(self, func: Callable[[T], U]) -> "Outcome[U]":
        """Apply ``func`` to a successful value.

        Exceptions raised by ``func`` are not captured: they belong to
        the caller (row mappers, for instance) and propagate unchanged.
        """
        if self.error is not None:
            return Outcome(error=self.error)
        return Outcome(value=func(self.value))  # type: ignore[arg-type]

    def __bool__(self) -> bool:
        return self.ok
