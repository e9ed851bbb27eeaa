"""
Failure taxonomy for the data access layer.

Every failure the layer reports is a ``DataAccessError`` tagged with an
``ErrorKind``:

* ``ValidationError`` – malformed routine or query name.
* ``ConnectionError`` – opening or closing the physical connection
  failed, or the handle is disposed or busy.
* ``CommandError`` – the driver failed while executing a command.
* ``TransientError`` – a ``CommandError`` whose driver error number is
  in ``TRANSIENT_ERROR_NUMBERS``.  Retry policies may key off it; the
  layer itself never retries.

Driver exceptions are turned into this taxonomy by
``translate_driver_error``.  Error numbers are read from ``pymssql``
exceptions (``number`` attribute or a ``(number, message)`` first
argument) and from ``pyodbc`` messages, which carry the native error as
``(4060)`` in the text.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional

# Timeout, cannot open database, connection broken.
TRANSIENT_ERROR_NUMBERS = frozenset({-2, 4060, 40101})

# pyodbc reports client-side timeouts by SQLSTATE only.
_TIMEOUT_SQLSTATES = frozenset({"HYT00", "HYT01"})

_NATIVE_NUMBER = re.compile(r"\((-?\d+)\)")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONNECTION = "connection"
    COMMAND = "command"
    TRANSIENT = "transient"


class DataAccessError(Exception):
    """Base exception for data access failures.

    Args:
        message: Human readable description.
        cause: The underlying driver exception, if any.  It is also set
            as ``__cause__`` so tracebacks show the chain even when the
            error is carried in an ``Outcome`` instead of being raised.
    """

    kind: ErrorKind = ErrorKind.COMMAND

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class ValidationError(DataAccessError):
    kind = ErrorKind.VALIDATION


class ConnectionError(DataAccessError):  # noqa: A001
    kind = ErrorKind.CONNECTION


class CommandError(DataAccessError):
    kind = ErrorKind.COMMAND

    def __init__(self, message: str, cause: Optional[BaseException] = None,
                 number: Optional[int] = None) -> None:
        super().__init__(message, cause)
        self.number = number


class TransientError(CommandError):
    kind = ErrorKind.TRANSIENT


def error_number(exc: BaseException) -> Optional[int]:
    """Extract the SQL Server error number from a driver exception."""
    number = getattr(exc, "number", None)
    if isinstance(number, int):
        return number
    args = getattr(exc, "args", ())
    if args:
        first = args[0]
        if isinstance(first, int):
            return first
        if isinstance(first, tuple) and first and isinstance(first[0], int):
            return first[0]
        if isinstance(first, str) and first in _TIMEOUT_SQLSTATES:
            return -2
    for arg in args:
        if isinstance(arg, str):
            match = _NATIVE_NUMBER.search(arg)
            if match:
                return int(match.group(1))
    return None


def is_transient(exc: BaseException) -> bool:
    return error_number(exc) in TRANSIENT_ERROR_NUMBERS


def translate_driver_error(exc: BaseException, message: str) -> DataAccessError:
    """Classify ``exc`` into the taxonomy.

    Errors already in the taxonomy are returned unchanged so that
    validation and connection failures raised deeper in the stack keep
    their kind.
    """
    if isinstance(exc, DataAccessError):
        return exc
    number = error_number(exc)
    detail = f"{message}: {exc}"
    if number in TRANSIENT_ERROR_NUMBERS:
        return TransientError(detail, cause=exc, number=number)
    return CommandError(detail, cause=exc, number=number)
