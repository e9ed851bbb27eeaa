"""
Generalised SQL Server data access layer.

A single ``DataAccess`` object runs ad-hoc queries, stored procedures,
functions and bulk operations through one interface.  Names are
classified by their prefix (``sp``, ``usp``, ``fn`` ...) to decide
whether a command is sent as text or as a routine invocation, and every
execution mode reports through an ``Outcome`` that carries either the
value or a classified error.  See individual modules for details.
"""

from .errors import (  # noqa: F401
    CommandError,
    ConnectionError,
    DataAccessError,
    ErrorKind,
    TransientError,
    ValidationError,
)
from .result import Outcome  # noqa: F401
from .types import CommandSpec, DataSet, ParameterDescriptor, RoutineParameter, Table  # noqa: F401
from .utils.query_type import QueryKind, classify, is_stored_procedure, validate  # noqa: F401
from .services.data_access import DataAccess  # noqa: F401
