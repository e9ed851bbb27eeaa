"""
Routine and query name classification.

Database objects are addressed by naming convention: ``spGetOrders`` is
a stored procedure, ``fnTotal`` a function, ``vCustomers`` a view and
so on.  ``classify`` maps a name to a ``QueryKind`` by testing a fixed,
ordered table of case-insensitive prefixes; the first prefix that
matches wins.  The order matters because prefixes overlap (``V`` is a
prefix of names that were meant to be something else) and is kept
exactly as listed in ``PREFIXES``.

Text that starts with ``SEL`` is treated as an inline ``SELECT`` and is
never validated as a routine name.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Tuple

from ..errors import ValidationError


class QueryKind(str, Enum):
    """Semantic kind of a routine or query name."""

    STANDARD_STORED_PROCEDURE = "StandardStoredProcedure"
    USER_DEFINED_STORED_PROCEDURE = "UserDefinedStoredProcedure"
    FUNCTION = "Function"
    TABLE_VALUED_FUNCTION = "TableValuedFunction"
    INLINE_TABLE_VALUED_FUNCTION = "InlineTableValuedFunction"
    SCALAR_VALUED_FUNCTION = "ScalarValuedFunction"
    VIEW = "View"
    TRIGGER = "Trigger"
    SELECT_QUERY = "SelectQuery"
    OTHER = "Other"

    @property
    def is_routine(self) -> bool:
        """True when commands of this kind are sent as a routine invocation."""
        return self in (QueryKind.STANDARD_STORED_PROCEDURE, QueryKind.USER_DEFINED_STORED_PROCEDURE)


SELECT_PREFIX = "SEL"

# Priority order, first match wins.
PREFIXES: Tuple[Tuple[str, QueryKind], ...] = (
    ("SP", QueryKind.STANDARD_STORED_PROCEDURE),
    ("USP", QueryKind.USER_DEFINED_STORED_PROCEDURE),
    ("FN", QueryKind.FUNCTION),
    ("TVF", QueryKind.TABLE_VALUED_FUNCTION),
    ("V", QueryKind.VIEW),
    ("TR", QueryKind.TRIGGER),
    ("IFT", QueryKind.INLINE_TABLE_VALUED_FUNCTION),
    ("SVF", QueryKind.SCALAR_VALUED_FUNCTION),
)

_VALID_NAME = re.compile(r"^[A-Za-z0-9_]+$")


def _starts_with(name: str, prefix: str) -> bool:
    return name[:len(prefix)].upper() == prefix


def validate(name: str) -> bool:
    """Return ``True`` if ``name`` is a well-formed routine name.

    Only ASCII letters, digits and underscores are accepted.  Empty,
    whitespace-only and non-string values are rejected.
    """
    if not isinstance(name, str) or not name.strip():
        return False
    return _VALID_NAME.match(name) is not None


def classify(name: str) -> QueryKind:
    """Classify a routine or query name by its prefix.

    Args:
        name: A routine name such as ``uspInsertOrder`` or inline text
            starting with ``SELECT``.

    Returns:
        The ``QueryKind`` of the first matching prefix, or
        ``QueryKind.OTHER`` if none matches.

    Raises:
        ValidationError: If ``name`` does not start with ``SEL`` and is
            not a valid routine name.
    """
    if isinstance(name, str) and _starts_with(name, SELECT_PREFIX):
        return QueryKind.SELECT_QUERY
    if not validate(name):
        raise ValidationError(f"Invalid query name detected: {name!r}")
    for prefix, kind in PREFIXES:
        if _starts_with(name, prefix):
            return kind
    return QueryKind.OTHER


def is_stored_procedure(name: str) -> bool:
    """True iff ``name`` is valid and starts with ``SP`` or ``USP``."""
    if not validate(name):
        return False
    return _starts_with(name, "SP") or _starts_with(name, "USP")
