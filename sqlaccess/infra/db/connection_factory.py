"""
Connection handle factory.

Maps aliases to connection strings and builds a new
``ConnectionHandle`` per request.  The ``'default'`` alias reads
``SQLACCESS_CONNECTION_STRING`` lazily, see
``sqlaccess.config.env.Config``.
"""

from __future__ import annotations

from typing import Callable, Dict

from ...config import require_connection_string
from .connection import ConnectionHandle


# Registry mapping aliases to callables that return a connection string.
_registry: Dict[str, Callable[[], str]] = {
    'default': require_connection_string,
}


def register(alias: str, connection_string: str) -> None:
    """Register (or replace) ``alias`` with a fixed connection string."""
    _registry[alias] = lambda: connection_string


def get_connection(alias: str = 'default') -> ConnectionHandle:
    """Obtain a new, closed connection handle by alias.

    Args:
        alias: A registered alias; ``'default'`` is always present.

    Returns:
        A new ``ConnectionHandle``.

    Raises:
        KeyError: If the alias is not registered.
        ValueError: If the default connection string is not configured.
    """
    try:
        factory = _registry[alias]
    except KeyError:
        raise KeyError(f"No connection defined for alias: {alias}") from None
    return ConnectionHandle(factory())
