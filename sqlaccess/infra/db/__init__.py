"""
Database abstractions for SQL Server connections.

This subpackage wraps either the ``pymssql`` or ``pyodbc`` libraries.
``connect`` returns a ``Db`` exposing driver-neutral binding and
execution helpers; ``ConnectionHandle`` owns one such connection and
its lifecycle; ``get_connection`` builds handles from configuration.
"""

from .mssql import connect, Db, parse_connection_string  # noqa: F401
from .connection import ConnectionHandle, ConnectionState  # noqa: F401
from .connection_factory import get_connection, register  # noqa: F401
