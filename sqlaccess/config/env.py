"""
Environment configuration loader.

This module reads the environment variables that tune the data access
layer and exposes them via a simple ``Config`` class.  A ``.env`` file
in the working directory is honoured through ``python-dotenv``.
Nothing is required at import time: the connection string is only
demanded when a connection is actually built, see
``require_connection_string``.

Supported variables:

* ``SQLACCESS_CONNECTION_STRING`` – default SQL Server connection string.
* ``SQLACCESS_DRIVER`` – ``auto`` (default), ``pymssql`` or ``pyodbc``.
* ``SQLACCESS_ODBC_DRIVER`` – ODBC driver name used with ``pyodbc``
  (default ``'ODBC Driver 17 for SQL Server'``).
* ``SQLACCESS_COMMAND_TIMEOUT`` – timeout in seconds applied to routine
  invocations (default ``600``).
* ``SQLACCESS_OUTPUT_PARAM`` – name of the conventional output parameter
  (default ``'OutputParam'``).

The resulting ``config`` instance can be imported from
``sqlaccess.config``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

from ..utils.query_type import validate

load_dotenv()

_DRIVERS = ("auto", "pymssql", "pyodbc")


@dataclass
class Config:
    """Holds environment configuration for the data access layer."""

    CONNECTION_STRING: Optional[str] = None
    DRIVER: str = "auto"
    ODBC_DRIVER: str = "ODBC Driver 17 for SQL Server"
    COMMAND_TIMEOUT: int = 600
    OUTPUT_PARAM: str = "OutputParam"


def _load_env() -> Config:
    """Load configuration from environment variables.

    Raises:
        ValueError: If a variable is present but malformed.

    Returns:
        Config: A populated configuration dataclass.
    """

    def _int(name: str, default: int) -> int:
        value = os.environ.get(name)
        if not value:
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Environment variable {name} must be an integer, got {value!r}") from None

    driver = (os.environ.get("SQLACCESS_DRIVER") or "auto").strip().lower()
    if driver not in _DRIVERS:
        raise ValueError(f"Environment variable SQLACCESS_DRIVER must be one of {', '.join(_DRIVERS)}")

    output_param = os.environ.get("SQLACCESS_OUTPUT_PARAM") or "OutputParam"
    if not validate(output_param):
        raise ValueError(f"Environment variable SQLACCESS_OUTPUT_PARAM must be a plain identifier, got {output_param!r}")

    return Config(
        CONNECTION_STRING=os.environ.get("SQLACCESS_CONNECTION_STRING") or None,
        DRIVER=driver,
        ODBC_DRIVER=os.environ.get("SQLACCESS_ODBC_DRIVER", "ODBC Driver 17 for SQL Server"),
        COMMAND_TIMEOUT=_int("SQLACCESS_COMMAND_TIMEOUT", 600),
        OUTPUT_PARAM=output_param,
    )


def require_connection_string() -> str:
    """Return the configured connection string.

    Raises:
        ValueError: If ``SQLACCESS_CONNECTION_STRING`` is missing or empty.
    """
    if not config.CONNECTION_STRING:
        raise ValueError("Environment variable SQLACCESS_CONNECTION_STRING is required")
    return config.CONNECTION_STRING


# Create a single configuration instance when this module is imported.
config: Config = _load_env()
