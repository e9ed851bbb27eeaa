"""
Single-connection ownership.

A ``ConnectionHandle`` owns exactly one physical connection built from
a connection string.  State moves ``Closed -> Open -> Closed`` any
number of times and ends in ``Disposed``; opening an open handle or
closing a closed one does nothing.  After ``dispose`` every operation
except ``dispose`` itself raises ``ConnectionError``.

Executions borrow the handle exclusively through ``lease``/``borrow``.
A second borrower is rejected immediately with ``ConnectionError``
instead of waiting: the handle is not meant to be shared.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, Optional

from ...errors import ConnectionError, DataAccessError
from .mssql import Db, connect

Connector = Callable[[str], Db]


class ConnectionState(str, Enum):
    CLOSED = "Closed"
    OPEN = "Open"
    DISPOSED = "Disposed"


class Lease:
    """Exclusive claim on a handle, released exactly once."""

    def __init__(self, lock: threading.Lock) -> None:
        self._lock = lock
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._lock.release()


class ConnectionHandle:
    """Owns one physical SQL Server connection.

    Args:
        connection_string: Pre-built connection string, see
            ``sqlaccess.infra.db.mssql.parse_connection_string``.
        connector: Callable turning the string into an open ``Db``.
            Defaults to ``mssql.connect``.
    """

    def __init__(self, connection_string: str, connector: Optional[Connector] = None) -> None:
        self.connection_string = connection_string
        self._connector = connector or connect
        self._db: Optional[Db] = None
        self._state = ConnectionState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def in_use(self) -> bool:
        return self._lock.locked()

    def _ensure_usable(self) -> None:
        if self._state is ConnectionState.DISPOSED:
            raise ConnectionError("Connection handle has been disposed")

    def _new_connection(self) -> Db:
        try:
            return self._connector(self.connection_string)
        except DataAccessError:
            raise
        except Exception as exc:
            raise ConnectionError("Could not open a connection to the database.", cause=exc) from exc

    def open(self) -> None:
        self._ensure_usable()
        if self._state is ConnectionState.OPEN:
            return
        self._db = self._new_connection()
        self._state = ConnectionState.OPEN
        logging.debug("[ConnectionHandle] opened", extra={"driver": self._db.driver})

    def close(self) -> None:
        self._ensure_usable()
        if self._state is not ConnectionState.OPEN:
            return
        db, self._db = self._db, None
        self._state = ConnectionState.CLOSED
        try:
            db.close()
        except Exception as exc:
            raise ConnectionError("Could not close the connection to the database.", cause=exc) from exc
        logging.debug("[ConnectionHandle] closed")

    def get(self) -> Optional[Db]:
        """Return the current connection without opening it.

        ``None`` while the handle is closed; callers open it first.
        """
        self._ensure_usable()
        return self._db

    def spawn(self) -> Db:
        """Open a dedicated connection that the caller must close.

        The handle's own connection and state are untouched.
        """
        self._ensure_usable()
        return self._new_connection()

    def lease(self) -> Lease:
        """Claim the handle for one execution.

        Raises:
            ConnectionError: If the handle is disposed or already leased.
        """
        self._ensure_usable()
        if not self._lock.acquire(blocking=False):
            raise ConnectionError("Connection handle is already in use by another execution")
        return Lease(self._lock)

    @contextmanager
    def borrow(self) -> Iterator["ConnectionHandle"]:
        lease = self.lease()
        try:
            yield self
        finally:
            lease.release()

    def dispose(self) -> None:
        """Release the physical connection and move to ``Disposed``.

        Safe to call repeatedly; a driver error while closing is logged
        and the handle is disposed regardless.
        """
        if self._state is ConnectionState.DISPOSED:
            return
        db, self._db = self._db, None
        self._state = ConnectionState.DISPOSED
        if db is not None:
            try:
                db.close()
            except Exception as exc:
                logging.warning("[ConnectionHandle] error closing connection on dispose", exc_info=exc)

    def __enter__(self) -> "ConnectionHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()
