"""
Forward-only result streams.

``RowCursor`` (``DataAccess.reader``) and ``RowStream``
(``DataAccess.reader_lazy``) keep the driver cursor, the open
connection and the handle's lease alive while rows are pulled one at a
time.  Everything is released exactly once, on whichever comes first:

* the last row has been read,
* ``close()`` is called or the ``with`` block exits,
* the object is garbage collected.

Streams are single-pass.  Once released, further iteration yields
nothing and the command is never executed again; call the reader again
to re-run it.  Holding a partially consumed stream keeps the connection
busy, so close it (or use ``with``) when stopping early.
"""

from __future__ import annotations

import logging
import weakref
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from ..errors import translate_driver_error
from ..infra.db.connection import ConnectionHandle, ConnectionState, Lease

T = TypeVar("T")

Row = Dict[str, Any]


def _release(cursor: Any, handle: ConnectionHandle, lease: Lease) -> None:
    try:
        cursor.close()
    except Exception as exc:
        logging.warning("[streams] error closing cursor", exc_info=exc)
    try:
        if handle.state is ConnectionState.OPEN:
            handle.close()
    except Exception as exc:
        logging.warning("[streams] error closing connection", exc_info=exc)
    finally:
        lease.release()


class RowCursor:
    """Forward-only cursor over a result set; rows are dicts."""

    def __init__(self, cursor: Any, handle: ConnectionHandle, lease: Lease) -> None:
        self._cursor = cursor
        self.columns: List[str] = [col[0] for col in cursor.description] if cursor.description else []
        self._finalizer = weakref.finalize(self, _release, cursor, handle, lease)

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def _fetch(self) -> Optional[Row]:
        if self.closed:
            return None
        try:
            row = self._cursor.fetchone()
        except Exception as exc:
            self.close()
            raise translate_driver_error(exc, "Error fetching row") from exc
        if row is None:
            self.close()
            return None
        return dict(zip(self.columns, row))

    def __iter__(self) -> "RowCursor":
        return self

    def __next__(self) -> Row:
        row = self._fetch()
        if row is None:
            raise StopIteration
        return row

    def close(self) -> None:
        self._finalizer()

    def __enter__(self) -> "RowCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class RowStream(Generic[T]):
    """Lazy, single-pass sequence of mapped rows.

    Each advancement fetches one row and passes it to ``mapper``.  A
    mapper exception releases the stream and then propagates unchanged.
    """

    def __init__(self, rows: RowCursor, mapper: Callable[[Row], T]) -> None:
        self._rows = rows
        self._mapper = mapper

    @property
    def closed(self) -> bool:
        return self._rows.closed

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        row = next(self._rows)
        try:
            return self._mapper(row)
        except BaseException:
            self._rows.close()
            raise

    def close(self) -> None:
        self._rows.close()

    def __enter__(self) -> "RowStream[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
