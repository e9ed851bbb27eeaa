"""
Command execution over one owned SQL Server connection.

``DataAccess`` runs text queries, stored procedures, functions and bulk
operations through one interface.  Each call builds a ``CommandSpec``
(classifying the name when no kind is given), takes an exclusive lease
on the ``ConnectionHandle``, opens it if needed, runs the command in the
requested mode and returns an ``Outcome``.

Commands of kind ``StandardStoredProcedure`` or
``UserDefinedStoredProcedure`` are sent as routine invocations
(``EXEC name @p = ...``); every other kind, including ``SelectQuery``,
is sent as text.  The ``procedure_*`` modes always invoke a routine.

Validation, connection and driver failures never escape as exceptions:
they come back as a failed ``Outcome`` carrying the classified error and
its cause.  Exceptions raised by caller-supplied row mappers are not
captured.

``non_query`` and ``scalar`` leave the connection open for the next
call; every other mode closes it when done (the readers when their
cursor or stream is released).

Example usage::

    with DataAccess(os.environ["SQLACCESS_CONNECTION_STRING"]) as db:
        count = db.non_query("uspArchiveOrders", parameters=[("days", 30)]).value_or(-1)
        names = db.paginated("SELECT name FROM Customers ORDER BY id", 0, 50,
                             lambda row: row["name"]).unwrap()
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar, Union

from ..config import config
from ..errors import CommandError, DataAccessError, ErrorKind, ValidationError, translate_driver_error
from ..infra.db.connection import ConnectionHandle, Connector
from ..infra.db.connection_factory import get_connection
from ..infra.db.mssql import Db
from ..result import Outcome
from ..types import CommandSpec, DataSet, Parameter, ParameterDescriptor, RoutineParameter, Table
from ..utils.query_type import QueryKind, classify, is_stored_procedure, validate
from .streams import Row, RowCursor, RowStream

T = TypeVar("T")

Query = Union[str, CommandSpec]
Mapper = Callable[[Row], T]

# Failures after which the open connection is not reused.
_BROKEN = (ErrorKind.TRANSIENT, ErrorKind.CONNECTION)

_DESCRIBE_SQL = (
    "SELECT p.name AS parameter_name, TYPE_NAME(p.user_type_id) AS type_name, "
    "p.parameter_id, p.is_output, o.object_id "
    "FROM (SELECT OBJECT_ID(@routine) AS object_id) AS o "
    "LEFT JOIN sys.parameters AS p ON p.object_id = o.object_id "
    "ORDER BY p.parameter_id"
)


def _close_cursor(cursor: Any) -> None:
    try:
        cursor.close()
    except Exception as exc:
        logging.warning("[DataAccess] error closing cursor", exc_info=exc)


def _advance(cursor: Any) -> bool:
    """Move to the next result set that has columns."""
    while cursor.description is None:
        if not cursor.nextset():
            return False
    return True


def _table(cursor: Any) -> Table:
    columns = [col[0] for col in cursor.description]
    return Table(columns=columns, rows=[tuple(row) for row in cursor.fetchall()])


def _read_table(cursor: Any) -> Table:
    if not _advance(cursor):
        return Table()
    return _table(cursor)


def _read_dataset(cursor: Any) -> DataSet:
    tables: List[Table] = []
    while True:
        if cursor.description is not None:
            tables.append(_table(cursor))
        if not cursor.nextset():
            return DataSet(tables)


def _first_value(cursor: Any) -> Any:
    if not _advance(cursor):
        return None
    row = cursor.fetchone()
    return row[0] if row else None


def _last_value(cursor: Any) -> Any:
    value = None
    while True:
        if cursor.description is not None:
            row = cursor.fetchone()
            value = row[0] if row else None
        if not cursor.nextset():
            return value


def _validate_object_name(name: str) -> None:
    """Accept ``Table``, ``schema.Table`` or ``[schema].[Table]``."""
    parts = name.split(".") if isinstance(name, str) else [""]
    if len(parts) > 3 or not all(validate(p.strip("[]")) for p in parts):
        raise ValidationError(f"Invalid object name detected: {name!r}")


class DataAccess:
    """Executes commands against one owned connection.

    Args:
        connection_string: Pre-built connection string.  Ignored when
            ``handle`` is given.
        handle: An existing ``ConnectionHandle`` to take ownership of.
        connector: Forwarded to the ``ConnectionHandle`` built from
            ``connection_string``.

    Not safe for concurrent use: a call made while another execution
    holds the handle fails with ``ConnectionError``.
    """

    def __init__(self, connection_string: Optional[str] = None, *,
                 handle: Optional[ConnectionHandle] = None,
                 connector: Optional[Connector] = None) -> None:
        if handle is None:
            if not connection_string:
                raise ValueError("A connection string or a ConnectionHandle is required")
            handle = ConnectionHandle(connection_string, connector=connector)
        self._handle = handle

    @classmethod
    def from_alias(cls, alias: str = 'default') -> "DataAccess":
        return cls(handle=get_connection(alias))

    @property
    def handle(self) -> ConnectionHandle:
        return self._handle

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _spec(query: Query, kind: Optional[QueryKind] = None,
              parameters: Optional[Sequence[Parameter]] = None,
              timeout: Optional[int] = None) -> CommandSpec:
        if isinstance(query, CommandSpec):
            return query
        return CommandSpec.of(query, kind, parameters, timeout)

    @staticmethod
    def _routine_spec(name: str, parameters: Optional[Sequence[Parameter]] = None) -> CommandSpec:
        if not validate(name):
            raise ValidationError(f"Invalid routine name detected: {name!r}")
        kind = classify(name) if is_stored_procedure(name) else QueryKind.STANDARD_STORED_PROCEDURE
        return CommandSpec.of(name, kind, parameters, config.COMMAND_TIMEOUT)

    @staticmethod
    def _render(db: Db, spec: CommandSpec, output: Optional[str] = None) -> Tuple[str, Any]:
        if spec.is_routine or output:
            if not validate(spec.text):
                raise ValidationError(f"Invalid routine name detected: {spec.text!r}")
            return db.bind_routine(spec.text, spec.parameters, output=output)
        return db.bind_text(spec.text, spec.parameter_map())

    def _run(self, db: Db, cursor: Any, spec: CommandSpec, output: Optional[str] = None) -> Any:
        sql, args = self._render(db, spec, output)
        return db.execute(cursor, sql, args)

    @staticmethod
    def _failed(label: str, error: DataAccessError) -> Outcome[Any]:
        logging.error("[DataAccess] %s failed", label, exc_info=error, extra={"kind": error.kind.value})
        return Outcome.failure(error)

    def _close_connection(self) -> None:
        try:
            self._handle.close()
        except DataAccessError as exc:
            logging.warning("[DataAccess] error closing connection", exc_info=exc)

    def _session(self, label: str, action: Callable[[Db, Any], T],
                 timeout: Optional[int] = None, keep_open: bool = False) -> Outcome[T]:
        """Lease, open and hand a fresh cursor to ``action``."""
        try:
            lease = self._handle.lease()
        except DataAccessError as err:
            return self._failed(label, err)
        cursor = None
        try:
            self._handle.open()
            db = self._handle.get()
            db.set_timeout(timeout)
            cursor = db.cursor()
            return Outcome.success(action(db, cursor))
        except Exception as exc:
            error = translate_driver_error(exc, f"Error executing {label}")
            if error.kind in _BROKEN:
                # The connection may be dead; the next call reopens.
                keep_open = False
            return self._failed(label, error)
        finally:
            if cursor is not None:
                _close_cursor(cursor)
            if not keep_open:
                self._close_connection()
            lease.release()

    def _execute(self, label: str, build: Callable[[], CommandSpec],
                 read: Callable[[Any], T], output: Optional[str] = None,
                 keep_open: bool = False) -> Outcome[T]:
        """Build a spec, run it and pass the executed cursor to ``read``."""
        try:
            spec = build()
        except DataAccessError as err:
            return self._failed(label, err)
        logging.info("[DataAccess] %s executing", label, extra={
            "query": spec.text,
            "kind": spec.kind.value,
            "params": [name for name, _ in spec.parameters],
        })
        return self._session(
            label,
            lambda db, cursor: read(self._run(db, cursor, spec, output)),
            timeout=spec.timeout,
            keep_open=keep_open,
        )

    # ------------------------------------------------------------------
    # execution modes
    # ------------------------------------------------------------------

    def non_query(self, query: Query, kind: Optional[QueryKind] = None,
                  parameters: Optional[Sequence[Parameter]] = None) -> Outcome[int]:
        """Execute a command and return the affected row count.

        Use ``.value_or(-1)`` for the classic ``-1`` failure sentinel.
        """
        return self._execute(
            "non_query",
            lambda: self._spec(query, kind, parameters),
            lambda cursor: cursor.rowcount,
            keep_open=True,
        )

    def scalar(self, query: Query, kind: Optional[QueryKind] = None,
               parameters: Optional[Sequence[Parameter]] = None) -> Outcome[Any]:
        """Return the first column of the first row, or ``None`` if empty."""
        return self._execute(
            "scalar",
            lambda: self._spec(query, kind, parameters),
            _first_value,
            keep_open=True,
        )

    def reader(self, query: Query, kind: Optional[QueryKind] = None,
               parameters: Optional[Sequence[Parameter]] = None) -> Outcome[RowCursor]:
        """Execute and return a forward-only ``RowCursor``.

        The cursor holds the connection and the handle's lease until it
        is exhausted, closed or collected.  If execution fails the
        cursor and connection are released before returning.
        """
        label = "reader"
        try:
            spec = self._spec(query, kind, parameters)
            lease = self._handle.lease()
        except DataAccessError as err:
            return self._failed(label, err)
        logging.info("[DataAccess] %s executing", label, extra={"query": spec.text, "kind": spec.kind.value})
        cursor = None
        try:
            self._handle.open()
            db = self._handle.get()
            db.set_timeout(spec.timeout)
            cursor = db.cursor()
            self._run(db, cursor, spec)
            _advance(cursor)
            return Outcome.success(RowCursor(cursor, self._handle, lease))
        except Exception as exc:
            if cursor is not None:
                _close_cursor(cursor)
            self._close_connection()
            lease.release()
            return self._failed(label, translate_driver_error(exc, f"Error executing {label}"))

    def reader_lazy(self, query: Query, mapper: Mapper, kind: Optional[QueryKind] = None,
                    parameters: Optional[Sequence[Parameter]] = None) -> Outcome[RowStream[T]]:
        """Execute now and map rows lazily, one per advancement.

        The stream keeps the connection busy until it is fully consumed
        or closed; stopping early without ``close()`` (or ``with``)
        leaves the handle leased until the stream is collected.  The
        stream cannot be restarted.
        """
        return self.reader(query, kind, parameters).map(lambda rows: RowStream(rows, mapper))

    def paginated(self, query: str, page_index: int, page_size: int, mapper: Mapper,
                  parameters: Optional[Sequence[Parameter]] = None) -> Outcome[List[T]]:
        """Return one page of ``query`` mapped through ``mapper``.

        ``query`` must end with a deterministic ``ORDER BY`` and must not
        carry its own ``OFFSET``/``FETCH`` clause; rows
        ``page_index * page_size`` to ``page_index * page_size +
        page_size - 1`` are returned.
        """
        def build() -> CommandSpec:
            if page_index < 0 or page_size <= 0:
                raise ValidationError(
                    f"Invalid page: index={page_index} size={page_size}"
                )
            text = query.rstrip().rstrip(";")
            text = f"{text} OFFSET {page_index * page_size} ROWS FETCH NEXT {page_size} ROWS ONLY"
            return CommandSpec.of(text, QueryKind.SELECT_QUERY, parameters)

        table = self._execute("paginated", build, _read_table)
        return table.map(lambda t: [mapper(row) for row in t.as_dicts()])

    def procedure_query(self, name: str, parameters: Optional[Sequence[Parameter]],
                        mapper: Mapper) -> Outcome[List[T]]:
        """Invoke a routine and map every row of its first result set."""
        table = self._execute("procedure_query", lambda: self._routine_spec(name, parameters), _read_table)
        return table.map(lambda t: [mapper(row) for row in t.as_dicts()])

    def procedure_to_table(self, name: str,
                           parameters: Optional[Sequence[Parameter]] = None) -> Outcome[Table]:
        """Invoke a routine and return its first result set."""
        return self._execute("procedure_to_table", lambda: self._routine_spec(name, parameters), _read_table)

    def describe_procedure(self, name: str) -> Outcome[ParameterDescriptor]:
        """Read a routine's declared parameters from ``sys.parameters``."""
        def build() -> CommandSpec:
            if not validate(name):
                raise ValidationError(f"Invalid routine name detected: {name!r}")
            return CommandSpec.of(_DESCRIBE_SQL, QueryKind.SELECT_QUERY, [("routine", name)])

        def read(cursor: Any) -> ParameterDescriptor:
            rows = _read_table(cursor).as_dicts()
            if not rows or rows[0]["object_id"] is None:
                raise CommandError(f"Could not find stored procedure '{name}'")
            return ParameterDescriptor(name, tuple(
                RoutineParameter(
                    name=row["parameter_name"].lstrip("@"),
                    type_name=row["type_name"],
                    ordinal=row["parameter_id"],
                    is_output=bool(row["is_output"]),
                )
                for row in rows if row["parameter_name"] is not None
            ))

        return self._execute("describe_procedure", build, read)

    def _invoke_described(self, label: str, name: str, values: Optional[Sequence[Any]],
                          read: Callable[[Any], T]) -> Outcome[T]:
        described = self.describe_procedure(name)
        if not described.ok:
            return Outcome.failure(described.error)
        descriptor = described.value
        return self._execute(
            label,
            lambda: CommandSpec.of(name, QueryKind.STANDARD_STORED_PROCEDURE,
                                   descriptor.bind(values), config.COMMAND_TIMEOUT),
            read,
        )

    def procedure_dynamic(self, name: str, values: Optional[Sequence[Any]] = None) -> Outcome[DataSet]:
        """Describe ``name``, bind ``values`` by position and return every result set."""
        return self._invoke_described("procedure_dynamic", name, values, _read_dataset)

    def procedure_table(self, name: str, values: Optional[Sequence[Any]] = None) -> Outcome[Table]:
        """Like ``procedure_dynamic`` but return only the first result set."""
        return self._invoke_described("procedure_table", name, values, _read_table)

    def procedure_with_output(self, name: str,
                              parameters: Optional[Sequence[Parameter]] = None) -> Outcome[Any]:
        """Invoke a routine with one ``NVARCHAR`` output parameter.

        The parameter is named ``config.OUTPUT_PARAM`` (``@OutputParam``
        by default); its post-execution value is returned.
        """
        return self._execute(
            "procedure_with_output",
            lambda: self._routine_spec(name, parameters),
            _last_value,
            output=config.OUTPUT_PARAM,
        )

    def batch(self, entries: Sequence[Tuple[Query, Optional[Sequence[Parameter]]]],
              kind: QueryKind) -> Outcome[bool]:
        """Run ``entries`` in order on one connection and one cursor.

        Not transactional: statements already run stay committed when a
        later one fails, and the rest are not attempted.
        """
        def action(db: Db, cursor: Any) -> bool:
            for position, (query, parameters) in enumerate(entries, start=1):
                spec = self._spec(query, kind, parameters)
                logging.debug("[DataAccess] batch statement", extra={"position": position, "query": spec.text})
                self._run(db, cursor, spec)
            return True

        logging.info("[DataAccess] batch executing", extra={"count": len(entries), "kind": kind.value})
        return self._session("batch", action)

    def bulk_load(self, table: Table, destination: str) -> Outcome[int]:
        """Copy ``table`` into ``destination`` over a dedicated connection."""
        label = "bulk_load"
        try:
            _validate_object_name(destination)
        except ValidationError as err:
            return self._failed(label, err)
        logging.info("[DataAccess] %s executing", label, extra={"destination": destination, "count": len(table)})
        try:
            db = self._handle.spawn()
        except DataAccessError as err:
            return self._failed(label, err)
        try:
            return Outcome.success(db.bulk_copy(destination, table))
        except Exception as exc:
            return self._failed(label, translate_driver_error(exc, f"Error executing {label}"))
        finally:
            try:
                db.close()
            except Exception as exc:
                logging.warning("[DataAccess] error closing bulk connection", exc_info=exc)

    def connection_statistics(self) -> Outcome[str]:
        """Open the connection and describe it; diagnostic only."""
        def action(db: Db, cursor: Any) -> str:
            db.execute(cursor, "SELECT DB_NAME()")
            database = _first_value(cursor) or db.settings.get("database")
            return "\n".join([
                f"Connection State: {self._handle.state.value}",
                f"Connection Timeout: {db.login_timeout} seconds",
                f"Database: {database}",
                f"Data Source: {db.data_source}",
            ])

        return self._session("connection_statistics", action)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def dispose(self) -> None:
        self._handle.dispose()

    def __enter__(self) -> "DataAccess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()
