"""Shared fixtures: a scripted fake DB-API driver behind a real ``Db``."""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import pytest

from sqlaccess.infra.db.mssql import Db, parse_connection_string
from sqlaccess.services.data_access import DataAccess

CONNECTION_STRING = "Server=sql01,1433;Database=Sales;User Id=app;Password=secret;Connect Timeout=30"


class FakeDriverError(Exception):
    """Shaped like a pyodbc error: (sqlstate, message)."""


@dataclass
class Result:
    columns: Sequence[str] = ()
    rows: Sequence[tuple] = ()
    rowcount: int = -1


Response = Union[Result, Sequence[Result], Callable[[str, Any], Any], BaseException]


@dataclass
class Handler:
    pattern: str
    response: Response


class FakeCursor:
    def __init__(self, database: "FakeDatabase") -> None:
        self._database = database
        self._pending: List[Result] = []
        self._rows: List[tuple] = []
        self.description = None
        self.rowcount = -1
        self.closed = False
        self.fast_executemany = False

    def _load(self, result: Result) -> None:
        self.description = [(c, None, None, None, None, None, None) for c in result.columns] or None
        self._rows = list(result.rows)
        self.rowcount = result.rowcount

    def execute(self, sql: str, args: Any = None) -> "FakeCursor":
        self._database.executed.append((sql, args))
        results = self._database.respond(sql, args)
        self.description = None
        self.rowcount = -1
        self._rows = []
        self._pending = list(results)
        if self._pending:
            self._load(self._pending.pop(0))
        return self

    def executemany(self, sql: str, rows: Sequence[tuple]) -> None:
        self._database.executed.append((sql, list(rows)))

    def nextset(self) -> bool:
        if not self._pending:
            return False
        self._load(self._pending.pop(0))
        return True

    def fetchone(self) -> Optional[tuple]:
        return self._rows.pop(0) if self._rows else None

    def fetchall(self) -> List[tuple]:
        rows, self._rows = self._rows, []
        return rows

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, database: "FakeDatabase") -> None:
        self._database = database
        self.closed = False
        self.timeout = 0
        self.cursors: List[FakeCursor] = []
        self.bulk_copies: List[Tuple[str, list]] = []

    def cursor(self) -> FakeCursor:
        cursor = FakeCursor(self._database)
        self.cursors.append(cursor)
        return cursor

    def bulk_copy(self, table_name: str, rows: list) -> None:
        self.bulk_copies.append((table_name, rows))

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeDatabase:
    driver: str = "pyodbc"
    handlers: List[Handler] = field(default_factory=list)
    executed: List[Tuple[str, Any]] = field(default_factory=list)
    connections: List[FakeConnection] = field(default_factory=list)
    connect_error: Optional[BaseException] = None

    def on(self, pattern: str, response: Response) -> None:
        """Answer statements matching ``pattern`` (first match wins)."""
        self.handlers.append(Handler(pattern, response))

    def respond(self, sql: str, args: Any) -> List[Result]:
        for handler in self.handlers:
            if re.search(handler.pattern, sql, re.IGNORECASE):
                response = handler.response
                if isinstance(response, BaseException):
                    raise response
                if callable(response):
                    response = response(sql, args)
                if isinstance(response, Result):
                    return [response]
                return list(response)
        return [Result(rowcount=0)]

    def connect(self, raw: str) -> Db:
        if self.connect_error is not None:
            raise self.connect_error
        conn = FakeConnection(self)
        self.connections.append(conn)
        return Db(conn, self.driver, parse_connection_string(raw))

    @property
    def statements(self) -> List[str]:
        return [sql for sql, _ in self.executed]


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def access(fake_db):
    db = DataAccess(CONNECTION_STRING, connector=fake_db.connect)
    yield db
    db.dispose()
