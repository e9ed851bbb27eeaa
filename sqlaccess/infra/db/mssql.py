"""
SQL Server driver boundary.

Python has no single SQL Server driver, so this module connects with
either ``pymssql`` or ``pyodbc``.  ``connect`` honours the configured
driver (``SQLACCESS_DRIVER``); in ``auto`` mode ``pymssql`` is tried
first and ``pyodbc`` is the fallback.  If neither is installed an
``ImportError`` is raised.

The returned ``Db`` hides the differences between the two drivers:

* SQL text may contain named parameters prefixed with ``@`` (e.g.
  ``@idOrder``).  For ``pymssql`` these become ``%(idOrder)s``
  placeholders; for ``pyodbc`` they become ``?`` and the values are
  passed positionally in order of appearance.  Tokens that are not
  bound parameters (local variables, ``@@SERVERNAME``) are left alone.
* Routine invocations are rendered as ``EXEC name @p = <placeholder>``
  so both drivers bind them the same way.  The conventional output
  parameter is declared, passed ``OUTPUT`` and selected back.
* Bulk copy uses ``pymssql``'s native ``bulk_copy`` or ``pyodbc``'s
  ``fast_executemany`` insert.

Connections are opened with autocommit enabled: every statement is
committed as it runs.

Example usage::

    from sqlaccess.infra.db.mssql import connect
    db = connect("Server=sql01,1433;Database=Sales;User Id=app;Password=...")
    cursor = db.cursor()
    sql, args = db.bind_text("SELECT * FROM Orders WHERE id = @id", {"id": 123})
    db.execute(cursor, sql, args)
    db.close()
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, unquote, urlsplit

from ...config import config
from ...types import Table

# ``@name`` but not ``@@name``.
_PARAM_TOKEN = re.compile(r"(?<![@\w])@([A-Za-z_][A-Za-z0-9_]*)")


def _quote_identifier(name: str) -> str:
    return "[" + name.replace("]", "]]") + "]"


class Db:
    """Lightweight wrapper around a DB-API connection.

    Instances are returned by ``connect``.  ``driver`` is ``'pymssql'``
    or ``'pyodbc'``; ``settings`` is the parsed connection string.
    """

    def __init__(self, conn: Any, driver: str, settings: Optional[Dict[str, Any]] = None) -> None:
        if driver not in ("pymssql", "pyodbc"):
            raise RuntimeError(f"Unsupported driver: {driver}")
        self._conn = conn
        self._driver = driver
        self.settings = settings or {}

    @property
    def driver(self) -> str:
        return self._driver

    @property
    def raw(self) -> Any:
        """The underlying DB-API connection."""
        return self._conn

    @property
    def data_source(self) -> Optional[str]:
        server = self.settings.get("server")
        port = self.settings.get("port")
        return f"{server},{port}" if server and port else server

    @property
    def login_timeout(self) -> int:
        return self.settings.get("timeout") or 15

    def cursor(self) -> Any:
        return self._conn.cursor()

    def _placeholder(self, name: str) -> str:
        return f"%({name})s" if self._driver == "pymssql" else "?"

    def bind_text(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Tuple[str, Any]:
        """Rewrite ``@name`` tokens for the driver.

        Returns:
            ``(query, args)``; ``args`` is ``None`` when no bound
            parameter occurs in ``sql``.
        """
        params = params or {}
        names = [n for n in _PARAM_TOKEN.findall(sql) if n in params]
        if not names:
            return sql, None

        def replacer(match: re.Match[str]) -> str:
            name = match.group(1)
            return self._placeholder(name) if name in params else match.group(0)

        if self._driver == "pymssql":
            # pymssql interpolates with %, literal percent signs must be doubled.
            query = _PARAM_TOKEN.sub(replacer, sql.replace("%", "%%"))
            return query, {name: params[name] for name in names}
        query = _PARAM_TOKEN.sub(replacer, sql)
        return query, [params[name] for name in names]

    def bind_routine(self, routine: str, params: Sequence[Tuple[str, Any]] = (),
                     output: Optional[str] = None) -> Tuple[str, Any]:
        """Render an ``EXEC`` statement for ``routine``.

        Args:
            routine: A validated routine name.
            params: Ordered ``(name, value)`` pairs.
            output: Name of an ``NVARCHAR`` output parameter to declare,
                pass and select back as the last result set.
        """
        assignments: List[str] = []
        named: Dict[str, Any] = {}
        positional: List[Any] = []
        for name, value in params:
            name = name.lstrip("@")
            assignments.append(f"@{name} = {self._placeholder(name)}")
            named[name] = value
            positional.append(value)
        if output:
            assignments.append(f"@{output} = @{output} OUTPUT")
        call = f"EXEC {routine}"
        if assignments:
            call += " " + ", ".join(assignments)
        if output:
            call = (
                f"SET NOCOUNT ON; DECLARE @{output} NVARCHAR(MAX); {call}; "
                f"SELECT @{output} AS {_quote_identifier(output)};"
            )
        if not params:
            return call, None
        return call, (named if self._driver == "pymssql" else positional)

    def execute(self, cursor: Any, sql: str, args: Any = None) -> Any:
        if args:
            cursor.execute(sql, args)
        else:
            cursor.execute(sql)
        return cursor

    def set_timeout(self, seconds: Optional[int]) -> None:
        """Apply a per-command timeout where the driver supports it.

        ``pyodbc`` exposes a connection-level query timeout that outlives
        the command, so ``None`` resets it to ``0`` (no limit).
        ``pymssql`` only takes a timeout when connecting, so the value is
        ignored there and the driver default applies.
        """
        if self._driver == "pyodbc":
            self._conn.timeout = int(seconds or 0)
        elif seconds is not None:
            logging.debug("[mssql] pymssql ignores per-command timeout", extra={"timeout": seconds})

    def bulk_copy(self, destination: str, table: Table) -> int:
        """Copy ``table`` into ``destination`` and return the row count.

        ``pymssql`` maps columns by ordinal, ``pyodbc`` by the table's
        column names.
        """
        rows = [tuple(row) for row in table.rows]
        if not rows:
            return 0
        if self._driver == "pymssql":
            self._conn.bulk_copy(destination, rows)
            return len(rows)
        columns = ", ".join(_quote_identifier(c) for c in table.columns)
        marks = ", ".join("?" for _ in table.columns)
        cursor = self._conn.cursor()
        try:
            cursor.fast_executemany = True
            cursor.executemany(f"INSERT INTO {destination} ({columns}) VALUES ({marks})", rows)
        finally:
            cursor.close()
        return len(rows)

    def close(self) -> None:
        self._conn.close()


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "yes", "1")


def _parse_url(url: str) -> Dict[str, Any]:
    parts = urlsplit(url)
    query = {k.lower(): v for k, v in parse_qsl(parts.query)}
    database = unquote(parts.path.lstrip("/")) or query.get("database")
    timeout = query.get("timeout") or query.get("connect timeout")
    return {
        'server': parts.hostname,
        'user': unquote(parts.username) if parts.username else None,
        'password': unquote(parts.password) if parts.password else None,
        'port': parts.port,
        'database': database,
        'encrypt': _flag(query.get('encrypt'), True),
        'trustServerCertificate': _flag(query.get('trustservercertificate'), True),
        'timeout': int(timeout) if timeout else None,
    }


def parse_connection_string(input_str: str) -> Dict[str, Any]:
    """Parse a SQL Server connection string into its components.

    It supports ``mssql://`` (or ``sqlserver://``) URLs and
    semicolon-separated key/value pairs.  The resulting dictionary
    contains the keys ``server``, ``port``, ``user``, ``password``,
    ``database`` and ``timeout`` as well as ``encrypt`` and
    ``trustServerCertificate`` flags.

    Args:
        input_str: The connection string to parse.

    Returns:
        A dictionary of connection parameters.

    Raises:
        ValueError: If the string is empty or names no server.
    """
    s = (input_str or "").strip()
    if not s:
        raise ValueError("Empty connection string")
    norm = re.sub(r"^sqlserver://", "mssql://", s, flags=re.IGNORECASE)
    if norm.lower().startswith("mssql://"):
        cfg = _parse_url(norm)
        if not cfg['server']:
            raise ValueError('No host found in connection URL')
        return cfg
    parts = [p.strip() for p in norm.split(";") if p.strip()]
    kv: Dict[str, str] = {}
    for p in parts:
        if '=' not in p:
            continue
        k, v = p.split('=', 1)
        kv[k.strip().lower()] = v.strip()
    server_raw = kv.get('server') or kv.get('data source') or kv.get('address') or kv.get('addr') or kv.get('network address')
    if not server_raw:
        raise ValueError('No Server= found in connection string')
    server = re.sub(r"^tcp:", "", server_raw, flags=re.IGNORECASE)
    port: Optional[int] = None
    m = re.match(r"^(.*?),(\d+)$", server)
    if m:
        server = m.group(1)
        port = int(m.group(2))
    timeout_raw = kv.get('connect timeout') or kv.get('connection timeout') or kv.get('timeout')
    return {
        'server': server,
        'user': kv.get('uid') or kv.get('user id') or kv.get('user'),
        'password': kv.get('pwd') or kv.get('password'),
        'port': port,
        'database': kv.get('database') or kv.get('initial catalog'),
        'encrypt': _flag(kv.get('encrypt'), True),
        'trustServerCertificate': _flag(kv.get('trustservercertificate') or kv.get('trust server certificate'), True),
        'timeout': int(timeout_raw) if timeout_raw and timeout_raw.isdigit() else None,
    }


def _odbc_connection_string(cfg: Dict[str, Any], odbc_driver: str) -> str:
    server = cfg.get('server')
    port = cfg.get('port')
    server_expr = f"{server},{port}" if port else server
    parts: List[str] = [
        f"DRIVER={{{odbc_driver}}}",
        f"SERVER={server_expr}",
    ]
    if cfg.get('database'):
        parts.append(f"DATABASE={cfg['database']}")
    if cfg.get('user'):
        parts.append(f"UID={cfg['user']};PWD={cfg.get('password') or ''}")
    else:
        parts.append("Trusted_Connection=yes")
    parts.append(f"Encrypt={'yes' if cfg.get('encrypt', True) else 'no'}")
    parts.append(f"TrustServerCertificate={'yes' if cfg.get('trustServerCertificate', True) else 'no'}")
    return ";".join(parts) + ";"


def _connect_pymssql(cfg: Dict[str, Any]) -> Db:
    import pymssql  # type: ignore[import]
    kwargs: Dict[str, Any] = {
        'server': cfg.get('server'),
        'user': cfg.get('user'),
        'password': cfg.get('password'),
        'database': cfg.get('database'),
        'port': cfg.get('port') or 1433,
        'autocommit': True,
    }
    if cfg.get('timeout'):
        kwargs['login_timeout'] = cfg['timeout']
    return Db(pymssql.connect(**kwargs), "pymssql", cfg)


def _connect_pyodbc(cfg: Dict[str, Any], odbc_driver: str) -> Db:
    import pyodbc  # type: ignore[import]
    conn_str = _odbc_connection_string(cfg, odbc_driver)
    conn = pyodbc.connect(conn_str, autocommit=True, timeout=cfg.get('timeout') or 0)
    return Db(conn, "pyodbc", cfg)


def connect(raw: str, driver: Optional[str] = None, odbc_driver: Optional[str] = None) -> Db:
    """Connect to a SQL Server database.

    Connection pooling is delegated to the underlying library.

    Args:
        raw: The raw connection string.
        driver: ``'auto'``, ``'pymssql'`` or ``'pyodbc'``; defaults to
            ``config.DRIVER``.
        odbc_driver: ODBC driver name for ``pyodbc``; defaults to
            ``config.ODBC_DRIVER``.

    Returns:
        A ``Db`` instance wrapping the open connection.
    """
    cfg = parse_connection_string(raw)
    driver = driver or config.DRIVER
    odbc_driver = odbc_driver or config.ODBC_DRIVER
    if driver == "pymssql":
        return _connect_pymssql(cfg)
    if driver == "pyodbc":
        return _connect_pyodbc(cfg, odbc_driver)
    # Try pymssql first
    try:
        return _connect_pymssql(cfg)
    except ImportError:
        pass
    # Fallback to pyodbc
    try:
        return _connect_pyodbc(cfg, odbc_driver)
    except ImportError:
        raise ImportError(
            "Neither pymssql nor pyodbc is installed. Install one of them to connect to SQL Server."
        )
