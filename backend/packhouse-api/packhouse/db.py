# packhouse/db.py

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import structlog

from packhouse import config
from packhouse.errors import BackingStoreError, ConstraintViolation, StoreTimeout, WriteConflict

log = structlog.get_logger(__name__)

# ODBC SQLSTATEs for "timeout expired" / "connection timeout expired"
_TIMEOUT_STATES = ("HYT00", "HYT01")
# deadlock victim / serialization failure
_CONFLICT_STATES = ("40001",)

ISOLATION_LEVELS = ("READ COMMITTED", "REPEATABLE READ", "SNAPSHOT", "SERIALIZABLE")


def get_conn():
    # pyodbc needs the unixODBC runtime, so it is only loaded for real connections
    import pyodbc

    server = config.AZURE_SQL_SERVER
    db = config.AZURE_SQL_DB
    user = config.AZURE_SQL_USER
    pwd = config.AZURE_SQL_PASSWORD

    if not all([server, db, user, pwd]):
        raise RuntimeError("Missing DB env vars.")

    conn = pyodbc.connect(
        f"DRIVER={{{config.ODBC_DRIVER}}};SERVER={server};DATABASE={db};UID={user};PWD={pwd};"
        "Encrypt=yes;TrustServerCertificate=no;Connection Timeout=30;",
        autocommit=False,
    )
    return configure_connection(conn)


def configure_connection(conn, isolation: Optional[str] = None):
    """Apply the query timeout and the transaction isolation level.

    The ledger and consolidation guards read a sum or a flag and write in
    the same statement; only SERIALIZABLE keeps those reads stable against
    other API processes until commit.
    """
    level = (isolation or config.ISOLATION_LEVEL).upper()
    if level not in ISOLATION_LEVELS:
        raise RuntimeError(f"Unsupported isolation level: {level}")
    conn.timeout = config.QUERY_TIMEOUT
    conn.execute(f"SET TRANSACTION ISOLATION LEVEL {level}")
    return conn


def driver_errors() -> Tuple[type, ...]:
    import pyodbc

    return (pyodbc.Error,)


def utcnow() -> datetime:
    """Naive UTC timestamp; DATETIME2 columns carry no offset."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def translate(exc: Exception) -> BackingStoreError:
    """Map a DB-API driver exception onto the store error taxonomy."""
    state = exc.args[0] if exc.args else None
    if state in _TIMEOUT_STATES:
        return StoreTimeout("The store did not answer in time.", sqlstate=state)
    if state in _CONFLICT_STATES:
        return WriteConflict("The write collided with another transaction; retry.", sqlstate=state)
    if type(exc).__name__ == "IntegrityError":
        return ConstraintViolation(f"Constraint violated: {exc}")
    return BackingStoreError(f"Store error: {exc}")


class Tx:
    """Cursor wrapper handed out by ``Store.transaction``.

    Every statement goes through ``_run`` so driver exceptions surface as
    ``BackingStoreError`` subclasses.
    """

    def __init__(self, cursor, errors: Tuple[type, ...]):
        self._cur = cursor
        self._errors = errors

    def _run(self, sql: str, params: Sequence[Any]):
        try:
            self._cur.execute(sql, list(params))
        except self._errors as e:
            raise translate(e) from e
        return self._cur

    def rows(self, sql: str, params: Sequence[Any] = (), limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """All rows as dicts, or at most ``limit`` of them.

        The limit is applied with ``fetchmany`` so the driver stops reading
        there; TOP and LIMIT are not portable between the two dialects.
        """
        cur = self._run(sql, params)
        if not cur.description:
            return []
        cols = [d[0] for d in cur.description]
        if limit is None:
            fetched = cur.fetchall()
        elif limit <= 0:
            fetched = []
        else:
            fetched = cur.fetchmany(limit)
        return [dict(zip(cols, r)) for r in fetched]

    def one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = self.rows(sql, params)
        return rows[0] if rows else None

    def scalar(self, sql: str, params: Sequence[Any] = (), default: Any = None) -> Any:
        cur = self._run(sql, params)
        row = cur.fetchone()
        if row is None or row[0] is None:
            return default
        return row[0]

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write and return the affected row count."""
        return self._run(sql, params).rowcount

    def insert(self, table: str, values: Dict[str, Any]) -> None:
        cols = list(values)
        placeholders = ",".join(["?"] * len(cols))
        self._run(
            f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders})",
            [values[c] for c in cols],
        )


def _close(conn) -> None:
    conn.close()


class Store:
    """Transactional access to the relational store.

    ``connect`` returns a DB-API connection with autocommit off (``get_conn``
    by default). ``errors`` is the tuple of driver exception classes to
    translate; ``release`` disposes of a connection after each transaction.
    """

    def __init__(
        self,
        connect: Optional[Callable[[], Any]] = None,
        errors: Optional[Tuple[type, ...]] = None,
        release: Optional[Callable[[Any], None]] = None,
    ):
        self._connect = connect or get_conn
        self._errors = errors
        self._release = release or _close

    @property
    def errors(self) -> Tuple[type, ...]:
        if self._errors is None:
            self._errors = driver_errors()
        return self._errors

    @contextmanager
    def transaction(self) -> Iterator[Tx]:
        errors = self.errors
        try:
            conn = self._connect()
        except errors as e:
            log.error("store.connect_failed", error=str(e))
            raise translate(e) from e

        try:
            yield Tx(conn.cursor(), errors)
            try:
                conn.commit()
            except errors as e:
                raise translate(e) from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._release(conn)

    def ping(self) -> Any:
        with self.transaction() as tx:
            return tx.scalar("SELECT COUNT(*) FROM packaging_sessions")
