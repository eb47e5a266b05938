"""
Statement execution against a borrowed DB-API connection.

The `Executor` renders `?` placeholders for its dialect, runs the statement on
a fresh cursor, maps result rows to Records, traces timing at DEBUG, and
translates driver exceptions into the rowkit hierarchy. Connection lifecycle
(checkout, commit, rollback) belongs to the caller.
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass
from typing import Any, Generator, List, Optional, Sequence, Tuple

from rowkit.dialects import Dialect
from rowkit.domain.record import Record
from rowkit.errors import ConstraintViolationError, QueryError, RowkitError
from rowkit.utils.logging import get_logger, log_sql, log_sql_error

log = get_logger(__name__)

# PEP 249 exception names; every driver exposes these on its own module.
_DBAPI_ERROR_NAMES = frozenset(
    {
        "Error",
        "InterfaceError",
        "DatabaseError",
        "DataError",
        "OperationalError",
        "IntegrityError",
        "InternalError",
        "ProgrammingError",
        "NotSupportedError",
    }
)


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a non-query statement."""

    rows_affected: int
    last_insert_id: Optional[int] = None


def _driver_classes(exc: BaseException) -> List[type]:
    return [
        cls
        for cls in type(exc).__mro__
        if cls.__name__ in _DBAPI_ERROR_NAMES and cls.__module__ != "builtins"
    ]


def is_driver_error(exc: BaseException) -> bool:
    """True for PEP 249 driver exceptions, regardless of which driver raised them."""
    return not isinstance(exc, RowkitError) and bool(_driver_classes(exc))


def translate_error(exc: BaseException, sql: str) -> QueryError:
    """Wrap a driver exception, keeping its message verbatim."""
    if any(cls.__name__ == "IntegrityError" for cls in _driver_classes(exc)):
        return ConstraintViolationError(str(exc), sql=sql)
    return QueryError(str(exc), sql=sql)


def normalize_value(value: Any) -> Any:
    if isinstance(value, (memoryview, bytearray)):
        return bytes(value)
    return value


def records_from_cursor(cursor: Any) -> List[Record]:
    """Fetch every remaining row of `cursor` as Records keyed by column name."""
    if cursor.description is None:
        return []
    columns = [str(column[0]) for column in cursor.description]
    return [
        Record(dict(zip(columns, (normalize_value(value) for value in row))))
        for row in cursor.fetchall()
    ]


def _rowcount(cursor: Any) -> int:
    count = getattr(cursor, "rowcount", -1)
    return count if isinstance(count, int) and count >= 0 else 0


class Executor:
    """
    Runs statements for one named database and dialect.

    Parameters
    ----------
    db_name : str
        Registry name, used in log records.
    dialect : Dialect
        Placeholder and insert rules for the backend.
    """

    def __init__(self, db_name: str, dialect: Dialect) -> None:
        self.db_name = db_name
        self.dialect = dialect

    @contextlib.contextmanager
    def _statement(
        self, connection: Any, sql: str, args: Sequence[Any]
    ) -> Generator[Tuple[Any, str, Optional[Tuple[Any, ...]]], None, None]:
        rendered, params = self.dialect.render(sql, args)
        started = time.perf_counter()
        try:
            with contextlib.closing(connection.cursor()) as cursor:
                yield cursor, rendered, params
        except Exception as exc:
            if not is_driver_error(exc):
                raise
            log_sql_error(log, self.db_name, sql, args, exc)
            raise translate_error(exc, sql) from exc
        log_sql(log, self.db_name, sql, args, time.perf_counter() - started)

    def query(self, connection: Any, sql: str, args: Sequence[Any] = ()) -> List[Record]:
        with self._statement(connection, sql, args) as (cursor, rendered, params):
            if params is None:
                cursor.execute(rendered)
            else:
                cursor.execute(rendered, params)
            return records_from_cursor(cursor)

    def execute(self, connection: Any, sql: str, args: Sequence[Any] = ()) -> ExecResult:
        with self._statement(connection, sql, args) as (cursor, rendered, params):
            if params is None:
                cursor.execute(rendered)
            else:
                cursor.execute(rendered, params)
            last_id = getattr(cursor, "lastrowid", None)
            return ExecResult(
                rows_affected=_rowcount(cursor),
                last_insert_id=last_id if isinstance(last_id, int) and last_id > 0 else None,
            )

    def insert(
        self,
        connection: Any,
        sql: str,
        args: Sequence[Any],
        returning: Optional[str],
    ) -> ExecResult:
        """Run a single-row INSERT, collecting the generated key the dialect's way."""
        with self._statement(connection, sql, args) as (cursor, rendered, params):
            last_id = self.dialect.execute_insert(cursor, rendered, params, returning)
            return ExecResult(rows_affected=_rowcount(cursor), last_insert_id=last_id)


__all__ = [
    "ExecResult",
    "Executor",
    "is_driver_error",
    "normalize_value",
    "records_from_cursor",
    "translate_error",
]
