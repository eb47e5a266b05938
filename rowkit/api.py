"""
Module-level facade over the process-wide registry.

Unqualified calls resolve the current handle at call time (the `using`
override first, then the `select`ed handle) and run against it:

    import rowkit

    rowkit.open_database("sqlite3", "app.db")
    rowkit.open_named("reports", "postgres", "postgresql://localhost/reports")

    rowkit.query("SELECT * FROM users WHERE age > ?", 18)   # default
    with rowkit.using("reports"):
        rowkit.count("daily_totals")                        # reports
    rowkit.use("reports").paginate(1, 20, "*", "daily_totals")
"""

from __future__ import annotations

import contextlib

from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar, Union

from rowkit.cache.query import CachedQuery
from rowkit.cache.store import TTL
from rowkit.config import DEFAULT_MAX_OPEN, Settings, get_settings
from rowkit.database import Database, MissingDatabase
from rowkit.dialects import DialectType
from rowkit.domain.page import Page
from rowkit.domain.record import Record
from rowkit.executor import ExecResult
from rowkit.operations import DEFAULT_BATCH_SIZE
from rowkit.registry import DEFAULT_NAME, get_registry
from rowkit.transaction import Transaction

T = TypeVar("T")


# Registry -------------------------------------------------------------------


def open_database(
    dialect: Union[DialectType, str],
    dsn: str,
    max_open: int = DEFAULT_MAX_OPEN,
    **options: Any,
) -> Database:
    """Open the ``"default"`` database; see `Registry.open`."""
    return get_registry().open(dialect, dsn, max_open, **options)


def open_named(
    name: str,
    dialect: Union[DialectType, str],
    dsn: str,
    max_open: int = DEFAULT_MAX_OPEN,
    **options: Any,
) -> Database:
    return get_registry().open_named(name, dialect, dsn, max_open, **options)


def open_from_settings(settings: Optional[Settings] = None, name: str = DEFAULT_NAME) -> Database:
    """Open a database configured through ``ROWKIT_*`` environment variables."""
    settings = settings or get_settings()
    return get_registry().open_config(settings.database_config(), name=name)


def use(name: str) -> Union[Database, MissingDatabase]:
    return get_registry().use(name)


def select(name: str) -> Database:
    return get_registry().select(name)


def using(name: str) -> contextlib.AbstractContextManager[Database]:
    """Make `name` current for the calling context only; see `Registry.using`."""
    return get_registry().using(name)


def current() -> Database:
    return get_registry().current()


def ping(name: Optional[str] = None) -> None:
    get_registry().ping(name)


def close() -> None:
    get_registry().close()


# Operations on the current database -------------------------------------------


def query(sql: str, *args: Any) -> List[Record]:
    return current().query(sql, *args)


def query_first(sql: str, *args: Any) -> Record:
    return current().query_first(sql, *args)


def query_first_or_none(sql: str, *args: Any) -> Optional[Record]:
    return current().query_first_or_none(sql, *args)


def query_map(sql: str, *args: Any) -> List[Dict[str, Any]]:
    return current().query_map(sql, *args)


def exec(sql: str, *args: Any) -> ExecResult:
    return current().exec(sql, *args)


def insert(table: str, record: Record) -> int:
    return current().insert(table, record)


def update(table: str, record: Record, where: str, *args: Any) -> int:
    return current().update(table, record, where, *args)


def delete(table: str, where: str, *args: Any) -> int:
    return current().delete(table, where, *args)


def save(table: str, record: Record) -> int:
    return current().save(table, record)


def batch_insert(table: str, records: Sequence[Record], batch_size: int = DEFAULT_BATCH_SIZE) -> int:
    return current().batch_insert(table, records, batch_size)


def update_record(table: str, record: Record) -> int:
    return current().update_record(table, record)


def delete_record(table: str, record: Record) -> int:
    return current().delete_record(table, record)


def batch_update(table: str, records: Sequence[Record], batch_size: int = DEFAULT_BATCH_SIZE) -> int:
    return current().batch_update(table, records, batch_size)


def batch_delete(table: str, records: Sequence[Record], batch_size: int = DEFAULT_BATCH_SIZE) -> int:
    return current().batch_delete(table, records, batch_size)


def batch_delete_by_ids(table: str, ids: Sequence[Any], batch_size: int = DEFAULT_BATCH_SIZE) -> int:
    return current().batch_delete_by_ids(table, ids, batch_size)


def count(table: str, where: str = "", *args: Any) -> int:
    return current().count(table, where, *args)


def exists(table: str, where: str, *args: Any) -> bool:
    return current().exists(table, where, *args)


def find_all(table: str) -> List[Record]:
    return current().find_all(table)


def paginate(
    page: int,
    page_size: int,
    select: str,
    table: str,
    where: str = "",
    order_by: str = "",
    args: Sequence[Any] = (),
) -> Page:
    return current().paginate(page, page_size, select, table, where, order_by, args)


def paginate_sql(page: int, page_size: int, sql: str, args: Sequence[Any] = ()) -> Page:
    return current().paginate_sql(page, page_size, sql, args)


def transaction(unit_of_work: Callable[[Transaction], T]) -> T:
    return current().transaction(unit_of_work)


def begin_transaction() -> Transaction:
    return current().begin_transaction()


def cache(region: str, ttl: TTL = None) -> CachedQuery:
    return current().cache(region, ttl)


__all__ = [
    "batch_delete",
    "batch_delete_by_ids",
    "batch_insert",
    "batch_update",
    "begin_transaction",
    "cache",
    "close",
    "count",
    "current",
    "delete",
    "delete_record",
    "exec",
    "exists",
    "find_all",
    "insert",
    "open_database",
    "open_from_settings",
    "open_named",
    "paginate",
    "paginate_sql",
    "ping",
    "query",
    "query_first",
    "query_first_or_none",
    "query_map",
    "save",
    "select",
    "transaction",
    "update",
    "update_record",
    "use",
    "using",
]
