"""
CRUD, pagination and cache operations shared by databases and transactions.

`Operations` implements every data operation on top of one hook,
`_connection()`, which lends a connection for the duration of a call. A
`Database` lends a pooled connection and commits per call; a `Transaction`
lends its own open connection and leaves commit to the caller.
"""

from __future__ import annotations

import abc
import contextlib
import re
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
)

from rowkit.cache.query import CachedQuery
from rowkit.cache.store import TTL
from rowkit.dialects import ROWNUM_COLUMN, Dialect, validate_identifier
from rowkit.domain.page import Page
from rowkit.domain.record import Record
from rowkit.errors import ArgumentError, NotFoundError, PartialBatchError, RowkitError
from rowkit.executor import ExecResult, Executor
from rowkit.pagination import PageQuery, build_page_query, build_sql_page_query
from rowkit.utils.logging import get_logger

if TYPE_CHECKING:
    from rowkit.database import Database

log = get_logger(__name__)

DEFAULT_BATCH_SIZE = 100

_LEADING_WHERE = re.compile(r"^WHERE\b", re.IGNORECASE)


def _has_value(value: Any) -> bool:
    return value is not None and value != ""


def _find_key(record: Record, column: str) -> Optional[str]:
    """The record key naming `column`, matched exactly first and then case-insensitively."""
    if record.has(column):
        return column
    lowered = column.lower()
    for key in record.keys():
        if key.lower() == lowered:
            return key
    return None


def _strip_where(where: str) -> str:
    return _LEADING_WHERE.sub("", where.strip(), count=1).strip()


def _first_int(records: List[Record]) -> int:
    if not records:
        return 0
    first = records[0]
    keys = first.keys()
    return first.get_int(keys[0]) if keys else 0


def _drop_helper_columns(records: List[Record]) -> List[Record]:
    for record in records:
        for key in record.keys():
            if key.lower() == ROWNUM_COLUMN:
                record.remove(key)
    return records


class Operations(abc.ABC):
    """
    Data operations against one database, through a borrowed connection.

    Subclasses set `name`, `dialect`, `_executor` and `_database`, and
    implement `_connection`.
    """

    name: str
    dialect: Dialect
    _executor: Executor
    _database: "Database"

    @abc.abstractmethod
    def _connection(self) -> contextlib.AbstractContextManager[Any]:  # pragma: no cover - interface only
        """Lend a connection for one operation."""
        raise NotImplementedError

    # Reads ------------------------------------------------------------------

    def query(self, sql: str, *args: Any) -> List[Record]:
        """Run a SELECT and return every row as a Record."""
        with self._connection() as connection:
            return self._executor.query(connection, sql, args)

    def query_first_or_none(self, sql: str, *args: Any) -> Optional[Record]:
        """First row of `sql` (limited to one row for the dialect), or None."""
        records = self.query(self.dialect.limit_one(sql), *args)
        return records[0] if records else None

    def query_first(self, sql: str, *args: Any) -> Record:
        """
        First row of `sql`.

        Raises
        ------
        NotFoundError
            If the query matched no rows.
        """
        record = self.query_first_or_none(sql, *args)
        if record is None:
            raise NotFoundError("query returned no rows")
        return record

    def query_map(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self.query(sql, *args)]

    def find_all(self, table: str) -> List[Record]:
        validate_identifier(table)
        return self.query(f"SELECT * FROM {table}")

    def count(self, table: str, where: str = "", *args: Any) -> int:
        validate_identifier(table)
        sql = f"SELECT COUNT(*) FROM {table}"
        where = _strip_where(where)
        if where:
            sql += f" WHERE {where}"
        return _first_int(self.query(sql, *args))

    def exists_strict(self, table: str, where: str, *args: Any) -> bool:
        validate_identifier(table)
        sql = f"SELECT 1 FROM {table}"
        where = _strip_where(where)
        if where:
            sql += f" WHERE {where}"
        return self.query_first_or_none(sql, *args) is not None

    def exists(self, table: str, where: str, *args: Any) -> bool:
        """Like `exists_strict`, but any failure is logged and reported as False."""
        try:
            return self.exists_strict(table, where, *args)
        except RowkitError as exc:
            log.warning("exists check failed", extra={"db": self.name, "table": table, "error": str(exc)})
            return False

    # Writes -----------------------------------------------------------------

    def exec(self, sql: str, *args: Any) -> ExecResult:
        """Run a statement that returns no rows."""
        with self._connection() as connection:
            return self._executor.execute(connection, sql, args)

    def primary_keys(self, table: str) -> List[str]:
        """
        Primary-key columns of `table`, in key order.

        Looked up from the backend catalog once per table and cached on the
        database handle; failed lookups are not cached.
        """
        validate_identifier(table)
        cached = self._database._cached_primary_keys(table)
        if cached is not None:
            return cached
        sql, args = self.dialect.primary_key_query(table)
        keys = self.dialect.primary_keys_from(self.query(sql, *args))
        self._database._remember_primary_keys(table, keys)
        return list(keys)

    def _write_columns(self, table: str, record: Record) -> Tuple[List[str], List[Any]]:
        validate_identifier(table)
        columns = record.keys()
        if not columns:
            raise ArgumentError("record has no columns")
        for column in columns:
            validate_identifier(column)
        return columns, [record.get(column) for column in columns]

    def insert(self, table: str, record: Record) -> int:
        """
        Insert `record` and return the generated primary key.

        When the record already carries an integer key, that key is returned.
        Tables without a single-column key return the affected-row count.

        Raises
        ------
        ConstraintViolationError
            If the backend rejects the row; the message is the backend's.
        """
        validate_identifier(table)
        try:
            keys = self.primary_keys(table)
        except RowkitError as exc:
            log.warning(
                "primary key lookup failed", extra={"db": self.name, "table": table, "error": str(exc)}
            )
            keys = []
        pk = keys[0] if len(keys) == 1 else None
        pk_field = _find_key(record, pk) if pk else None

        data = record
        if pk_field is not None and not _has_value(record.get(pk_field)):
            # Leave an empty key out so the backend generates it.
            data = Record(record.to_dict()).remove(pk_field)
            pk_field = None
        columns, values = self._write_columns(table, data)

        returning = pk if pk and pk_field is None else None
        sql = self.dialect.insert_sql(table, columns, returning)
        with self._connection() as connection:
            result = self._executor.insert(connection, sql, values, returning)

        if pk_field is not None:
            supplied = record.get(pk_field)
            if isinstance(supplied, int) and not isinstance(supplied, bool):
                return supplied
        if result.last_insert_id is not None:
            return result.last_insert_id
        return result.rows_affected

    def update(self, table: str, record: Record, where: str, *args: Any) -> int:
        """Update the columns of `record` on rows matching `where`; returns affected rows."""
        columns, values = self._write_columns(table, record)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        sql = f"UPDATE {table} SET {assignments}"
        where = _strip_where(where)
        if where:
            sql += f" WHERE {where}"
        return self.exec(sql, *values, *args).rows_affected

    def delete(self, table: str, where: str, *args: Any) -> int:
        validate_identifier(table)
        sql = f"DELETE FROM {table}"
        where = _strip_where(where)
        if where:
            sql += f" WHERE {where}"
        return self.exec(sql, *args).rows_affected

    def save(self, table: str, record: Record) -> int:
        """
        Insert or update depending on whether `record` carries its primary key.

        Returns
        -------
        int
            The generated key after an insert, or the affected-row count after
            an update. A record holding nothing but its key returns 0.
        """
        keys = self.primary_keys(table)
        if not keys:
            return self.insert(table, record)
        fields = [_find_key(record, key) for key in keys]
        if not all(field is not None and _has_value(record.get(field)) for field in fields):
            return self.insert(table, record)
        return self._update_by_key(table, record, keys, fields)

    def _required_keys(self, table: str, action: str) -> List[str]:
        keys = self.primary_keys(table)
        if not keys:
            raise ArgumentError(f"{action} needs a primary key, but table {table} has none")
        return keys

    @staticmethod
    def _key_fields(record: Record, keys: Sequence[str]) -> List[str]:
        fields = []
        for key in keys:
            field = _find_key(record, key)
            if field is None:
                raise ArgumentError(f"record is missing primary key column {key}")
            fields.append(field)
        return fields

    def _update_by_key(self, table: str, record: Record, keys: Sequence[str], fields: Sequence[str]) -> int:
        data = Record({k: v for k, v in record.to_dict().items() if k not in fields})
        if not len(data):
            return 0
        where = " AND ".join(f"{key} = ?" for key in keys)
        return self.update(table, data, where, *(record.get(field) for field in fields))

    def update_record(self, table: str, record: Record) -> int:
        """
        Update the row `record` identifies by its primary key.

        Every other column of the record is written. A record holding nothing
        but its key changes nothing and returns 0.

        Raises
        ------
        ArgumentError
            If the record is empty, the table has no primary key, or the
            record lacks one of the key columns.
        """
        if not len(record):
            raise ArgumentError("update_record needs a non-empty record")
        keys = self._required_keys(table, "update_record")
        return self._update_by_key(table, record, keys, self._key_fields(record, keys))

    def delete_record(self, table: str, record: Record) -> int:
        """Delete the row `record` identifies by its primary key; returns affected rows."""
        if not len(record):
            raise ArgumentError("delete_record needs a non-empty record")
        keys = self._required_keys(table, "delete_record")
        fields = self._key_fields(record, keys)
        where = " AND ".join(f"{key} = ?" for key in keys)
        return self.delete(table, where, *(record.get(field) for field in fields))

    def _run_batches(
        self,
        action: str,
        table: str,
        statements: Sequence[List[Tuple[str, Sequence[Any]]]],
    ) -> int:
        """Run each batch of statements on one connection; sums affected rows."""
        total = 0
        for index, batch in enumerate(statements):
            if not batch:
                continue
            try:
                with self._connection() as connection:
                    for sql, values in batch:
                        total += self._executor.execute(connection, sql, values).rows_affected
            except RowkitError as exc:
                log.error(
                    f"batch {action} failed",
                    extra={"db": self.name, "table": table, "batch": index, "affected": total},
                )
                raise PartialBatchError(total, index, exc) from exc
        return total

    def batch_update(
        self,
        table: str,
        records: Sequence[Record],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """
        Update each record's row by primary key, one connection per batch.

        The updated columns of a batch are the non-key columns of its first
        record; a batch whose first record holds only the key is skipped.

        Raises
        ------
        ArgumentError
            If `records` is empty, the table has no primary key, or a record
            lacks a key column.
        PartialBatchError
            When a batch fails; carries the rows updated by earlier batches.
        """
        if not records:
            raise ArgumentError("batch_update needs at least one record")
        if batch_size < 1:
            batch_size = DEFAULT_BATCH_SIZE
        keys = self._required_keys(table, "batch_update")
        where = " AND ".join(f"{key} = ?" for key in keys)

        statements = []
        for start in range(0, len(records), batch_size):
            batch = records[start:start + batch_size]
            lead_fields = self._key_fields(batch[0], keys)
            columns = [column for column in batch[0].keys() if column not in lead_fields]
            if not columns:
                statements.append([])
                continue
            for column in columns:
                validate_identifier(column)
            assignments = ", ".join(f"{column} = ?" for column in columns)
            sql = f"UPDATE {table} SET {assignments} WHERE {where}"
            statements.append([
                (
                    sql,
                    [record.get(column) for column in columns]
                    + [record.get(field) for field in self._key_fields(record, keys)],
                )
                for record in batch
            ])
        return self._run_batches("update", table, statements)

    def batch_delete(
        self,
        table: str,
        records: Sequence[Record],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """
        Delete the rows `records` identify by primary key.

        Single-column keys delete a batch with one ``IN`` list, skipping
        records whose key is NULL; composite keys delete record by record.
        """
        if not records:
            raise ArgumentError("batch_delete needs at least one record")
        if batch_size < 1:
            batch_size = DEFAULT_BATCH_SIZE
        keys = self._required_keys(table, "batch_delete")

        statements = []
        for start in range(0, len(records), batch_size):
            batch = records[start:start + batch_size]
            if len(keys) == 1:
                ids = [record.get(self._key_fields(record, keys)[0]) for record in batch]
                statements.append(self._delete_in(table, keys[0], [i for i in ids if i is not None]))
                continue
            where = " AND ".join(f"{key} = ?" for key in keys)
            statements.append([
                (
                    f"DELETE FROM {table} WHERE {where}",
                    [record.get(field) for field in self._key_fields(record, keys)],
                )
                for record in batch
            ])
        return self._run_batches("delete", table, statements)

    def batch_delete_by_ids(
        self,
        table: str,
        ids: Sequence[Any],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """
        Delete rows of a single-key table by key value, one ``IN`` list per batch.

        Raises
        ------
        ArgumentError
            If `ids` is empty or the table's primary key is missing or composite.
        """
        if not ids:
            raise ArgumentError("batch_delete_by_ids needs at least one id")
        if batch_size < 1:
            batch_size = DEFAULT_BATCH_SIZE
        keys = self._required_keys(table, "batch_delete_by_ids")
        if len(keys) > 1:
            raise ArgumentError(
                f"batch_delete_by_ids only supports single-column keys; {table} has {len(keys)}"
            )
        statements = [
            self._delete_in(table, keys[0], ids[start:start + batch_size])
            for start in range(0, len(ids), batch_size)
        ]
        return self._run_batches("delete", table, statements)

    @staticmethod
    def _delete_in(table: str, key: str, ids: Sequence[Any]) -> List[Tuple[str, Sequence[Any]]]:
        if not ids:
            return []
        marks = ", ".join("?" for _ in ids)
        return [(f"DELETE FROM {table} WHERE {key} IN ({marks})", list(ids))]

    def batch_insert(
        self,
        table: str,
        records: Sequence[Record],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """
        Insert `records` with one multi-row INSERT per batch.

        Columns come from the first record; values a record lacks are NULL.
        On a database handle every batch commits on its own.

        Raises
        ------
        PartialBatchError
            When a batch fails; carries the rows inserted by earlier batches.
        """
        if not records:
            raise ArgumentError("batch_insert needs at least one record")
        if batch_size < 1:
            batch_size = DEFAULT_BATCH_SIZE
        columns, _ = self._write_columns(table, records[0])

        total = 0
        for index, start in enumerate(range(0, len(records), batch_size)):
            batch = records[start:start + batch_size]
            sql = self.dialect.batch_insert_sql(table, columns, len(batch))
            values = [record.get(column) for record in batch for column in columns]
            try:
                with self._connection() as connection:
                    result = self._executor.execute(connection, sql, values)
            except RowkitError as exc:
                log.error(
                    "batch insert failed",
                    extra={"db": self.name, "table": table, "batch": index, "inserted": total},
                )
                raise PartialBatchError(total, index, exc) from exc
            total += result.rows_affected or len(batch)
        return total

    # Pagination -------------------------------------------------------------

    def _run_page(self, query: PageQuery, args: Sequence[Any]) -> Page:
        with self._connection() as connection:
            total = _first_int(self._executor.query(connection, query.count_sql, args))
            records: List[Record] = []
            if total > query.offset:
                records = self._executor.query(connection, query.page_sql, args)
        return Page(
            records=_drop_helper_columns(records),
            page=query.page,
            page_size=query.page_size,
            total_row=total,
        )

    def paginate(
        self,
        page: int,
        page_size: int,
        select: str,
        table: str,
        where: str = "",
        order_by: str = "",
        args: Sequence[Any] = (),
    ) -> Page:
        """
        One page of ``SELECT <select> FROM <table> WHERE <where> ORDER BY <order_by>``.

        `page` below 1 is treated as 1; pages past the end are empty.

        Raises
        ------
        ArgumentError
            If `page_size` is below 1.
        """
        query = build_page_query(
            self.dialect,
            page,
            page_size,
            select,
            table,
            where,
            order_by,
            self._database.server_version(),
        )
        return self._run_page(query, args)

    def paginate_sql(
        self,
        page: int,
        page_size: int,
        sql: str,
        args: Sequence[Any] = (),
    ) -> Page:
        """One page of a complete SELECT statement; its trailing ORDER BY is kept for the slice."""
        query = build_sql_page_query(
            self.dialect, page, page_size, sql, self._database.server_version()
        )
        return self._run_page(query, args)

    # Caching ----------------------------------------------------------------

    def cache(self, region: str, ttl: TTL = None) -> CachedQuery:
        """Cache-first view of this handle using the region's configured store."""
        return CachedQuery(self, region, ttl)

    def local_cache(self, region: str, ttl: TTL = None) -> CachedQuery:
        return CachedQuery(self, region, ttl, store="local")

    def remote_cache(self, region: str, ttl: TTL = None) -> CachedQuery:
        return CachedQuery(self, region, ttl, store="remote")


__all__ = ["DEFAULT_BATCH_SIZE", "Operations"]
