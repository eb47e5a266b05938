"""
SQL dialect rules for the supported backends.

Each `Dialect` knows how its driver expects placeholders, how to limit a
result set, how to ask the catalog for a table's primary key, and how to hand
a caller deadline to the server. Callers always write `?` placeholders;
`Dialect.render` rewrites them into the driver's DB-API paramstyle.

Usage:
    from rowkit.dialects import get_dialect

    dialect = get_dialect("postgres")
    sql, params = dialect.render("SELECT * FROM users WHERE id = ?", [7])
    # -> "SELECT * FROM users WHERE id = %s", (7,)
"""

from __future__ import annotations

import contextlib
import math
import re
import time
from enum import Enum
from typing import Any, Dict, Generator, List, Optional, Sequence, Tuple

from rowkit.errors import ArgumentError, InvalidIdentifierError

MAX_IDENTIFIER_LENGTH = 128

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
_LITERAL = re.compile(r"'(?:[^']|'')*'")
_LIMITING = re.compile(r"\b(LIMIT|OFFSET|FETCH|TOP)\b", re.IGNORECASE)
_LEADING_SELECT = re.compile(r"^\s*SELECT(\s+DISTINCT)?\s+", re.IGNORECASE)
_ROWNUM = re.compile(r"\bROWNUM\b", re.IGNORECASE)

# Helper column added by the ROWNUM pagination wrapper; stripped from results.
ROWNUM_COLUMN = "rowkit_rn"


class DialectType(str, Enum):
    """Supported SQL dialects, valued by their canonical driver names."""

    MYSQL = "mysql"
    POSTGRES = "postgres"
    SQLITE = "sqlite3"
    SQLSERVER = "sqlserver"
    ORACLE = "oracle"

    @classmethod
    def _missing_(cls, value: object) -> Optional["DialectType"]:
        if isinstance(value, str):
            canonical = _ALIASES.get(value.strip().lower())
            if canonical is not None:
                return cls(canonical)
        return None


_ALIASES: Dict[str, str] = {
    "mysql": "mysql",
    "mariadb": "mysql",
    "postgres": "postgres",
    "postgresql": "postgres",
    "pg": "postgres",
    "sqlite": "sqlite3",
    "sqlite3": "sqlite3",
    "sqlserver": "sqlserver",
    "mssql": "sqlserver",
    "oracle": "oracle",
}


def validate_identifier(name: str) -> str:
    """
    Check that `name` is a plain (optionally schema-qualified) SQL identifier.

    Raises
    ------
    InvalidIdentifierError
        If the name is empty, too long, or contains anything but letters,
        digits, underscores, and a single schema separator.
    """
    if not name or len(name) > MAX_IDENTIFIER_LENGTH or not _IDENTIFIER.match(name):
        raise InvalidIdentifierError(f"invalid SQL identifier: {name!r}")
    return name


def placeholder_positions(sql: str) -> List[int]:
    """Offsets of `?` placeholders that are not inside single-quoted literals."""
    positions: List[int] = []
    in_literal = False
    for index, char in enumerate(sql):
        if char == "'":
            # A doubled quote closes and reopens the literal, which keeps state.
            in_literal = not in_literal
        elif char == "?" and not in_literal:
            positions.append(index)
    return positions


def mask_literals(sql: str) -> str:
    """Replace single-quoted literals with spaces, keeping every offset."""
    return _LITERAL.sub(lambda m: " " * len(m.group(0)), sql)


def top_level_matches(sql: str, pattern: "re.Pattern[str]") -> List["re.Match[str]"]:
    """Matches of `pattern` outside parentheses and string literals."""
    masked = list(mask_literals(sql))
    depth = 0
    for index, char in enumerate(masked):
        if char == "(":
            depth += 1
            masked[index] = " "
        elif char == ")":
            depth -= 1
            masked[index] = " "
        elif depth > 0:
            masked[index] = " "
    return list(pattern.finditer("".join(masked)))


def limits_itself(sql: str) -> bool:
    """True when `sql` carries its own LIMIT, OFFSET, FETCH or TOP clause at the top level."""
    return bool(top_level_matches(sql, _LIMITING))


def _strip_terminator(sql: str) -> str:
    return sql.strip().rstrip(";").rstrip()


def _split_table(table: str) -> Tuple[Optional[str], str]:
    if "." in table:
        schema, name = table.split(".", 1)
        return schema, name
    return None, table


class Dialect:
    """
    Base rules, shared by the LIMIT/OFFSET family (MySQL, PostgreSQL, SQLite).

    Subclasses override only what their backend does differently.
    """

    type: DialectType
    paramstyle: str = "qmark"
    ping_sql: str = "SELECT 1"
    supports_multirow_values: bool = True

    @property
    def name(self) -> str:
        return self.type.value

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    # Placeholders -----------------------------------------------------------

    def placeholder(self, position: int) -> str:
        """Driver placeholder for the 1-based argument `position`."""
        return "?"

    def _escape_text(self, text: str) -> str:
        return text

    def render(self, sql: str, args: Sequence[Any]) -> Tuple[str, Optional[Tuple[Any, ...]]]:
        """
        Rewrite `?` placeholders into the driver's paramstyle.

        Returns
        -------
        tuple
            The driver SQL and the parameter tuple, or None when there are no
            arguments (so drivers skip parameter interpolation entirely).

        Raises
        ------
        ArgumentError
            If the number of placeholders differs from the number of arguments.
        """
        positions = placeholder_positions(sql)
        if len(positions) != len(args):
            raise ArgumentError(
                f"statement has {len(positions)} placeholder(s) but {len(args)} argument(s)"
            )
        if not args:
            return sql, None
        parts: List[str] = []
        last = 0
        for number, offset in enumerate(positions, start=1):
            parts.append(self._escape_text(sql[last:offset]))
            parts.append(self.placeholder(number))
            last = offset + 1
        parts.append(self._escape_text(sql[last:]))
        return "".join(parts), tuple(args)

    # Limiting ---------------------------------------------------------------

    def limit_one(self, sql: str) -> str:
        """Restrict `sql` to a single row unless it already limits itself."""
        sql = _strip_terminator(sql)
        if limits_itself(sql):
            return sql
        return f"{sql} LIMIT 1"

    def page_sql(
        self,
        base_sql: str,
        order_by: str,
        limit: int,
        offset: int,
        server_version: Optional[int] = None,
    ) -> str:
        """Append ordering and the dialect's limit/offset clause to `base_sql`."""
        sql = base_sql
        if order_by:
            sql += f" ORDER BY {order_by}"
        return f"{sql} LIMIT {limit} OFFSET {offset}"

    def count_subquery(self, inner_sql: str) -> str:
        return f"SELECT COUNT(*) FROM ({inner_sql}) AS _sub"

    # Metadata ---------------------------------------------------------------

    def primary_key_query(self, table: str) -> Tuple[str, List[Any]]:
        """Catalog query listing the primary-key columns of `table`, in key order."""
        raise NotImplementedError

    def primary_keys_from(self, rows: Sequence[Any]) -> List[str]:
        """Extract column names from the rows returned by `primary_key_query`."""
        names: List[str] = []
        for row in rows:
            values = list(row.to_dict().values())
            if values and values[0] is not None:
                names.append(str(values[0]))
        return names

    # Writes -----------------------------------------------------------------

    def insert_sql(self, table: str, columns: Sequence[str], returning: Optional[str]) -> str:
        """Single-row INSERT; `returning` names the key column to hand back, if any."""
        column_list = ", ".join(columns)
        values = ", ".join("?" for _ in columns)
        return f"INSERT INTO {table} ({column_list}) VALUES ({values})"

    def execute_insert(
        self,
        cursor: Any,
        sql: str,
        params: Optional[Tuple[Any, ...]],
        returning: Optional[str],
    ) -> Optional[int]:
        """Run a rendered INSERT and return the generated key, if the driver reports one."""
        _execute(cursor, sql, params)
        last_id = getattr(cursor, "lastrowid", None)
        return int(last_id) if last_id not in (None, 0, -1) else None

    def batch_insert_sql(self, table: str, columns: Sequence[str], row_count: int) -> str:
        """Multi-row INSERT covering `row_count` rows with `?` placeholders."""
        column_list = ", ".join(columns)
        row = "(" + ", ".join("?" for _ in columns) + ")"
        return f"INSERT INTO {table} ({column_list}) VALUES " + ", ".join([row] * row_count)

    # Sessions ---------------------------------------------------------------

    def begin(self, connection: Any) -> None:
        """Start an explicit transaction; drivers that begin implicitly need nothing."""

    @contextlib.contextmanager
    def statement_timeout(
        self, connection: Any, seconds: Optional[float]
    ) -> Generator[None, None, None]:
        """Apply a caller deadline to statements run on `connection` inside the block."""
        yield


def _execute(cursor: Any, sql: str, params: Optional[Tuple[Any, ...]]) -> None:
    if params is None:
        cursor.execute(sql)
    else:
        cursor.execute(sql, params)


class MySQLDialect(Dialect):
    type = DialectType.MYSQL
    paramstyle = "format"

    def placeholder(self, position: int) -> str:
        return "%s"

    def _escape_text(self, text: str) -> str:
        return text.replace("%", "%%")

    def primary_key_query(self, table: str) -> Tuple[str, List[Any]]:
        schema, name = _split_table(table)
        schema_clause = "TABLE_SCHEMA = ?" if schema else "TABLE_SCHEMA = DATABASE()"
        args: List[Any] = [schema, name] if schema else [name]
        return (
            "SELECT COLUMN_NAME FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE "
            f"WHERE {schema_clause} AND TABLE_NAME = ? AND CONSTRAINT_NAME = 'PRIMARY' "
            "ORDER BY ORDINAL_POSITION",
            args,
        )

    def begin(self, connection: Any) -> None:
        connection.begin()

    @contextlib.contextmanager
    def statement_timeout(
        self, connection: Any, seconds: Optional[float]
    ) -> Generator[None, None, None]:
        if not seconds:
            yield
            return
        with contextlib.closing(connection.cursor()) as cursor:
            cursor.execute(f"SET SESSION MAX_EXECUTION_TIME = {int(seconds * 1000)}")
        try:
            yield
        finally:
            with contextlib.closing(connection.cursor()) as cursor:
                cursor.execute("SET SESSION MAX_EXECUTION_TIME = 0")


class PostgresDialect(Dialect):
    type = DialectType.POSTGRES
    paramstyle = "format"

    def placeholder(self, position: int) -> str:
        return "%s"

    def _escape_text(self, text: str) -> str:
        return text.replace("%", "%%")

    def primary_key_query(self, table: str) -> Tuple[str, List[Any]]:
        return (
            "SELECT a.attname FROM pg_index i "
            "JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey) "
            "WHERE i.indrelid = ?::regclass AND i.indisprimary "
            "ORDER BY a.attnum",
            [table],
        )

    def insert_sql(self, table: str, columns: Sequence[str], returning: Optional[str]) -> str:
        sql = super().insert_sql(table, columns, returning)
        if returning:
            sql += f" RETURNING {returning}"
        return sql

    def execute_insert(
        self,
        cursor: Any,
        sql: str,
        params: Optional[Tuple[Any, ...]],
        returning: Optional[str],
    ) -> Optional[int]:
        _execute(cursor, sql, params)
        if not returning:
            return None
        row = cursor.fetchone()
        return _as_int(row[0]) if row else None

    @contextlib.contextmanager
    def statement_timeout(
        self, connection: Any, seconds: Optional[float]
    ) -> Generator[None, None, None]:
        if seconds:
            # SET LOCAL lasts until the surrounding transaction ends.
            with contextlib.closing(connection.cursor()) as cursor:
                cursor.execute(f"SET LOCAL statement_timeout = {int(seconds * 1000)}")
        yield


class SQLiteDialect(Dialect):
    type = DialectType.SQLITE

    def primary_key_query(self, table: str) -> Tuple[str, List[Any]]:
        schema, name = _split_table(table)
        prefix = f"{schema}." if schema else ""
        return f"PRAGMA {prefix}table_info({name})", []

    def primary_keys_from(self, rows: Sequence[Any]) -> List[str]:
        keyed = [row for row in rows if row.get_int("pk") > 0]
        keyed.sort(key=lambda row: row.get_int("pk"))
        return [row.get_string("name") for row in keyed]

    def begin(self, connection: Any) -> None:
        if not connection.in_transaction:
            connection.execute("BEGIN")

    @contextlib.contextmanager
    def statement_timeout(
        self, connection: Any, seconds: Optional[float]
    ) -> Generator[None, None, None]:
        if not seconds:
            yield
            return
        deadline = time.monotonic() + seconds
        # A non-zero return from the handler interrupts the running statement.
        connection.set_progress_handler(lambda: int(time.monotonic() > deadline), 1000)
        try:
            yield
        finally:
            connection.set_progress_handler(None, 0)


class SQLServerDialect(Dialect):
    type = DialectType.SQLSERVER

    def limit_one(self, sql: str) -> str:
        sql = _strip_terminator(sql)
        if limits_itself(sql):
            return sql
        return _LEADING_SELECT.sub(
            lambda m: f"SELECT{m.group(1) or ''} TOP 1 ", sql, count=1
        )

    def page_sql(
        self,
        base_sql: str,
        order_by: str,
        limit: int,
        offset: int,
        server_version: Optional[int] = None,
    ) -> str:
        # OFFSET/FETCH requires an ORDER BY clause.
        order = order_by or "(SELECT NULL)"
        return f"{base_sql} ORDER BY {order} OFFSET {offset} ROWS FETCH NEXT {limit} ROWS ONLY"

    def primary_key_query(self, table: str) -> Tuple[str, List[Any]]:
        schema, name = _split_table(table)
        sql = (
            "SELECT kcu.COLUMN_NAME FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc "
            "JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu "
            "ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA "
            "WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY' AND tc.TABLE_NAME = ?"
        )
        args: List[Any] = [name]
        if schema:
            sql += " AND tc.TABLE_SCHEMA = ?"
            args.append(schema)
        return sql + " ORDER BY kcu.ORDINAL_POSITION", args

    def insert_sql(self, table: str, columns: Sequence[str], returning: Optional[str]) -> str:
        if not returning:
            return super().insert_sql(table, columns, returning)
        column_list = ", ".join(columns)
        values = ", ".join("?" for _ in columns)
        return (
            f"INSERT INTO {table} ({column_list}) OUTPUT INSERTED.{returning} VALUES ({values})"
        )

    def execute_insert(
        self,
        cursor: Any,
        sql: str,
        params: Optional[Tuple[Any, ...]],
        returning: Optional[str],
    ) -> Optional[int]:
        _execute(cursor, sql, params)
        if not returning:
            return None
        row = cursor.fetchone()
        return _as_int(row[0]) if row else None

    @contextlib.contextmanager
    def statement_timeout(
        self, connection: Any, seconds: Optional[float]
    ) -> Generator[None, None, None]:
        if not seconds:
            yield
            return
        previous = connection.timeout
        connection.timeout = max(1, math.ceil(seconds))
        try:
            yield
        finally:
            connection.timeout = previous


class OracleDialect(Dialect):
    type = DialectType.ORACLE
    paramstyle = "numeric"
    ping_sql = "SELECT 1 FROM DUAL"
    supports_multirow_values = False

    def placeholder(self, position: int) -> str:
        return f":{position}"

    def limit_one(self, sql: str) -> str:
        sql = _strip_terminator(sql)
        if _ROWNUM.search(sql) or limits_itself(sql):
            return sql
        return f"SELECT * FROM ({sql}) WHERE ROWNUM <= 1"

    def page_sql(
        self,
        base_sql: str,
        order_by: str,
        limit: int,
        offset: int,
        server_version: Optional[int] = None,
    ) -> str:
        inner = base_sql
        if order_by:
            inner += f" ORDER BY {order_by}"
        if server_version is not None and server_version >= 12:
            return f"{inner} OFFSET {offset} ROWS FETCH NEXT {limit} ROWS ONLY"
        return (
            f"SELECT * FROM (SELECT rowkit_q.*, ROWNUM {ROWNUM_COLUMN} FROM ({inner}) rowkit_q "
            f"WHERE ROWNUM <= {offset + limit}) WHERE {ROWNUM_COLUMN} > {offset}"
        )

    def count_subquery(self, inner_sql: str) -> str:
        # Oracle rejects AS before a table alias and identifiers starting with "_".
        return f"SELECT COUNT(*) FROM ({inner_sql}) rowkit_sub"

    def primary_key_query(self, table: str) -> Tuple[str, List[Any]]:
        schema, name = _split_table(table)
        if schema:
            return (
                "SELECT cols.column_name FROM all_constraints cons "
                "JOIN all_cons_columns cols "
                "ON cons.constraint_name = cols.constraint_name AND cons.owner = cols.owner "
                "WHERE cons.constraint_type = 'P' AND cons.owner = ? AND cons.table_name = ? "
                "ORDER BY cols.position",
                [schema.upper(), name.upper()],
            )
        return (
            "SELECT cols.column_name FROM user_constraints cons "
            "JOIN user_cons_columns cols ON cons.constraint_name = cols.constraint_name "
            "WHERE cons.constraint_type = 'P' AND cons.table_name = ? "
            "ORDER BY cols.position",
            [name.upper()],
        )

    def insert_sql(self, table: str, columns: Sequence[str], returning: Optional[str]) -> str:
        sql = super().insert_sql(table, columns, returning)
        if returning:
            # The out bind follows the rendered column placeholders.
            sql += f" RETURNING {returning} INTO :{len(columns) + 1}"
        return sql

    def execute_insert(
        self,
        cursor: Any,
        sql: str,
        params: Optional[Tuple[Any, ...]],
        returning: Optional[str],
    ) -> Optional[int]:
        if not returning:
            _execute(cursor, sql, params)
            return None
        out = cursor.var(int)
        cursor.execute(sql, [*(params or ()), out])
        value = out.getvalue()
        if isinstance(value, list):
            value = value[0] if value else None
        return _as_int(value)

    def batch_insert_sql(self, table: str, columns: Sequence[str], row_count: int) -> str:
        column_list = ", ".join(columns)
        row = "(" + ", ".join("?" for _ in columns) + ")"
        into = " ".join(f"INTO {table} ({column_list}) VALUES {row}" for _ in range(row_count))
        return f"INSERT ALL {into} SELECT 1 FROM DUAL"

    @contextlib.contextmanager
    def statement_timeout(
        self, connection: Any, seconds: Optional[float]
    ) -> Generator[None, None, None]:
        if not seconds:
            yield
            return
        previous = connection.call_timeout
        connection.call_timeout = int(seconds * 1000)
        try:
            yield
        finally:
            connection.call_timeout = previous


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


_DIALECTS: Dict[DialectType, Dialect] = {
    DialectType.MYSQL: MySQLDialect(),
    DialectType.POSTGRES: PostgresDialect(),
    DialectType.SQLITE: SQLiteDialect(),
    DialectType.SQLSERVER: SQLServerDialect(),
    DialectType.ORACLE: OracleDialect(),
}


def parse_dialect(value: "DialectType | str") -> DialectType:
    """Resolve a dialect name or alias, raising ArgumentError for unknown names."""
    try:
        return DialectType(value)
    except ValueError as exc:
        raise ArgumentError(f"unsupported dialect: {value!r}") from exc


def get_dialect(value: "DialectType | str") -> Dialect:
    """Return the shared rule set for a dialect name or alias."""
    return _DIALECTS[parse_dialect(value)]


__all__ = [
    "Dialect",
    "DialectType",
    "MySQLDialect",
    "OracleDialect",
    "PostgresDialect",
    "ROWNUM_COLUMN",
    "SQLServerDialect",
    "SQLiteDialect",
    "get_dialect",
    "limits_itself",
    "mask_literals",
    "parse_dialect",
    "placeholder_positions",
    "top_level_matches",
    "validate_identifier",
]
