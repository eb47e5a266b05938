"""
Pagination SQL builders.

Pagination runs two statements: one counting every matching row and one
fetching the requested slice. The count uses the cheap form
``SELECT COUNT(*) FROM <table> WHERE <where>`` unless a lexical scan of the
select and where fragments finds a construct that changes the row count
(DISTINCT, GROUP BY, aggregates, set operations, window functions, nested
selects), in which case the full query is wrapped in a counting subquery.

The scan is heuristic, not a SQL parser. Falling back to the subquery is
always correct, so any doubt resolves that way.

Usage:
    from rowkit.dialects import get_dialect
    from rowkit.pagination import build_page_query

    query = build_page_query(get_dialect("postgres"), page=2, page_size=20,
                             select="id, name", table="users", where="age > ?",
                             order_by="id")
    query.count_sql  # SELECT COUNT(*) FROM users WHERE age > ?
    query.page_sql   # SELECT id, name FROM users WHERE age > ? ORDER BY id LIMIT 20 OFFSET 20
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from rowkit.dialects import Dialect, limits_itself, top_level_matches
from rowkit.errors import ArgumentError

_LITERAL = re.compile(r"'(?:[^']|'')*'")
_LEADING_SELECT = re.compile(r"^\s*SELECT\s+", re.IGNORECASE)
_LEADING_WHERE = re.compile(r"^\s*WHERE\s+", re.IGNORECASE)
_LEADING_ORDER_BY = re.compile(r"^\s*ORDER\s+BY\s+", re.IGNORECASE)
_LEADING_WITH = re.compile(r"^\s*WITH\b", re.IGNORECASE)
_ORDER_BY = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)
_FROM = re.compile(r"\bFROM\b", re.IGNORECASE)

_AGGREGATES = (
    "COUNT",
    "SUM",
    "AVG",
    "MIN",
    "MAX",
    "GROUP_CONCAT",
    "STRING_AGG",
    "ARRAY_AGG",
    "JSON_AGG",
    "JSONB_AGG",
    "JSON_ARRAYAGG",
    "JSON_OBJECTAGG",
    "LISTAGG",
    "BIT_AND",
    "BIT_OR",
    "BOOL_AND",
    "BOOL_OR",
    "STDDEV",
    "VARIANCE",
)

# Constructs that change the number of rows a select produces.
_SELECT_PATTERNS = (
    re.compile(r"\bDISTINCT\b", re.IGNORECASE),
    re.compile(r"\b(" + "|".join(_AGGREGATES) + r")\s*\(", re.IGNORECASE),
    re.compile(r"\bOVER\s*\(", re.IGNORECASE),
    re.compile(r"\bSELECT\b", re.IGNORECASE),
)
_CLAUSE_PATTERNS = (
    re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE),
    re.compile(r"\bHAVING\b", re.IGNORECASE),
    re.compile(r"\b(UNION|INTERSECT|EXCEPT|MINUS)\b", re.IGNORECASE),
)


class CountStrategy(str, Enum):
    """How the total row count is derived."""

    FAST = "fast"
    SUBQUERY = "subquery"


@dataclass(frozen=True)
class PageQuery:
    """The pair of statements behind one page, plus the slice bounds."""

    count_sql: str
    page_sql: str
    page: int
    page_size: int
    offset: int
    strategy: CountStrategy


def strip_literals(sql: str) -> str:
    """Blank out single-quoted literals so keywords inside them are not matched."""
    return _LITERAL.sub("''", sql)


def _strip_prefix(pattern: re.Pattern[str], fragment: str) -> str:
    return pattern.sub("", fragment.strip(), count=1).strip()


def classify_select(select: str, where: str = "") -> CountStrategy:
    """
    Choose the count strategy for a select fragment and where fragment.

    Returns
    -------
    CountStrategy
        FAST when ``COUNT(*)`` over the table with the same WHERE gives the
        right total, SUBQUERY otherwise.
    """
    select_text = strip_literals(_strip_prefix(_LEADING_SELECT, select))
    where_text = strip_literals(where)
    if _LEADING_WITH.match(select_text):
        return CountStrategy.SUBQUERY
    for pattern in _SELECT_PATTERNS:
        if pattern.search(select_text):
            return CountStrategy.SUBQUERY
    for pattern in _CLAUSE_PATTERNS:
        if pattern.search(select_text) or pattern.search(where_text):
            return CountStrategy.SUBQUERY
    return CountStrategy.FAST


def normalize_page(page: int, page_size: int) -> Tuple[int, int]:
    """Clamp `page` to 1 and reject non-positive page sizes."""
    if page_size < 1:
        raise ArgumentError(f"page_size must be at least 1, got {page_size}")
    return max(page, 1), page_size


def build_base_sql(select: str, table: str, where: str = "") -> str:
    select = _strip_prefix(_LEADING_SELECT, select) or "*"
    where = _strip_prefix(_LEADING_WHERE, where)
    sql = f"SELECT {select} FROM {table}"
    if where:
        sql += f" WHERE {where}"
    return sql


def build_count_sql(dialect: Dialect, select: str, table: str, where: str = "") -> str:
    """Counting statement for a select/table/where triple; never carries ORDER BY."""
    if classify_select(select, where) is CountStrategy.FAST:
        where = _strip_prefix(_LEADING_WHERE, where)
        sql = f"SELECT COUNT(*) FROM {table}"
        if where:
            sql += f" WHERE {where}"
        return sql
    return dialect.count_subquery(build_base_sql(select, table, where))


def build_page_sql(
    dialect: Dialect,
    select: str,
    table: str,
    where: str,
    order_by: str,
    page: int,
    page_size: int,
    server_version: Optional[int] = None,
) -> str:
    """Slice statement for one page, using the dialect's limit/offset form."""
    page, page_size = normalize_page(page, page_size)
    return dialect.page_sql(
        build_base_sql(select, table, where),
        _strip_prefix(_LEADING_ORDER_BY, order_by),
        page_size,
        (page - 1) * page_size,
        server_version,
    )


def build_page_query(
    dialect: Dialect,
    page: int,
    page_size: int,
    select: str,
    table: str,
    where: str = "",
    order_by: str = "",
    server_version: Optional[int] = None,
) -> PageQuery:
    page, page_size = normalize_page(page, page_size)
    return PageQuery(
        count_sql=build_count_sql(dialect, select, table, where),
        page_sql=build_page_sql(
            dialect, select, table, where, order_by, page, page_size, server_version
        ),
        page=page,
        page_size=page_size,
        offset=(page - 1) * page_size,
        strategy=classify_select(select, where),
    )


def split_order_by(sql: str) -> Tuple[str, str]:
    """Split a statement into its body and its trailing top-level ORDER BY list."""
    sql = sql.strip().rstrip(";").rstrip()
    matches = top_level_matches(sql, _ORDER_BY)
    if not matches:
        return sql, ""
    last = matches[-1]
    return sql[: last.start()].rstrip(), sql[last.end():].strip()


def build_sql_page_query(
    dialect: Dialect,
    page: int,
    page_size: int,
    sql: str,
    server_version: Optional[int] = None,
) -> PageQuery:
    """
    Page query for a complete SELECT statement.

    The trailing ORDER BY moves to the slice statement only. The count takes
    the fast form when the statement is a plain ``SELECT ... FROM ...`` whose
    select list passes `classify_select` and that does not limit itself.
    """
    page, page_size = normalize_page(page, page_size)
    body, order_by = split_order_by(sql)
    strategy = CountStrategy.SUBQUERY
    count_sql = dialect.count_subquery(body)
    select_match = _LEADING_SELECT.match(body)
    from_matches = top_level_matches(body, _FROM)
    if select_match and from_matches and not _LEADING_WITH.match(body):
        select = body[select_match.end(): from_matches[0].start()]
        rest = body[from_matches[0].end():].strip()
        if classify_select(select, rest) is CountStrategy.FAST and not limits_itself(body):
            strategy = CountStrategy.FAST
            count_sql = f"SELECT COUNT(*) FROM {rest}"
    offset = (page - 1) * page_size
    return PageQuery(
        count_sql=count_sql,
        page_sql=dialect.page_sql(body, order_by, page_size, offset, server_version),
        page=page,
        page_size=page_size,
        offset=offset,
        strategy=strategy,
    )


__all__ = [
    "CountStrategy",
    "PageQuery",
    "build_base_sql",
    "build_count_sql",
    "build_page_query",
    "build_page_sql",
    "build_sql_page_query",
    "classify_select",
    "normalize_page",
    "split_order_by",
    "strip_literals",
]
