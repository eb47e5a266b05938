"""
rowkit: dialect-agnostic data access through dynamic records.

Open one or more named databases, then run CRUD, paginated and transactional
operations against them with `Record` rows instead of per-table models:

    import rowkit
    from rowkit import Record

    rowkit.open_database("sqlite3", "app.db")
    user_id = rowkit.insert("users", Record({"name": "ada", "age": 36}))
    page = rowkit.paginate(1, 20, "*", "users", "age > ?", "name", args=[18])

`rowkit.cache` is the cache package; the read-through facade for the current
database is ``rowkit.api.cache(region)`` or ``rowkit.current().cache(region)``.
"""

from rowkit.api import (
    batch_delete,
    batch_delete_by_ids,
    batch_insert,
    batch_update,
    begin_transaction,
    close,
    count,
    current,
    delete,
    delete_record,
    exec,
    exists,
    find_all,
    insert,
    open_database,
    open_from_settings,
    open_named,
    paginate,
    paginate_sql,
    ping,
    query,
    query_first,
    query_first_or_none,
    query_map,
    save,
    select,
    transaction,
    update,
    update_record,
    use,
    using,
)
from rowkit.cache import (
    CachedQuery,
    cache_clear,
    cache_delete,
    cache_get,
    cache_set,
    cache_status,
    create_cache,
    set_remote_cache,
)
from rowkit.config import DatabaseConfig, Settings, get_settings
from rowkit.database import Database
from rowkit.dialects import DialectType
from rowkit.domain import Page, Record
from rowkit.errors import (
    ArgumentError,
    ConstraintViolationError,
    DatabaseConnectionError,
    DuplicateNameError,
    InvalidIdentifierError,
    NotFoundError,
    PartialBatchError,
    PoolClosedError,
    PoolTimeoutError,
    QueryError,
    RowkitError,
    SerializationError,
    TransactionStateError,
)
from rowkit.executor import ExecResult
from rowkit.registry import Registry, get_registry
from rowkit.transaction import Transaction, TransactionState
from rowkit.utils.logging import configure_logging, get_logger

__version__ = "0.1.0"

__all__ = [
    "ArgumentError",
    "CachedQuery",
    "ConstraintViolationError",
    "Database",
    "DatabaseConfig",
    "DatabaseConnectionError",
    "DialectType",
    "DuplicateNameError",
    "ExecResult",
    "InvalidIdentifierError",
    "NotFoundError",
    "Page",
    "PartialBatchError",
    "PoolClosedError",
    "PoolTimeoutError",
    "QueryError",
    "Record",
    "Registry",
    "RowkitError",
    "SerializationError",
    "Settings",
    "Transaction",
    "TransactionState",
    "TransactionStateError",
    "batch_delete",
    "batch_delete_by_ids",
    "batch_insert",
    "batch_update",
    "begin_transaction",
    "cache_clear",
    "cache_delete",
    "cache_get",
    "cache_set",
    "cache_status",
    "close",
    "configure_logging",
    "count",
    "create_cache",
    "current",
    "delete",
    "delete_record",
    "exec",
    "exists",
    "find_all",
    "get_logger",
    "get_registry",
    "get_settings",
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
    "set_remote_cache",
    "transaction",
    "update",
    "update_record",
    "use",
    "using",
]
