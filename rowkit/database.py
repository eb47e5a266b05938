"""
Database handles.

A `Database` couples a registry name, a dialect and a connection pool. Each
operation borrows a pooled connection, commits on success and rolls back on
failure. Transactions, cache facades and deadline-bound copies all derive from
a handle.
"""

from __future__ import annotations

import contextlib
import copy
import re
import threading
from types import TracebackType
from typing import Any, Callable, Dict, Generator, List, Optional, Type, TypeVar

from rowkit.config import DatabaseConfig
from rowkit.dialects import DialectType, get_dialect
from rowkit.errors import NotFoundError
from rowkit.executor import Executor, is_driver_error, translate_error
from rowkit.infrastructure.db_factory import open_pool
from rowkit.infrastructure.pool import ConnectionPool, PoolLimits, PoolStats
from rowkit.operations import Operations
from rowkit.transaction import Transaction
from rowkit.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

_MAJOR_VERSION = re.compile(r"^\s*(\d+)")


def _rollback_quietly(connection: Any) -> None:
    try:
        connection.rollback()
    except Exception as exc:
        log.warning("rollback after failed operation did not succeed", extra={"error": str(exc)})


class Database(Operations):
    """
    A named, pooled connection to one database.

    Parameters
    ----------
    name : str
        Registry name.
    config : DatabaseConfig
        Dialect, DSN and pool limits the handle was opened with.
    pool : ConnectionPool
        Source of connections; owned by the handle and closed with it.
    """

    def __init__(self, name: str, config: DatabaseConfig, pool: ConnectionPool) -> None:
        self.name = name
        self.config = config
        self.dialect = get_dialect(config.dialect)
        self._pool = pool
        self._executor = Executor(name, self.dialect)
        self._database = self
        self._timeout = config.query_timeout
        self._pk_lock = threading.Lock()
        self._pk_cache: Dict[str, List[str]] = {}
        self._server_version = config.server_version
        self._closed = False
        self._origin = self

    @classmethod
    def open(cls, name: str, config: DatabaseConfig) -> "Database":
        """
        Open and validate a pool for `config`.

        Raises
        ------
        DatabaseConnectionError
            If the server cannot be reached.
        """
        database = cls(name, config, open_pool(config))
        log.info(
            "database opened",
            extra={"db": name, "dialect": config.dialect.value, "max_open": config.max_open},
        )
        return database

    @property
    def dialect_type(self) -> DialectType:
        return self.dialect.type

    @property
    def closed(self) -> bool:
        return self._origin._closed

    @contextlib.contextmanager
    def _connection(self) -> Generator[Any, None, None]:
        with self._pool.connection() as connection:
            try:
                with self.dialect.statement_timeout(connection, self._timeout):
                    yield connection
            except BaseException:
                _rollback_quietly(connection)
                raise
            try:
                connection.commit()
            except Exception as exc:
                _rollback_quietly(connection)
                if is_driver_error(exc):
                    raise translate_error(exc, "COMMIT") from exc
                raise

    # Primary-key cache --------------------------------------------------------

    def _cached_primary_keys(self, table: str) -> Optional[List[str]]:
        with self._pk_lock:
            keys = self._pk_cache.get(table)
            return list(keys) if keys is not None else None

    def _remember_primary_keys(self, table: str, keys: List[str]) -> None:
        with self._pk_lock:
            self._pk_cache[table] = list(keys)

    def server_version(self) -> Optional[int]:
        """
        Major server version when it matters for SQL generation (Oracle).

        Taken from the configuration, else from the driver connection's
        ``version`` attribute; None when unknown.
        """
        if self._server_version is not None or self.dialect.type is not DialectType.ORACLE:
            return self._server_version
        with self._pool.connection() as connection:
            match = _MAJOR_VERSION.match(str(getattr(connection, "version", "") or ""))
        if match:
            self._server_version = int(match.group(1))
        return self._server_version

    # Lifecycle ----------------------------------------------------------------

    def ping(self) -> None:
        """Round-trip a trivial statement; raises DatabaseConnectionError on failure."""
        self._pool.ping(self.dialect.ping_sql)

    def pool_stats(self) -> PoolStats:
        return self._pool.stats()

    def set_pool_limits(
        self,
        max_open: Optional[int] = None,
        max_idle: Optional[int] = None,
        max_lifetime: Optional[float] = None,
    ) -> PoolLimits:
        """Resize the pool; unspecified limits keep their current value."""
        current = self._pool.limits
        max_open = max_open if max_open is not None else current.max_open
        max_idle = max_idle if max_idle is not None else current.max_idle
        limits = PoolLimits(
            max_open=max_open,
            max_idle=min(max_idle, max_open),
            max_lifetime=max_lifetime if max_lifetime is not None else current.max_lifetime,
            acquire_timeout=current.acquire_timeout,
        )
        self._pool.set_limits(limits)
        log.info("pool limits updated", extra={"db": self.name, **limits.__dict__})
        return limits

    def timeout(self, seconds: Optional[float]) -> "Database":
        """A view of this handle whose statements are bounded by `seconds`."""
        bound = copy.copy(self)
        bound._timeout = seconds
        return bound

    def close(self) -> None:
        """Close the pool. Safe to call more than once; a timeout-bound view closes its origin."""
        if self._origin is not self:
            self._origin.close()
            return
        if self._closed:
            return
        self._closed = True
        self._pool.close()
        log.info("database closed", extra={"db": self.name})

    def __enter__(self) -> "Database":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()

    # Transactions -------------------------------------------------------------

    def begin_transaction(self) -> Transaction:
        """Borrow a connection and open a transaction on it."""
        stack = contextlib.ExitStack()
        try:
            connection = stack.enter_context(self._pool.connection())
            self.dialect.begin(connection)
        except Exception as exc:
            stack.close()
            if is_driver_error(exc):
                raise translate_error(exc, "BEGIN") from exc
            raise
        return Transaction(self, connection, stack, timeout=self._timeout)

    def transaction(self, unit_of_work: Callable[[Transaction], T]) -> T:
        """
        Run `unit_of_work` inside a transaction.

        Commits when it returns and rolls back when it raises anything,
        including KeyboardInterrupt, before re-raising. A failed rollback is
        logged; the original exception is the one that propagates.

        Returns
        -------
        T
            Whatever `unit_of_work` returned.
        """
        tx = self.begin_transaction()
        try:
            result = unit_of_work(tx)
        except BaseException:
            tx._rollback_quietly()
            raise
        if tx.active:
            tx.commit()
        return result

    def __repr__(self) -> str:
        return f"Database(name={self.name!r}, dialect={self.dialect.name!r})"


class MissingDatabase:
    """
    Stand-in returned by ``use(name)`` for an unregistered name.

    Every operation raises NotFoundError, so lookups can be chained without
    checking for None first.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def __getattr__(self, attr: str) -> Callable[..., Any]:
        if attr.startswith("__"):
            raise AttributeError(attr)

        def fail(*args: Any, **kwargs: Any) -> Any:
            raise NotFoundError(f"database {self.name!r} is not registered")

        return fail

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"MissingDatabase(name={self.name!r})"


__all__ = ["Database", "MissingDatabase"]
