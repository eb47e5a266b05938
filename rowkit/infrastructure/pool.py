"""
Connection pool capability and implementations.

Database handles only talk to a `ConnectionPool`: something that lends out
DB-API connections, can be pinged and resized, and reports its occupancy.
PostgreSQL uses psycopg_pool and Oracle the python-oracledb session pool. The
drivers without a pool of their own (sqlite3, PyMySQL, pyodbc) go through
`DbapiPool`, a bounded pool over a plain connect callable.
"""

from __future__ import annotations

import contextlib
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, Deque, Dict, Generator, Optional, Protocol, Tuple, runtime_checkable

from psycopg_pool import ConnectionPool as PsycopgConnectionPool
from psycopg_pool import PoolTimeout

from rowkit.errors import DatabaseConnectionError, PoolClosedError, PoolTimeoutError
from rowkit.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class PoolLimits:
    """
    Sizing rules for a pool.

    Attributes
    ----------
    max_open : int
        Maximum connections open at once (idle plus in use).
    max_idle : int
        Maximum idle connections kept for reuse.
    max_lifetime : float
        Seconds after which a connection is closed instead of reused.
    acquire_timeout : float
        Seconds to wait for a free connection before giving up.
    """

    max_open: int = 10
    max_idle: int = 5
    max_lifetime: float = 3600.0
    acquire_timeout: float = 30.0


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time occupancy of a pool."""

    max_open: int
    max_idle: int
    open: int
    idle: int
    in_use: int
    waiting: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@runtime_checkable
class ConnectionPool(Protocol):
    """
    Pooled connection capability consumed by database handles.
    """

    limits: PoolLimits

    def connection(self) -> contextlib.AbstractContextManager[Any]:
        """Lend a connection for the duration of a `with` block."""
        ...

    def ping(self, sql: str = "SELECT 1") -> None:
        """Round-trip a trivial statement, raising DatabaseConnectionError on failure."""
        ...

    def set_limits(self, limits: PoolLimits) -> None:
        ...

    def stats(self) -> PoolStats:
        ...

    def close(self) -> None:
        """Release every connection. Idempotent."""
        ...


def _close_quietly(connection: Any) -> None:
    try:
        connection.close()
    except Exception as exc:  # pragma: no cover - driver specific
        log.warning("failed to close connection", extra={"error": str(exc)})


def _ping_through(pool: ConnectionPool, sql: str) -> None:
    try:
        with pool.connection() as connection:
            with contextlib.closing(connection.cursor()) as cursor:
                cursor.execute(sql)
                cursor.fetchall()
    except DatabaseConnectionError:
        raise
    except Exception as exc:
        raise DatabaseConnectionError(f"ping failed: {exc}") from exc


class DbapiPool:
    """
    Bounded pool over a DB-API `connect` callable.

    At most `max_open` connections exist at once; callers beyond that wait up
    to `acquire_timeout` seconds. Returned connections are kept for reuse up
    to `max_idle`, and recycled once older than `max_lifetime`.
    """

    def __init__(self, connect: Callable[[], Any], limits: Optional[PoolLimits] = None) -> None:
        self._connect = connect
        self.limits = limits or PoolLimits()
        self._cond = threading.Condition()
        self._idle: Deque[Tuple[Any, float]] = deque()
        self._created: Dict[int, float] = {}
        self._open = 0
        self._waiting = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _acquire(self) -> Any:
        deadline = time.monotonic() + self.limits.acquire_timeout
        with self._cond:
            while True:
                if self._closed:
                    raise PoolClosedError("connection pool is closed")
                while self._idle:
                    connection, created_at = self._idle.pop()
                    if time.monotonic() - created_at < self.limits.max_lifetime:
                        return connection
                    self._discard_locked(connection)
                if self._open < self.limits.max_open:
                    self._open += 1
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PoolTimeoutError(
                        f"no connection available within {self.limits.acquire_timeout}s"
                    )
                self._waiting += 1
                try:
                    self._cond.wait(remaining)
                finally:
                    self._waiting -= 1
        try:
            connection = self._connect()
        except Exception as exc:
            with self._cond:
                self._open -= 1
                self._cond.notify()
            raise DatabaseConnectionError(f"failed to open connection: {exc}") from exc
        with self._cond:
            self._created[id(connection)] = time.monotonic()
        return connection

    def _discard_locked(self, connection: Any) -> None:
        self._created.pop(id(connection), None)
        self._open -= 1
        _close_quietly(connection)

    def _release(self, connection: Any, broken: bool = False) -> None:
        with self._cond:
            created_at = self._created.get(id(connection), 0.0)
            expired = time.monotonic() - created_at >= self.limits.max_lifetime
            if self._closed or broken or expired or len(self._idle) >= self.limits.max_idle:
                self._discard_locked(connection)
            else:
                self._idle.append((connection, created_at))
            self._cond.notify()

    @contextlib.contextmanager
    def connection(self) -> Generator[Any, None, None]:
        """
        Context manager lending a pooled connection.

        Example
        -------
            with pool.connection() as conn:
                cur = conn.cursor()
                cur.execute("SELECT 1")
        """
        connection = self._acquire()
        broken = False
        try:
            yield connection
        except DatabaseConnectionError:
            broken = True
            raise
        finally:
            self._release(connection, broken=broken)

    def ping(self, sql: str = "SELECT 1") -> None:
        _ping_through(self, sql)

    def set_limits(self, limits: PoolLimits) -> None:
        with self._cond:
            self.limits = limits
            while len(self._idle) > limits.max_idle:
                connection, _ = self._idle.popleft()
                self._discard_locked(connection)
            self._cond.notify_all()

    def stats(self) -> PoolStats:
        with self._cond:
            idle = len(self._idle)
            return PoolStats(
                max_open=self.limits.max_open,
                max_idle=self.limits.max_idle,
                open=self._open,
                idle=idle,
                in_use=self._open - idle,
                waiting=self._waiting,
            )

    def close(self) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            while self._idle:
                connection, _ = self._idle.popleft()
                self._discard_locked(connection)
            self._cond.notify_all()


class PsycopgPool:
    """
    Adapter exposing a psycopg_pool.ConnectionPool through the pool capability.

    `max_idle` maps to the pool's `min_size`: the number of connections the
    pool keeps warm.
    """

    def __init__(self, conninfo: str, limits: Optional[PoolLimits] = None) -> None:
        self.limits = limits or PoolLimits()
        self._closed = False
        self._pool = PsycopgConnectionPool(
            conninfo=conninfo,
            min_size=min(self.limits.max_idle, self.limits.max_open),
            max_size=self.limits.max_open,
            max_lifetime=self.limits.max_lifetime,
            timeout=self.limits.acquire_timeout,
            open=True,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @contextlib.contextmanager
    def connection(self) -> Generator[Any, None, None]:
        if self._closed:
            raise PoolClosedError("connection pool is closed")
        try:
            with self._pool.connection() as connection:
                yield connection
        except PoolTimeout as exc:
            raise PoolTimeoutError(str(exc)) from exc

    def ping(self, sql: str = "SELECT 1") -> None:
        try:
            with self.connection() as connection:
                connection.execute(sql)
        except DatabaseConnectionError:
            raise
        except Exception as exc:
            raise DatabaseConnectionError(f"ping failed: {exc}") from exc

    def set_limits(self, limits: PoolLimits) -> None:
        self.limits = limits
        self._pool.resize(min_size=min(limits.max_idle, limits.max_open), max_size=limits.max_open)

    def stats(self) -> PoolStats:
        raw = self._pool.get_stats()
        size = int(raw.get("pool_size", 0))
        idle = int(raw.get("pool_available", 0))
        return PoolStats(
            max_open=self.limits.max_open,
            max_idle=self.limits.max_idle,
            open=size,
            idle=idle,
            in_use=max(0, size - idle),
            waiting=int(raw.get("requests_waiting", 0)),
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pool.close()


class OraclePool:
    """
    Adapter exposing a python-oracledb session pool through the pool capability.

    `create` is ``oracledb.create_pool`` with the connection parameters already
    bound. Like `PsycopgPool`, `max_idle` becomes the pool's ``min`` sessions.
    """

    # thin and thick mode codes for an expired wait_timeout
    _TIMEOUT_CODES = ("DPY-4005", "ORA-24457")

    def __init__(self, create: Callable[..., Any], limits: Optional[PoolLimits] = None) -> None:
        self.limits = limits or PoolLimits()
        self._closed = False
        self._pool = create(
            min=min(self.limits.max_idle, self.limits.max_open),
            max=self.limits.max_open,
            increment=1,
            **self._timeouts(self.limits),
        )

    @staticmethod
    def _timeouts(limits: PoolLimits) -> Dict[str, int]:
        return {
            "wait_timeout": int(limits.acquire_timeout * 1000),
            "max_lifetime_session": int(limits.max_lifetime),
        }

    @property
    def closed(self) -> bool:
        return self._closed

    def _acquire(self) -> Any:
        if self._closed:
            raise PoolClosedError("connection pool is closed")
        try:
            return self._pool.acquire()
        except Exception as exc:
            if any(code in str(exc) for code in self._TIMEOUT_CODES):
                raise PoolTimeoutError(
                    f"no connection available within {self.limits.acquire_timeout}s"
                ) from exc
            raise DatabaseConnectionError(f"failed to acquire connection: {exc}") from exc

    @contextlib.contextmanager
    def connection(self) -> Generator[Any, None, None]:
        connection = self._acquire()
        try:
            yield connection
        except DatabaseConnectionError:
            self._pool.drop(connection)
            raise
        except BaseException:
            self._pool.release(connection)
            raise
        self._pool.release(connection)

    def ping(self, sql: str = "SELECT 1 FROM DUAL") -> None:
        _ping_through(self, sql)

    def set_limits(self, limits: PoolLimits) -> None:
        self.limits = limits
        self._pool.reconfigure(
            min=min(limits.max_idle, limits.max_open),
            max=limits.max_open,
            **self._timeouts(limits),
        )

    def stats(self) -> PoolStats:
        opened = int(self._pool.opened)
        busy = int(self._pool.busy)
        return PoolStats(
            max_open=self.limits.max_open,
            max_idle=self.limits.max_idle,
            open=opened,
            idle=max(0, opened - busy),
            in_use=busy,
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pool.close(force=True)


__all__ = [
    "ConnectionPool",
    "DbapiPool",
    "OraclePool",
    "PoolLimits",
    "PoolStats",
    "PsycopgPool",
]
