"""
Named database registry.

The registry maps names to open `Database` handles and tracks which one is
"current" for unqualified calls. The first handle registered becomes current;
`select` moves the process-wide pointer and `using` overrides it for the
calling context only (thread or asyncio task), so concurrent callers never
observe each other's selection.

Registry mutation is guarded by one lock. Resolution takes the lock only to
read the pointer and releases it before any I/O.
"""

from __future__ import annotations

import atexit
import contextlib
import threading
from contextvars import ContextVar
from typing import Any, Dict, Generator, List, Optional, Union

from pydantic import ValidationError

from rowkit.config import DEFAULT_MAX_OPEN, DatabaseConfig
from rowkit.database import Database, MissingDatabase
from rowkit.dialects import DialectType, parse_dialect
from rowkit.errors import ArgumentError, DuplicateNameError, NotFoundError
from rowkit.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_NAME = "default"


def build_config(
    dialect: Union[DialectType, str],
    dsn: str,
    max_open: int = DEFAULT_MAX_OPEN,
    **options: Any,
) -> DatabaseConfig:
    """Validate connection arguments into a DatabaseConfig, raising ArgumentError on bad input."""
    try:
        return DatabaseConfig(dialect=parse_dialect(dialect), dsn=dsn, max_open=max_open, **options)
    except ValidationError as exc:
        raise ArgumentError(str(exc)) from exc


class Registry:
    """
    Thread-safe mapping of names to open database handles.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._databases: Dict[str, Database] = {}
        self._current: Optional[str] = None
        self._selected: ContextVar[Optional[str]] = ContextVar(
            f"rowkit_selected_{id(self)}", default=None
        )

    # Opening ------------------------------------------------------------------

    def open(
        self,
        dialect: Union[DialectType, str],
        dsn: str,
        max_open: int = DEFAULT_MAX_OPEN,
        **options: Any,
    ) -> Database:
        """
        Open the handle registered as ``"default"``.

        Raises
        ------
        DuplicateNameError
            If a default handle is already open.
        DatabaseConnectionError
            If the server cannot be reached; the registry is left unchanged.
        """
        return self.open_config(build_config(dialect, dsn, max_open, **options))

    def open_named(
        self,
        name: str,
        dialect: Union[DialectType, str],
        dsn: str,
        max_open: int = DEFAULT_MAX_OPEN,
        **options: Any,
    ) -> Database:
        """Open a handle under an explicit name; ``"default"`` is reserved for `open`."""
        if not name:
            raise ArgumentError("database name must not be empty")
        if name == DEFAULT_NAME:
            raise ArgumentError(f"{DEFAULT_NAME!r} is reserved; use open() instead")
        return self.open_config(build_config(dialect, dsn, max_open, **options), name=name)

    def open_config(self, config: DatabaseConfig, name: str = DEFAULT_NAME) -> Database:
        with self._lock:
            if name in self._databases:
                raise DuplicateNameError(name)
        database = Database.open(name, config)
        try:
            return self.register(database)
        except DuplicateNameError:
            # Another caller registered the name while this pool was opening.
            database.close()
            raise

    def register(self, database: Database) -> Database:
        """Add an already-open handle under its own name."""
        with self._lock:
            if database.name in self._databases:
                raise DuplicateNameError(database.name)
            self._databases[database.name] = database
            if self._current is None:
                self._current = database.name
        return database

    # Lookup -------------------------------------------------------------------

    def get(self, name: str) -> Database:
        with self._lock:
            database = self._databases.get(name)
        if database is None:
            raise NotFoundError(f"database {name!r} is not registered")
        return database

    def use(self, name: str) -> Union[Database, MissingDatabase]:
        """The handle for `name`, or a marker whose every operation raises NotFoundError."""
        with self._lock:
            database = self._databases.get(name)
        return database if database is not None else MissingDatabase(name)

    def select(self, name: str) -> Database:
        """Make `name` the process-wide current handle."""
        with self._lock:
            database = self._databases.get(name)
            if database is None:
                raise NotFoundError(f"database {name!r} is not registered")
            self._current = name
        return database

    @contextlib.contextmanager
    def using(self, name: str) -> Generator[Database, None, None]:
        """Make `name` current for the calling context only, for the duration of the block."""
        database = self.get(name)
        token = self._selected.set(name)
        try:
            yield database
        finally:
            self._selected.reset(token)

    def current(self) -> Database:
        """
        The handle unqualified calls run against.

        Resolution order: the context override from `using`, then the
        process-wide current handle.

        Raises
        ------
        NotFoundError
            If no database has been opened, or the selected one was closed.
        """
        override = self._selected.get()
        with self._lock:
            name = override or self._current
            database = self._databases.get(name) if name is not None else None
        if name is None:
            raise NotFoundError("no database has been opened")
        if database is None:
            raise NotFoundError(f"database {name!r} is not registered")
        return database

    def current_name(self) -> Optional[str]:
        override = self._selected.get()
        with self._lock:
            return override or self._current

    def names(self) -> List[str]:
        with self._lock:
            return list(self._databases)

    def ping(self, name: Optional[str] = None) -> None:
        database = self.get(name) if name is not None else self.current()
        database.ping()

    # Closing ------------------------------------------------------------------

    def close_database(self, name: str) -> None:
        """Close and unregister one handle; the next registered one becomes current."""
        with self._lock:
            database = self._databases.pop(name, None)
            if database is None:
                raise NotFoundError(f"database {name!r} is not registered")
            if self._current == name:
                self._current = next(iter(self._databases), None)
        database.close()

    def close(self) -> None:
        """Close every handle exactly once and empty the registry. Idempotent."""
        with self._lock:
            databases = list(self._databases.values())
            self._databases.clear()
            self._current = None
        for database in databases:
            try:
                database.close()
            except Exception as exc:
                log.error("failed to close database", extra={"db": database.name, "error": str(exc)})

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._databases

    def __len__(self) -> int:
        with self._lock:
            return len(self._databases)


_default_registry = Registry()
atexit.register(_default_registry.close)


def get_registry() -> Registry:
    """The process-wide registry used by the module-level API."""
    return _default_registry


__all__ = ["DEFAULT_NAME", "Registry", "build_config", "get_registry"]
