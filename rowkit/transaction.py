"""
Transactions.

A `Transaction` holds one pooled connection from `begin` until it commits or
rolls back, and exposes the same operations as a database handle. Every
operation on a finished transaction, and every second commit or rollback,
raises `TransactionStateError`.

Usage:
    with db.begin_transaction() as tx:
        tx.insert("users", Record({"name": "ada"}))
        tx.exec("UPDATE stats SET users = users + 1")
    # committed here; rolled back instead if the block raised

    db.transaction(lambda tx: tx.delete("sessions", "user_id = ?", 7))
"""

from __future__ import annotations

import contextlib
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any, Generator, Optional, Type

from rowkit.errors import TransactionStateError
from rowkit.executor import is_driver_error, translate_error
from rowkit.operations import Operations
from rowkit.utils.logging import get_logger

if TYPE_CHECKING:
    from rowkit.database import Database

log = get_logger(__name__)


class TransactionState(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Transaction(Operations):
    """
    Operations bound to one open transaction.

    Not safe to share across threads; the connection belongs to the caller
    until `commit` or `rollback`.
    """

    def __init__(
        self,
        database: "Database",
        connection: Any,
        release: contextlib.ExitStack,
        timeout: Optional[float] = None,
    ) -> None:
        self._database = database
        self.name = database.name
        self.dialect = database.dialect
        self._executor = database._executor
        self._conn = connection
        self._release = release
        self._timeout = timeout
        self._state = TransactionState.ACTIVE

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is TransactionState.ACTIVE

    def _ensure_active(self) -> None:
        if self._state is not TransactionState.ACTIVE:
            raise TransactionStateError(f"transaction already {self._state.value}")

    @contextlib.contextmanager
    def _connection(self) -> Generator[Any, None, None]:
        self._ensure_active()
        with self.dialect.statement_timeout(self._conn, self._timeout):
            yield self._conn

    def _finish(self, state: TransactionState) -> None:
        self._state = state
        self._release.close()

    def commit(self) -> None:
        """
        Make the transaction's writes durable and release its connection.

        Raises
        ------
        TransactionStateError
            If the transaction already committed or rolled back.
        QueryError
            If the backend refused the commit; the transaction is rolled back.
        """
        self._ensure_active()
        try:
            self._conn.commit()
        except Exception as exc:
            self._rollback_quietly()
            if is_driver_error(exc):
                raise translate_error(exc, "COMMIT") from exc
            raise
        self._finish(TransactionState.COMMITTED)

    def rollback(self) -> None:
        """Discard the transaction's writes and release its connection."""
        self._ensure_active()
        try:
            self._conn.rollback()
        except Exception as exc:
            if is_driver_error(exc):
                raise translate_error(exc, "ROLLBACK") from exc
            raise
        finally:
            self._finish(TransactionState.ROLLED_BACK)

    def _rollback_quietly(self) -> None:
        """Roll back if still active, logging instead of raising on failure."""
        if not self.active:
            return
        try:
            self.rollback()
        except Exception as exc:
            log.error(
                "transaction rollback failed",
                extra={"db": self.name, "error": str(exc)},
            )

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if not self.active:
            return
        if exc_type is None:
            self.commit()
        else:
            self._rollback_quietly()

    def __repr__(self) -> str:
        return f"Transaction(db={self.name!r}, state={self._state.value!r})"


__all__ = ["Transaction", "TransactionState"]
