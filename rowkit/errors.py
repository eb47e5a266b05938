"""
Exception hierarchy for rowkit.

Every error raised by the library derives from `RowkitError`, so callers can
catch one base class. The concrete kinds also subclass the closest builtin
(`ConnectionError`, `LookupError`, `ValueError`) to keep `except` clauses
written against the standard hierarchy working.
"""

from __future__ import annotations

from typing import Optional


class RowkitError(Exception):
    """Base class for every error raised by rowkit."""


class DatabaseConnectionError(RowkitError, ConnectionError):
    """A connection could not be opened, validated, or acquired."""


class PoolTimeoutError(DatabaseConnectionError):
    """No pooled connection became available before the acquire timeout."""


class PoolClosedError(DatabaseConnectionError):
    """The pool was closed before or while a connection was requested."""


class DuplicateNameError(RowkitError):
    """A database handle is already registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"database {name!r} is already registered")
        self.name = name


class NotFoundError(RowkitError, LookupError):
    """An unknown database name, or a single-row query that matched nothing."""


class ArgumentError(RowkitError, ValueError):
    """Invalid arguments: bad page sizes, placeholder mismatches, empty batches."""


class InvalidIdentifierError(ArgumentError):
    """A table or column name failed identifier validation."""


class SerializationError(RowkitError):
    """A Record could not be decoded from JSON."""


class TransactionStateError(RowkitError):
    """Commit, rollback, or an operation on a transaction that already finished."""


class QueryError(RowkitError):
    """
    A statement failed inside the driver.

    The driver exception is chained as ``__cause__``; its message is kept
    verbatim in ``str(error)``.
    """

    def __init__(self, message: str, sql: Optional[str] = None) -> None:
        super().__init__(message)
        self.sql = sql


class ConstraintViolationError(QueryError):
    """The backend rejected a write because of an integrity constraint."""


class PartialBatchError(RowkitError):
    """
    A batch write failed part way through.

    Attributes
    ----------
    rows_affected : int
        Rows written by the batches that committed before the failure.
    batch_index : int
        Zero-based index of the batch that failed.
    """

    def __init__(self, rows_affected: int, batch_index: int, error: BaseException) -> None:
        super().__init__(
            f"batch {batch_index} failed after {rows_affected} rows were written: {error}"
        )
        self.rows_affected = rows_affected
        self.batch_index = batch_index
        self.error = error


__all__ = [
    "RowkitError",
    "DatabaseConnectionError",
    "PoolTimeoutError",
    "PoolClosedError",
    "DuplicateNameError",
    "NotFoundError",
    "ArgumentError",
    "InvalidIdentifierError",
    "SerializationError",
    "TransactionStateError",
    "QueryError",
    "ConstraintViolationError",
    "PartialBatchError",
]
