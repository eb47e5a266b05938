"""
The dynamic row container.

A `Record` is an insertion-ordered mapping from column name to a loosely-typed
value. Rows scanned from any backend become Records, and Records are what the
write operations accept, so callers never declare per-table models.

Typed getters coerce on a best-effort basis and fall back to the type's zero
value instead of raising.
"""

from __future__ import annotations

import base64
import json
import math
import uuid
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from rowkit.errors import SerializationError
from rowkit.utils.logging import get_logger

log = get_logger(__name__)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_TRUE_STRINGS = frozenset({"1", "t", "true", "y", "yes", "on"})
_TIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d")


def json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (bytes, bytearray, memoryview)):
        try:
            return bytes(value).decode("utf-8").strip()
        except UnicodeDecodeError:
            return None
    return None


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return int(value) if value.is_finite() else None
    text = _text(value)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return int(number) if math.isfinite(number) else None


class Record:
    """
    Insertion-ordered column/value container.

    Keys are unique and case-sensitive. Setting an existing key replaces its
    value without moving it. Records are not safe for concurrent mutation.

    Examples
    --------
    >>> user = Record().set("name", "ada").set("age", "36")
    >>> user.get_int("age")
    36
    >>> user.keys()
    ['name', 'age']
    """

    __slots__ = ("_columns",)

    def __init__(self, columns: Optional[Mapping[str, Any]] = None) -> None:
        self._columns: Dict[str, Any] = dict(columns) if columns else {}

    @classmethod
    def parse_json(cls, text: Union[str, bytes]) -> "Record":
        """Build a new Record from a JSON object."""
        record = cls()
        record.from_json(text)
        return record

    # Mutation ---------------------------------------------------------------

    def set(self, key: str, value: Any) -> "Record":
        """Assign `value` to `key` and return the Record for chaining."""
        self._columns[key] = value
        return self

    def remove(self, key: str) -> "Record":
        self._columns.pop(key, None)
        return self

    def clear(self) -> "Record":
        self._columns.clear()
        return self

    # Access -----------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self._columns.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._columns

    def keys(self) -> List[str]:
        """Column names in declaration order."""
        return list(self._columns)

    def to_dict(self) -> Dict[str, Any]:
        """A shallow copy of the columns as a plain dict."""
        return dict(self._columns)

    def get_string(self, key: str) -> str:
        value = self._columns.get(key)
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).decode("utf-8", errors="replace")
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        return str(value)

    def get_int(self, key: str) -> int:
        number = _to_int(self._columns.get(key))
        return number if number is not None else 0

    def get_int64(self, key: str) -> int:
        """Like `get_int`, but values outside the signed 64-bit range coerce to 0."""
        number = _to_int(self._columns.get(key))
        if number is None or not _INT64_MIN <= number <= _INT64_MAX:
            return 0
        return number

    def get_float(self, key: str) -> float:
        value = self._columns.get(key)
        if value is None:
            return 0.0
        if isinstance(value, (bool, int, float, Decimal)):
            try:
                return float(value)
            except (OverflowError, InvalidOperation):
                return 0.0
        text = _text(value)
        if text is None:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return 0.0

    def get_bool(self, key: str) -> bool:
        value = self._columns.get(key)
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float, Decimal)):
            return value != 0
        text = _text(value)
        return text is not None and text.lower() in _TRUE_STRINGS

    def get_time(self, key: str) -> Optional[datetime]:
        """The value as a datetime, parsing ISO-8601 and common SQL formats; None on failure."""
        value = self._columns.get(key)
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime.combine(value, time())
        text = _text(value)
        if not text:
            return None
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
        for fmt in _TIME_FORMATS:
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
        return None

    def get_bytes(self, key: str) -> bytes:
        value = self._columns.get(key)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode("utf-8")
        return b""

    # Serialization ----------------------------------------------------------

    def to_json(self) -> str:
        """
        Encode the columns as a flat JSON object.

        Never raises: a value that cannot be encoded yields ``"{}"``. Temporal
        values become ISO-8601 strings, Decimals strings, and bytes base64.
        """
        try:
            return json.dumps(self._columns, default=json_default, ensure_ascii=False)
        except (TypeError, ValueError, RecursionError) as exc:
            log.debug("record JSON encoding failed", extra={"error": str(exc)})
            return "{}"

    def from_json(self, text: Union[str, bytes]) -> "Record":
        """
        Replace the columns with those of a JSON object.

        Raises
        ------
        SerializationError
            If `text` is not valid JSON or not an object. The Record keeps its
            previous contents in that case.
        """
        try:
            decoded = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"invalid record JSON: {exc}") from exc
        if not isinstance(decoded, dict):
            raise SerializationError(
                f"record JSON must be an object, got {type(decoded).__name__}"
            )
        self._columns = decoded
        return self

    # Dunders ----------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._columns)

    def __contains__(self, key: object) -> bool:
        return key in self._columns

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self._columns == other._columns

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Record({self._columns!r})"


__all__ = ["Record", "json_default"]
