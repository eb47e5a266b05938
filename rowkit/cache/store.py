"""
Cache store capability shared by the local and Redis stores.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional, Protocol, Tuple, Union, runtime_checkable

TTL = Union[float, int, timedelta, None]


def ttl_seconds(ttl: TTL) -> Optional[float]:
    """Normalize a TTL to seconds; None or a non-positive value means no expiry."""
    if ttl is None:
        return None
    seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
    return seconds if seconds > 0 else None


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: Optional[float] = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@runtime_checkable
class CacheStore(Protocol):
    """
    Region-scoped key/value store with per-entry expiry.

    Implementations must never raise from `get`; a failed lookup is a miss.
    """

    name: str

    def get(self, region: str, key: str) -> Tuple[Any, bool]:
        """Return ``(value, found)``; expired entries are reported as not found."""
        ...

    def set(self, region: str, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ...

    def delete(self, region: str, key: str) -> None:
        ...

    def clear(self, region: str) -> None:
        ...

    def status(self) -> Dict[str, Any]:
        ...


__all__ = ["CacheEntry", "CacheStore", "TTL", "ttl_seconds"]
