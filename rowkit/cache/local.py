"""
In-process cache store.

Entries live in a dict of regions guarded by one lock. Expiry is checked on
read, and expired entries are dropped when touched. An optional daemon thread
sweeps every region periodically so entries that are never read again do not
pile up.
"""

from __future__ import annotations

import sys
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from rowkit.cache.store import CacheEntry
from rowkit.utils.logging import get_logger

log = get_logger(__name__)


class LocalCache:
    """
    Thread-safe in-memory store.

    Parameters
    ----------
    sweep_interval : float
        Seconds between background sweeps. 0 disables the sweeper thread.
    clock : Callable[[], float]
        Monotonic time source, injectable for tests.
    """

    name = "local"

    def __init__(
        self,
        sweep_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._regions: Dict[str, Dict[str, CacheEntry]] = {}
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def get(self, region: str, key: str) -> Tuple[Any, bool]:
        with self._lock:
            entries = self._regions.get(region)
            if not entries or key not in entries:
                return None, False
            entry = entries[key]
            if entry.expired(self._clock()):
                del entries[key]
                return None, False
            return entry.value, True

    def set(self, region: str, key: str, value: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        entry = CacheEntry(value=value, created_at=now, expires_at=now + ttl if ttl else None)
        with self._lock:
            self._regions.setdefault(region, {})[key] = entry
        self._ensure_sweeper()

    def delete(self, region: str, key: str) -> None:
        with self._lock:
            entries = self._regions.get(region)
            if entries is not None:
                entries.pop(key, None)

    def clear(self, region: str) -> None:
        with self._lock:
            self._regions.pop(region, None)

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for region in list(self._regions):
                entries = self._regions[region]
                for key in [k for k, entry in entries.items() if entry.expired(now)]:
                    del entries[key]
                    removed += 1
                if not entries:
                    del self._regions[region]
        if removed:
            log.debug("cache sweep", extra={"removed": removed})
        return removed

    def status(self) -> Dict[str, Any]:
        with self._lock:
            regions = {region: len(entries) for region, entries in self._regions.items()}
            estimated = sum(
                sys.getsizeof(key) + sys.getsizeof(entry.value)
                for entries in self._regions.values()
                for key, entry in entries.items()
            )
        return {
            "type": self.name,
            "regions": regions,
            "total_items": sum(regions.values()),
            "estimated_bytes": estimated,
            "sweeper_running": self._sweeper is not None and self._sweeper.is_alive(),
        }

    def _ensure_sweeper(self) -> None:
        if self._sweep_interval <= 0 or self._sweeper is not None:
            return
        with self._lock:
            if self._sweeper is not None:
                return
            self._sweeper = threading.Thread(
                target=self._run_sweeper, name="rowkit-cache-sweeper", daemon=True
            )
            self._sweeper.start()

    def _run_sweeper(self) -> None:
        while not self._stop.wait(self._sweep_interval):
            self.sweep()

    def close(self) -> None:
        """Stop the sweeper thread, if running."""
        self._stop.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=1.0)


__all__ = ["LocalCache"]
