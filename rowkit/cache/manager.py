"""
Cache regions, TTL resolution, and the process-wide cache manager.

A region is a named slice of the cache with its own default TTL and store
(local or remote). Effective TTL is, in order: the TTL passed to the call, the
region's TTL, the manager's default. A non-positive TTL means no expiry.

Usage:
    from rowkit.cache import cache_get, cache_set, create_cache

    create_cache("users", ttl=300)
    cache_set("users", "42", {"name": "ada"})
    value, found = cache_get("users", "42")
"""

from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional, Sequence, Tuple

from rowkit.cache.local import LocalCache
from rowkit.cache.redis_store import RedisCache
from rowkit.cache.store import TTL, CacheStore, ttl_seconds
from rowkit.config import DEFAULT_CACHE_TTL_SECONDS, get_settings
from rowkit.domain.record import json_default
from rowkit.errors import ArgumentError
from rowkit.utils.logging import clean_sql, get_logger

log = get_logger(__name__)

LOCAL = "local"
REMOTE = "remote"
NO_EXPIRY = 0.0


@dataclass(frozen=True)
class RegionConfig:
    """
    Per-region settings.

    `ttl` is None when the region has no TTL of its own (the manager default
    applies) and ``NO_EXPIRY`` when its entries never expire.
    """

    ttl: Optional[float] = None
    store: str = LOCAL


def fingerprint(db_name: str, sql: str, args: Sequence[Any] = ()) -> str:
    """
    Stable cache key for a statement.

    Derived from the database name, the whitespace-normalized SQL text, and the
    JSON-encoded arguments, so the same query against two databases never
    shares an entry. Each argument is tagged with its type name, which keeps
    ``b"abc"`` apart from its base64 text and ``Decimal("1")`` apart from ``"1"``.
    """
    typed_args = [[type(arg).__name__, arg] for arg in args]
    encoded_args = json.dumps(typed_args, default=json_default, sort_keys=True)
    digest = hashlib.sha256()
    for part in (db_name, clean_sql(sql), encoded_args):
        digest.update(part.encode("utf-8"))
        digest.update(b"\x1f")
    return digest.hexdigest()


class CacheManager:
    """
    Routes cache calls to the store configured for each region.

    Parameters
    ----------
    local : LocalCache, optional
        The in-process store. A fresh one is created when omitted.
    remote : CacheStore, optional
        The remote store, usually a RedisCache.
    default_ttl : float
        TTL in seconds for regions without their own.
    """

    def __init__(
        self,
        local: Optional[LocalCache] = None,
        remote: Optional[CacheStore] = None,
        default_ttl: TTL = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        self._lock = threading.Lock()
        self.local = local or LocalCache()
        self._remote = remote
        self.default_ttl = ttl_seconds(default_ttl)
        self._regions: Dict[str, RegionConfig] = {}

    @property
    def remote(self) -> Optional[CacheStore]:
        return self._remote

    def set_remote(self, store: Optional[CacheStore]) -> None:
        with self._lock:
            self._remote = store

    def create_region(self, name: str, ttl: TTL = None, store: str = LOCAL) -> RegionConfig:
        """Register or replace a region's TTL and store kind."""
        if not name:
            raise ArgumentError("cache region name must not be empty")
        if store not in (LOCAL, REMOTE):
            raise ArgumentError(f"cache store must be {LOCAL!r} or {REMOTE!r}, got {store!r}")
        if ttl is None:
            region_ttl = None
        else:
            seconds = ttl_seconds(ttl)
            region_ttl = NO_EXPIRY if seconds is None else seconds
        config = RegionConfig(ttl=region_ttl, store=store)
        with self._lock:
            self._regions[name] = config
        return config

    def region(self, name: str) -> RegionConfig:
        with self._lock:
            return self._regions.get(name, RegionConfig())

    def resolve_ttl(self, region: str, ttl: TTL = None) -> Optional[float]:
        if ttl is not None:
            return ttl_seconds(ttl)
        configured = self.region(region).ttl
        if configured is None:
            return self.default_ttl
        return ttl_seconds(configured)

    def store_for(self, region: str, prefer: Optional[str] = None) -> Optional[CacheStore]:
        """The store serving `region`, or None when a remote store is wanted but not configured."""
        kind = prefer or self.region(region).store
        if kind == LOCAL:
            return self.local
        if kind != REMOTE:
            raise ArgumentError(f"unknown cache store {kind!r}")
        if self._remote is None:
            log.warning("remote cache requested but not configured", extra={"region": region})
        return self._remote

    def get(self, region: str, key: str) -> Tuple[Any, bool]:
        store = self.store_for(region)
        if store is None:
            return None, False
        return store.get(region, key)

    def set(self, region: str, key: str, value: Any, ttl: TTL = None) -> None:
        store = self.store_for(region)
        if store is not None:
            store.set(region, key, value, self.resolve_ttl(region, ttl))

    def delete(self, region: str, key: str) -> None:
        store = self.store_for(region)
        if store is not None:
            store.delete(region, key)

    def clear(self, region: str) -> None:
        store = self.store_for(region)
        if store is not None:
            store.clear(region)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            regions = {
                name: {"ttl": config.ttl, "store": config.store}
                for name, config in self._regions.items()
            }
        return {
            "default_ttl": self.default_ttl,
            "regions": regions,
            "local": self.local.status(),
            "remote": self._remote.status() if self._remote is not None else None,
        }

    def close(self) -> None:
        self.local.close()


@lru_cache(maxsize=1)
def get_cache_manager() -> CacheManager:
    """
    Process-wide cache manager built from settings.

    A remote store is attached when ``ROWKIT_REDIS_URL`` is set.
    """
    settings = get_settings()
    remote = RedisCache(url=settings.redis_url) if settings.redis_url else None
    return CacheManager(
        local=LocalCache(sweep_interval=settings.cache_sweep_seconds),
        remote=remote,
        default_ttl=settings.cache_ttl_seconds,
    )


def create_cache(region: str, ttl: TTL = None, store: str = LOCAL) -> RegionConfig:
    return get_cache_manager().create_region(region, ttl=ttl, store=store)


def set_remote_cache(store: Optional[CacheStore]) -> None:
    get_cache_manager().set_remote(store)


def cache_set(region: str, key: str, value: Any, ttl: TTL = None) -> None:
    get_cache_manager().set(region, key, value, ttl)


def cache_get(region: str, key: str) -> Tuple[Any, bool]:
    return get_cache_manager().get(region, key)


def cache_delete(region: str, key: str) -> None:
    get_cache_manager().delete(region, key)


def cache_clear(region: str) -> None:
    get_cache_manager().clear(region)


def cache_status() -> Dict[str, Any]:
    return get_cache_manager().status()


__all__ = [
    "CacheManager",
    "LOCAL",
    "NO_EXPIRY",
    "REMOTE",
    "RegionConfig",
    "cache_clear",
    "cache_delete",
    "cache_get",
    "cache_set",
    "cache_status",
    "create_cache",
    "fingerprint",
    "get_cache_manager",
    "set_remote_cache",
]
