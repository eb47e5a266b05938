"""
Cache package for rowkit.

Two interchangeable stores (in-process and Redis), region configuration, the
process-wide manager with its module-level helpers, and the read-through
`CachedQuery` facade returned by ``handle.cache(region)``.
"""

from rowkit.cache.local import LocalCache
from rowkit.cache.manager import (
    LOCAL,
    REMOTE,
    CacheManager,
    RegionConfig,
    cache_clear,
    cache_delete,
    cache_get,
    cache_set,
    cache_status,
    create_cache,
    fingerprint,
    get_cache_manager,
    set_remote_cache,
)
from rowkit.cache.query import CachedQuery
from rowkit.cache.redis_store import RedisCache
from rowkit.cache.store import CacheEntry, CacheStore

__all__ = [
    "CacheEntry",
    "CacheManager",
    "CacheStore",
    "CachedQuery",
    "LOCAL",
    "LocalCache",
    "REMOTE",
    "RedisCache",
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
