"""
Redis-backed cache store.

Keys are namespaced as ``<prefix>:<region>:<key>`` and values are stored as
JSON with a millisecond expiry. Redis failures are logged and reported as
misses so an unavailable cache never breaks a query.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import redis

from rowkit.domain.record import json_default
from rowkit.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_PREFIX = "rowkit"
_DELETE_CHUNK = 500


class RedisCache:
    """
    Cache store over a redis-py client.

    Parameters
    ----------
    client : redis.Redis, optional
        An existing client. Built from `url` when omitted.
    url : str, optional
        Redis URL such as ``redis://localhost:6379/0``.
    prefix : str
        Namespace prepended to every key.
    """

    name = "redis"

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        url: Optional[str] = None,
        prefix: str = DEFAULT_PREFIX,
    ) -> None:
        if client is None:
            client = redis.Redis.from_url(url or "redis://localhost:6379/0", decode_responses=True)
        self._client = client
        self.prefix = prefix

    def _key(self, region: str, key: str) -> str:
        return f"{self.prefix}:{region}:{key}"

    def get(self, region: str, key: str) -> Tuple[Any, bool]:
        try:
            raw = self._client.get(self._key(region, key))
        except redis.RedisError as exc:
            log.warning("redis get failed", extra={"region": region, "error": str(exc)})
            return None, False
        if raw is None:
            return None, False
        try:
            return json.loads(raw), True
        except ValueError as exc:
            log.warning("redis value is not JSON", extra={"region": region, "error": str(exc)})
            return None, False

    def set(self, region: str, key: str, value: Any, ttl: Optional[float] = None) -> None:
        try:
            payload = json.dumps(value, default=json_default)
        except (TypeError, ValueError) as exc:
            log.warning("cache value is not JSON serializable", extra={"error": str(exc)})
            return
        px = max(1, int(ttl * 1000)) if ttl else None
        try:
            self._client.set(self._key(region, key), payload, px=px)
        except redis.RedisError as exc:
            log.warning("redis set failed", extra={"region": region, "error": str(exc)})

    def delete(self, region: str, key: str) -> None:
        try:
            self._client.delete(self._key(region, key))
        except redis.RedisError as exc:
            log.warning("redis delete failed", extra={"region": region, "error": str(exc)})

    def clear(self, region: str) -> None:
        pattern = f"{self.prefix}:{region}:*"
        try:
            batch: List[Any] = []
            for key in self._client.scan_iter(match=pattern):
                batch.append(key)
                if len(batch) >= _DELETE_CHUNK:
                    self._client.delete(*batch)
                    batch = []
            if batch:
                self._client.delete(*batch)
        except redis.RedisError as exc:
            log.warning("redis clear failed", extra={"region": region, "error": str(exc)})

    def status(self) -> Dict[str, Any]:
        try:
            info = self._client.info("memory")
            return {
                "type": self.name,
                "prefix": self.prefix,
                "total_items": self._client.dbsize(),
                "used_memory": info.get("used_memory_human"),
            }
        except redis.RedisError as exc:
            return {"type": self.name, "prefix": self.prefix, "error": str(exc)}


__all__ = ["RedisCache"]
