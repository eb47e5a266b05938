"""
Read-through caching for query operations.

`CachedQuery` wraps a database or transaction handle: each call first looks
up a fingerprint of the statement in the region's store and only reaches the
database on a miss. Results are cached as plain snapshots and rebuilt into
fresh Records on every hit, so callers can mutate what they get back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from rowkit.cache.manager import CacheManager, fingerprint, get_cache_manager
from rowkit.cache.store import TTL, CacheStore
from rowkit.domain.page import Page
from rowkit.domain.record import Record
from rowkit.errors import NotFoundError

if TYPE_CHECKING:
    from rowkit.operations import Operations


class CachedQuery:
    """
    Cache-first facade over a handle's read operations.

    Parameters
    ----------
    source : Operations
        The database or transaction handle that runs statements on a miss.
    region : str
        Cache region; selects the store and default TTL.
    ttl : float or timedelta, optional
        Overrides the region TTL for entries written through this facade.
    store : str, optional
        Force ``"local"`` or ``"remote"`` instead of the region's store.
    manager : CacheManager, optional
        Defaults to the process-wide manager.
    """

    def __init__(
        self,
        source: "Operations",
        region: str,
        ttl: TTL = None,
        store: Optional[str] = None,
        manager: Optional[CacheManager] = None,
    ) -> None:
        self._source = source
        self.region = region
        self._manager = manager or get_cache_manager()
        self._store: Optional[CacheStore] = self._manager.store_for(region, prefer=store)
        self._ttl = self._manager.resolve_ttl(region, ttl)

    def _key(self, kind: str, sql: str, args: Sequence[Any]) -> str:
        return fingerprint(self._source.name, f"{kind}:{sql}", args)

    def _lookup(self, key: str) -> Tuple[Any, bool]:
        if self._store is None:
            return None, False
        return self._store.get(self.region, key)

    def _remember(self, key: str, value: Any) -> None:
        if self._store is not None:
            self._store.set(self.region, key, value, self._ttl)

    def query(self, sql: str, *args: Any) -> List[Record]:
        key = self._key("query", sql, args)
        cached, found = self._lookup(key)
        if found:
            return [Record(row) for row in cached]
        records = self._source.query(sql, *args)
        self._remember(key, [record.to_dict() for record in records])
        return records

    def query_first(self, sql: str, *args: Any) -> Record:
        """Like `Operations.query_first`; empty results are not cached."""
        key = self._key("first", sql, args)
        cached, found = self._lookup(key)
        if found:
            return Record(cached)
        record = self._source.query_first_or_none(sql, *args)
        if record is None:
            raise NotFoundError("query returned no rows")
        self._remember(key, record.to_dict())
        return record

    def count(self, table: str, where: str = "", *args: Any) -> int:
        key = self._key("count", f"{table} WHERE {where}", args)
        cached, found = self._lookup(key)
        if found:
            return int(cached)
        total = self._source.count(table, where, *args)
        self._remember(key, total)
        return total

    def paginate(
        self,
        page: int,
        page_size: int,
        select: str,
        table: str,
        where: str = "",
        order_by: str = "",
        args: Sequence[Any] = (),
    ) -> Page:
        statement = f"{page}:{page_size}:SELECT {select} FROM {table} WHERE {where} ORDER BY {order_by}"
        key = self._key("page", statement, args)
        cached, found = self._lookup(key)
        if found:
            return _page_from_snapshot(cached)
        result = self._source.paginate(page, page_size, select, table, where, order_by, args)
        self._remember(key, result.to_dict())
        return result

    def clear(self) -> None:
        """Drop every entry in this facade's region."""
        if self._store is not None:
            self._store.clear(self.region)


def _page_from_snapshot(snapshot: Dict[str, Any]) -> Page:
    return Page(
        records=[Record(row) for row in snapshot["records"]],
        page=snapshot["page"],
        page_size=snapshot["page_size"],
        total_row=snapshot["total_row"],
    )


__all__ = ["CachedQuery"]
