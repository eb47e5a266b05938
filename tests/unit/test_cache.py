from __future__ import annotations

import fnmatch
import json
import time
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import redis

from rowkit.cache.local import LocalCache
from rowkit.cache.manager import LOCAL, REMOTE, CacheManager, fingerprint
from rowkit.cache.query import CachedQuery
from rowkit.cache.redis_store import RedisCache
from rowkit.cache.store import CacheStore, ttl_seconds
from rowkit.database import Database
from rowkit.domain.record import Record
from rowkit.errors import ArgumentError, NotFoundError

SHORT_TTL_SECONDS = 0.01
PAST_SHORT_TTL_SECONDS = 0.02


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """In-memory stand-in for the subset of redis-py the store uses."""

    def __init__(self) -> None:
        self.data = {}
        self.expiry_ms = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, px=None):
        self.data[key] = value
        self.expiry_ms[key] = px
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.data.pop(key, None) is not None
        return removed

    def scan_iter(self, match=None):
        return [key for key in list(self.data) if match is None or fnmatch.fnmatch(key, match)]

    def info(self, section=None):
        return {"used_memory_human": "1K"}

    def dbsize(self):
        return len(self.data)


class BrokenRedis(FakeRedis):
    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def set(self, key, value, px=None):
        raise redis.ConnectionError("connection refused")


class TestLocalCache:
    def test_short_ttl_expires(self) -> None:
        cache = LocalCache()
        cache.set("r", "k", "v", ttl=SHORT_TTL_SECONDS)

        assert cache.get("r", "k") == ("v", True)
        time.sleep(PAST_SHORT_TTL_SECONDS)
        assert cache.get("r", "k") == (None, False)

    def test_no_ttl_never_expires(self) -> None:
        clock = FakeClock()
        cache = LocalCache(clock=clock)
        cache.set("r", "k", 1)
        clock.now += 10**9
        assert cache.get("r", "k") == (1, True)

    def test_regions_are_isolated(self) -> None:
        cache = LocalCache()
        cache.set("a", "k", 1)
        cache.set("b", "k", 2)

        cache.clear("a")

        assert cache.get("a", "k") == (None, False)
        assert cache.get("b", "k") == (2, True)

    def test_delete_and_cached_none(self) -> None:
        cache = LocalCache()
        cache.set("r", "none", None)
        assert cache.get("r", "none") == (None, True)

        cache.delete("r", "none")
        assert cache.get("r", "none") == (None, False)

    def test_sweep_drops_only_expired_entries(self) -> None:
        clock = FakeClock()
        cache = LocalCache(clock=clock)
        cache.set("r", "old", 1, ttl=1)
        cache.set("r", "new", 2, ttl=100)
        cache.set("s", "old", 3, ttl=1)
        clock.now += 5

        assert cache.sweep() == 2
        status = cache.status()
        assert status["regions"] == {"r": 1}
        assert status["total_items"] == 1
        assert status["type"] == "local"

    def test_background_sweeper_starts_and_stops(self) -> None:
        cache = LocalCache(sweep_interval=0.01)
        cache.set("r", "k", 1, ttl=SHORT_TTL_SECONDS)
        assert cache.status()["sweeper_running"]

        deadline = time.monotonic() + 2
        while cache.status()["total_items"] and time.monotonic() < deadline:
            time.sleep(0.01)
        assert cache.status()["total_items"] == 0

        cache.close()
        assert not cache.status()["sweeper_running"]


class TestRedisCache:
    def test_values_round_trip_as_json_with_ms_expiry(self) -> None:
        client = FakeRedis()
        store = RedisCache(client=client, prefix="app")

        store.set("users", "k", [{"id": 1}], ttl=1.5)

        assert client.expiry_ms["app:users:k"] == 1500
        assert json.loads(client.data["app:users:k"]) == [{"id": 1}]
        assert store.get("users", "k") == ([{"id": 1}], True)
        assert store.get("users", "missing") == (None, False)

    def test_clear_only_touches_one_region(self) -> None:
        client = FakeRedis()
        store = RedisCache(client=client)
        store.set("a", "1", 1)
        store.set("a", "2", 2)
        store.set("b", "1", 3)

        store.clear("a")

        assert list(client.data) == ["rowkit:b:1"]
        assert client.expiry_ms["rowkit:b:1"] is None

    def test_redis_failures_are_misses(self) -> None:
        store = RedisCache(client=BrokenRedis())
        store.set("a", "k", 1)
        assert store.get("a", "k") == (None, False)

    def test_status(self) -> None:
        store = RedisCache(client=FakeRedis())
        store.set("a", "k", 1)
        assert store.status()["total_items"] == 1
        assert isinstance(store, CacheStore)


class TestCacheManager:
    def test_ttl_resolution_order(self, cache_manager: CacheManager) -> None:
        cache_manager.create_region("users", ttl=timedelta(minutes=5))

        assert cache_manager.resolve_ttl("users") == 300
        assert cache_manager.resolve_ttl("users", ttl=2) == 2
        assert cache_manager.resolve_ttl("other") == 60
        assert ttl_seconds(0) is None
        assert ttl_seconds(-1) is None

    def test_non_positive_region_ttl_means_no_expiry(self, cache_manager: CacheManager) -> None:
        cache_manager.create_region("forever", ttl=0)
        cache_manager.create_region("also-forever", ttl=timedelta(seconds=-5))

        assert cache_manager.resolve_ttl("forever") is None
        assert cache_manager.resolve_ttl("also-forever") is None
        assert cache_manager.resolve_ttl("forever", ttl=3) == 3

    def test_no_expiry_region_entries_survive_the_default_ttl(self) -> None:
        clock = FakeClock()
        manager = CacheManager(local=LocalCache(clock=clock), default_ttl=60)
        manager.create_region("forever", ttl=0)

        manager.set("forever", "k", 1)
        manager.set("other", "k", 2)
        clock.now += 3600

        assert manager.get("forever", "k") == (1, True)
        assert manager.get("other", "k") == (None, False)

    def test_region_validation(self, cache_manager: CacheManager) -> None:
        with pytest.raises(ArgumentError):
            cache_manager.create_region("", ttl=1)
        with pytest.raises(ArgumentError):
            cache_manager.create_region("users", store="disk")

    def test_remote_region_without_remote_store_is_bypassed(self, cache_manager: CacheManager) -> None:
        cache_manager.create_region("shared", store=REMOTE)

        cache_manager.set("shared", "k", 1)

        assert cache_manager.get("shared", "k") == (None, False)

    def test_remote_region_uses_remote_store(self, cache_manager: CacheManager) -> None:
        client = FakeRedis()
        cache_manager.set_remote(RedisCache(client=client))
        cache_manager.create_region("shared", ttl=30, store=REMOTE)

        cache_manager.set("shared", "k", {"a": 1})

        assert cache_manager.get("shared", "k") == ({"a": 1}, True)
        assert client.expiry_ms["rowkit:shared:k"] == 30000
        assert cache_manager.local.get("shared", "k") == (None, False)

    def test_status_lists_regions_and_stores(self, cache_manager: CacheManager) -> None:
        cache_manager.create_region("users", ttl=5)
        status = cache_manager.status()
        assert status["regions"] == {"users": {"ttl": 5.0, "store": LOCAL}}
        assert status["remote"] is None
        assert status["local"]["type"] == "local"


def test_fingerprint_depends_on_database_sql_and_args() -> None:
    base = fingerprint("default", "SELECT * FROM users WHERE id = ?", [1])

    assert base == fingerprint("default", "SELECT *\n  FROM users WHERE id = ?", [1])
    assert base != fingerprint("reports", "SELECT * FROM users WHERE id = ?", [1])
    assert base != fingerprint("default", "SELECT * FROM users WHERE id = ?", [2])


@pytest.mark.parametrize(
    ("left", "right"),
    [
        (b"abc", "YWJj"),
        (Decimal("1.5"), "1.5"),
        (datetime(2024, 1, 2, 3, 4, 5), "2024-01-02T03:04:05"),
        (1, True),
        (1, 1.0),
    ],
)
def test_fingerprint_keeps_argument_types_apart(left, right) -> None:
    sql = "SELECT * FROM users WHERE token = ?"
    assert fingerprint("default", sql, [left]) != fingerprint("default", sql, [right])


def test_cached_query_does_not_mix_bytes_and_text_arguments(
    db: Database, cache_manager: CacheManager
) -> None:
    db.insert("users", Record({"name": "YWJj", "avatar": b"abc"}))
    cached = CachedQuery(db, "users", manager=cache_manager)

    by_blob = cached.query("SELECT name FROM users WHERE avatar = ?", b"abc")
    by_text = cached.query("SELECT name FROM users WHERE avatar = ?", "YWJj")

    assert [r.get("name") for r in by_blob] == ["YWJj"]
    assert by_text == []


class TestCachedQuery:
    @pytest.fixture
    def cached(self, db: Database, cache_manager: CacheManager) -> CachedQuery:
        db.insert("users", Record({"name": "ada", "email": "ada@example.com"}))
        return CachedQuery(db, "users", manager=cache_manager)

    def test_hit_skips_the_database_until_cleared(self, db: Database, cached: CachedQuery) -> None:
        assert len(cached.query("SELECT * FROM users")) == 1
        db.insert("users", Record({"name": "bob"}))

        assert len(cached.query("SELECT * FROM users")) == 1
        assert cached.count("users") == 2
        assert cached.count("users") == 2

        cached.clear()
        assert len(cached.query("SELECT * FROM users")) == 2

    def test_hits_return_fresh_records(self, cached: CachedQuery) -> None:
        first = cached.query_first("SELECT name FROM users")
        first.set("name", "mutated")

        assert cached.query_first("SELECT name FROM users").get("name") == "ada"

    def test_empty_first_result_is_not_cached(self, db: Database, cached: CachedQuery) -> None:
        with pytest.raises(NotFoundError):
            cached.query_first("SELECT * FROM users WHERE name = ?", "bob")

        db.insert("users", Record({"name": "bob"}))
        assert cached.query_first("SELECT * FROM users WHERE name = ?", "bob").get("name") == "bob"

    def test_pages_are_cached(self, db: Database, cached: CachedQuery) -> None:
        page = cached.paginate(1, 10, "name", "users", "", "id")
        db.insert("users", Record({"name": "bob"}))

        again = cached.paginate(1, 10, "name", "users", "", "id")
        assert again.total_row == page.total_row == 1
        assert again.records == page.records

    def test_short_ttl_entries_expire(self, db: Database, cache_manager: CacheManager) -> None:
        cached = CachedQuery(db, "users", ttl=SHORT_TTL_SECONDS, manager=cache_manager)
        assert cached.count("users") == 0
        db.insert("users", Record({"name": "ada"}))

        assert cached.count("users") == 0
        time.sleep(PAST_SHORT_TTL_SECONDS)
        assert cached.count("users") == 1

    def test_separate_databases_do_not_share_entries(
        self, db: Database, observer: Database, cache_manager: CacheManager
    ) -> None:
        db.insert("users", Record({"name": "ada"}))
        assert CachedQuery(db, "users", manager=cache_manager).count("users") == 1
        observer.exec("DELETE FROM users")
        assert CachedQuery(observer, "users", manager=cache_manager).count("users") == 0
