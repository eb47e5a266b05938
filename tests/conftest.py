"""
Pytest configuration for rowkit.

Provides fixtures for:
- Isolated registries over throwaway SQLite files
- A seeded ``users`` table
- A private cache manager so tests never share cache state
- Settings cache reset between tests
"""

from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest

from rowkit.cache.local import LocalCache
from rowkit.cache.manager import CacheManager
from rowkit.config import get_settings
from rowkit.database import Database
from rowkit.registry import Registry

USERS_DDL = """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT UNIQUE,
        age INTEGER,
        avatar BLOB
    )
"""


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> Generator[None, None, None]:
    """
    Environment overrides made with monkeypatch must not leak via lru_cache.
    """
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "rowkit.db")


@pytest.fixture
def registry() -> Generator[Registry, None, None]:
    """
    A private registry, closed after the test.
    """
    reg = Registry()
    try:
        yield reg
    finally:
        reg.close()


@pytest.fixture
def db(registry: Registry, db_path: str) -> Database:
    """
    Default handle over a fresh SQLite file with an empty ``users`` table.
    """
    database = registry.open("sqlite3", db_path, max_open=4)
    database.exec(USERS_DDL)
    return database


@pytest.fixture
def observer(registry: Registry, db: Database, db_path: str) -> Database:
    """
    A second handle on the same file, used to check what other connections see.
    """
    return registry.open_named("observer", "sqlite3", db_path, max_open=2)


@pytest.fixture
def cache_manager() -> Generator[CacheManager, None, None]:
    manager = CacheManager(local=LocalCache(), default_ttl=60)
    try:
        yield manager
    finally:
        manager.close()
