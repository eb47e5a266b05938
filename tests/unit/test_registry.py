from __future__ import annotations

from pathlib import Path

import pytest

from rowkit.database import MissingDatabase
from rowkit.errors import (
    ArgumentError,
    DatabaseConnectionError,
    DuplicateNameError,
    NotFoundError,
)
from rowkit.registry import DEFAULT_NAME, Registry


@pytest.fixture
def two_databases(registry: Registry, tmp_path: Path) -> Registry:
    registry.open("sqlite3", str(tmp_path / "main.db"))
    registry.open_named("reports", "sqlite", str(tmp_path / "reports.db"))
    return registry


def test_first_open_becomes_current(two_databases: Registry) -> None:
    assert two_databases.current().name == DEFAULT_NAME
    assert two_databases.names() == [DEFAULT_NAME, "reports"]
    assert "reports" in two_databases
    assert len(two_databases) == 2


def test_duplicate_names_are_rejected(two_databases: Registry, tmp_path: Path) -> None:
    with pytest.raises(DuplicateNameError):
        two_databases.open("sqlite3", str(tmp_path / "other.db"))
    with pytest.raises(DuplicateNameError):
        two_databases.open_named("reports", "sqlite3", str(tmp_path / "other.db"))


@pytest.mark.parametrize("name", ["", DEFAULT_NAME])
def test_open_named_rejects_reserved_names(registry: Registry, tmp_path: Path, name: str) -> None:
    with pytest.raises(ArgumentError):
        registry.open_named(name, "sqlite3", str(tmp_path / "x.db"))


def test_invalid_configuration_is_an_argument_error(registry: Registry, tmp_path: Path) -> None:
    with pytest.raises(ArgumentError):
        registry.open("db2", str(tmp_path / "x.db"))
    with pytest.raises(ArgumentError):
        registry.open("sqlite3", str(tmp_path / "x.db"), max_open=0)
    assert len(registry) == 0


def test_unreachable_database_leaves_registry_unchanged(registry: Registry, tmp_path: Path) -> None:
    with pytest.raises(DatabaseConnectionError):
        registry.open("sqlite3", str(tmp_path / "missing" / "dir" / "x.db"))

    assert len(registry) == 0
    with pytest.raises(NotFoundError):
        registry.current()


def test_use_returns_marker_for_unknown_names(two_databases: Registry) -> None:
    assert two_databases.use("reports").name == "reports"

    missing = two_databases.use("nope")
    assert isinstance(missing, MissingDatabase)
    assert not missing
    with pytest.raises(NotFoundError):
        missing.query("SELECT 1")


def test_select_moves_process_wide_pointer(two_databases: Registry) -> None:
    two_databases.select("reports")
    assert two_databases.current().name == "reports"

    with pytest.raises(NotFoundError):
        two_databases.select("nope")
    assert two_databases.current_name() == "reports"


def test_using_overrides_only_inside_the_block(two_databases: Registry) -> None:
    with two_databases.using("reports") as database:
        assert database.name == "reports"
        assert two_databases.current().name == "reports"
        with two_databases.using(DEFAULT_NAME):
            assert two_databases.current().name == DEFAULT_NAME
        assert two_databases.current().name == "reports"

    assert two_databases.current().name == DEFAULT_NAME


def test_close_database_promotes_next_handle(two_databases: Registry) -> None:
    default = two_databases.get(DEFAULT_NAME)
    two_databases.close_database(DEFAULT_NAME)

    assert default.closed
    assert two_databases.current().name == "reports"
    with pytest.raises(NotFoundError):
        two_databases.close_database(DEFAULT_NAME)


def test_close_is_idempotent_and_closes_every_handle(two_databases: Registry) -> None:
    handles = [two_databases.get(name) for name in two_databases.names()]

    two_databases.close()
    two_databases.close()

    assert all(handle.closed for handle in handles)
    assert len(two_databases) == 0
    with pytest.raises(NotFoundError):
        two_databases.current()


def test_ping_resolves_current_or_named(two_databases: Registry) -> None:
    two_databases.ping()
    two_databases.ping("reports")
    with pytest.raises(NotFoundError):
        two_databases.ping("nope")
