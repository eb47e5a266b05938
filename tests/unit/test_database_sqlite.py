"""
End-to-end CRUD and pagination tests against real SQLite files.
"""

from __future__ import annotations

import math

import pytest

from rowkit.database import Database
from rowkit.domain.record import Record
from rowkit.errors import (
    ArgumentError,
    ConstraintViolationError,
    InvalidIdentifierError,
    NotFoundError,
    PartialBatchError,
    QueryError,
)

SEEDED_USERS = 25
PAGE_SIZE = 10


def _user(index: int, **overrides) -> Record:
    record = Record({"name": f"user{index:02d}", "email": f"user{index}@example.com", "age": 20 + index})
    for key, value in overrides.items():
        record.set(key, value)
    return record


@pytest.fixture
def seeded(db: Database) -> Database:
    db.batch_insert("users", [_user(i) for i in range(SEEDED_USERS)])
    return db


class TestReads:
    def test_query_returns_records_with_column_names(self, seeded: Database) -> None:
        rows = seeded.query("SELECT id, name, age FROM users WHERE age >= ? ORDER BY id", 40)

        assert len(rows) == 5
        assert rows[0].keys() == ["id", "name", "age"]
        assert rows[0].get_string("name") == "user20"

    def test_query_first_and_missing_row(self, seeded: Database) -> None:
        first = seeded.query_first("SELECT * FROM users ORDER BY age DESC")
        assert first.get_int("age") == 20 + SEEDED_USERS - 1

        assert seeded.query_first_or_none("SELECT * FROM users WHERE id = ?", -1) is None
        with pytest.raises(NotFoundError):
            seeded.query_first("SELECT * FROM users WHERE id = ?", -1)

    def test_query_first_keeps_bound_limits(self, seeded: Database) -> None:
        first = seeded.query_first("SELECT name FROM users ORDER BY id LIMIT ?", 2)
        assert first.get("name") == "user00"

        second = seeded.query_first("SELECT name FROM users ORDER BY id LIMIT 1 OFFSET ?", 1)
        assert second.get("name") == "user01"

        nested = seeded.query_first(
            "SELECT name FROM (SELECT name, id FROM users ORDER BY id LIMIT ?) ORDER BY id DESC", 3
        )
        assert nested.get("name") == "user02"

    def test_query_map_returns_plain_dicts(self, seeded: Database) -> None:
        rows = seeded.query_map("SELECT name FROM users WHERE id = ?", 1)
        assert rows == [{"name": "user00"}]

    def test_find_all_count_and_exists(self, seeded: Database) -> None:
        assert len(seeded.find_all("users")) == SEEDED_USERS
        assert seeded.count("users") == SEEDED_USERS
        assert seeded.count("users", "WHERE age < ?", 25) == 5
        assert seeded.exists("users", "email = ?", "user3@example.com")
        assert not seeded.exists("users", "email = ?", "nobody@example.com")

    def test_exists_swallows_failures_but_strict_variant_raises(self, db: Database) -> None:
        assert db.exists("no_such_table", "id = ?", 1) is False
        with pytest.raises(QueryError):
            db.exists_strict("no_such_table", "id = ?", 1)

    def test_blob_columns_come_back_as_bytes(self, db: Database) -> None:
        db.insert("users", Record({"name": "pic", "avatar": b"\x89PNG"}))
        row = db.query_first("SELECT avatar FROM users WHERE name = ?", "pic")
        assert row.get("avatar") == b"\x89PNG"

    def test_placeholder_mismatch_is_an_argument_error(self, db: Database) -> None:
        with pytest.raises(ArgumentError):
            db.query("SELECT * FROM users WHERE id = ?")

    def test_table_names_are_validated(self, db: Database) -> None:
        with pytest.raises(InvalidIdentifierError):
            db.count("users; DROP TABLE users")
        with pytest.raises(InvalidIdentifierError):
            db.insert("users", Record({"name) VALUES ('x'); --": 1}))


class TestWrites:
    def test_insert_returns_generated_keys(self, db: Database) -> None:
        assert db.insert("users", _user(1)) == 1
        assert db.insert("users", _user(2)) == 2

    def test_insert_drops_empty_key_and_keeps_explicit_key(self, db: Database) -> None:
        assert db.insert("users", _user(1, id=None)) == 1
        assert db.insert("users", _user(2, id=50)) == 50
        assert db.count("users", "id = ?", 50) == 1

    def test_update_and_delete_report_affected_rows(self, seeded: Database) -> None:
        changed = seeded.update("users", Record({"age": 99}), "age < ?", 23)
        assert changed == 3
        assert seeded.count("users", "age = ?", 99) == 3

        assert seeded.delete("users", "age = ?", 99) == 3
        assert seeded.count("users") == SEEDED_USERS - 3

    def test_save_inserts_then_updates(self, db: Database) -> None:
        record = _user(1)
        new_id = db.save("users", record)
        assert new_id == 1

        record.set("id", new_id).set("age", 40)
        assert db.save("users", record) == 1
        assert db.query_first("SELECT age FROM users WHERE id = ?", new_id).get_int("age") == 40

    def test_save_matches_key_case_insensitively(self, db: Database) -> None:
        new_id = db.insert("users", _user(1))
        assert db.save("users", Record({"ID": new_id, "name": "renamed"})) == 1
        assert db.query_first("SELECT name FROM users WHERE id = ?", new_id).get("name") == "renamed"

    def test_save_with_only_the_key_changes_nothing(self, db: Database) -> None:
        new_id = db.insert("users", _user(1))
        assert db.save("users", Record({"id": new_id})) == 0

    def test_constraint_violation_keeps_backend_message(self, db: Database) -> None:
        db.insert("users", _user(1))
        with pytest.raises(ConstraintViolationError) as excinfo:
            db.insert("users", _user(2, email="user1@example.com"))
        assert "UNIQUE" in str(excinfo.value)
        assert excinfo.value.sql is not None

    def test_exec_reports_rows_affected(self, seeded: Database) -> None:
        result = seeded.exec("UPDATE users SET age = age + 1 WHERE id <= ?", 4)
        assert result.rows_affected == 4

    def test_insert_without_columns_is_rejected(self, db: Database) -> None:
        with pytest.raises(ArgumentError):
            db.insert("users", Record())


class TestBatchInsert:
    def test_batches_insert_every_record(self, db: Database) -> None:
        inserted = db.batch_insert("users", [_user(i) for i in range(7)], batch_size=3)
        assert inserted == 7
        assert db.count("users") == 7

    def test_missing_values_become_null(self, db: Database) -> None:
        db.batch_insert("users", [_user(1), Record({"name": "no-email"})])
        row = db.query_first("SELECT email, age FROM users WHERE name = ?", "no-email")
        assert row.get("email") is None
        assert row.get("age") is None

    def test_failure_reports_rows_from_earlier_batches(self, db: Database) -> None:
        records = [_user(0), _user(1), _user(2), _user(3, email="user0@example.com"), _user(4)]

        with pytest.raises(PartialBatchError) as excinfo:
            db.batch_insert("users", records, batch_size=2)

        assert excinfo.value.rows_affected == 2
        assert excinfo.value.batch_index == 1
        assert isinstance(excinfo.value.error, ConstraintViolationError)
        assert db.count("users") == 2

    def test_empty_batch_is_rejected(self, db: Database) -> None:
        with pytest.raises(ArgumentError):
            db.batch_insert("users", [])


@pytest.fixture
def memberships(db: Database) -> Database:
    db.exec(
        "CREATE TABLE memberships "
        "(user_id INTEGER, team_id INTEGER, role TEXT, PRIMARY KEY (user_id, team_id))"
    )
    db.exec("CREATE TABLE audit (message TEXT)")
    db.batch_insert(
        "memberships",
        [Record({"user_id": u, "team_id": t, "role": "member"}) for u in (1, 2) for t in (10, 20)],
    )
    return db


class TestRecordWrites:
    def test_update_record_by_key(self, seeded: Database) -> None:
        assert seeded.update_record("users", Record({"ID": 3, "age": 77})) == 1
        assert seeded.query_first("SELECT age FROM users WHERE id = ?", 3).get_int("age") == 77

    def test_update_record_with_only_the_key_changes_nothing(self, seeded: Database) -> None:
        assert seeded.update_record("users", Record({"id": 3})) == 0

    def test_delete_record_by_composite_key(self, memberships: Database) -> None:
        removed = memberships.delete_record("memberships", Record({"user_id": 1, "team_id": 20, "role": "x"}))
        assert removed == 1
        assert memberships.count("memberships") == 3
        assert not memberships.exists("memberships", "user_id = ? AND team_id = ?", 1, 20)

    @pytest.mark.parametrize("operation", ["update_record", "delete_record"])
    def test_record_writes_need_the_whole_key(self, memberships: Database, operation: str) -> None:
        with pytest.raises(ArgumentError):
            getattr(memberships, operation)("memberships", Record({"user_id": 1, "role": "owner"}))
        with pytest.raises(ArgumentError):
            getattr(memberships, operation)("memberships", Record())
        with pytest.raises(ArgumentError):
            getattr(memberships, operation)("audit", Record({"message": "hi"}))
        assert memberships.count("memberships", "role = ?", "member") == 4


class TestBatchUpdateAndDelete:
    def test_batch_update_sums_affected_rows(self, seeded: Database) -> None:
        records = [Record({"id": i, "age": 100 + i}) for i in range(1, 6)]

        assert seeded.batch_update("users", records, batch_size=2) == 5
        assert seeded.count("users", "age >= ?", 100) == 5

    def test_batch_update_failure_keeps_earlier_batches(self, seeded: Database) -> None:
        records = [
            Record({"id": 1, "age": 1}),
            Record({"id": 2, "age": 2}),
            Record({"id": 3, "email": "user0@example.com"}),
            Record({"id": 4, "email": "fresh@example.com"}),
        ]

        with pytest.raises(PartialBatchError) as excinfo:
            seeded.batch_update("users", records, batch_size=2)

        assert excinfo.value.rows_affected == 2
        assert excinfo.value.batch_index == 1
        assert isinstance(excinfo.value.error, ConstraintViolationError)
        assert seeded.count("users", "age < ?", 3) == 2
        assert not seeded.exists("users", "email = ?", "fresh@example.com")

    def test_batch_update_skips_key_only_batches(self, seeded: Database) -> None:
        records = [Record({"id": 1}), Record({"id": 2, "age": 0}), Record({"id": 3, "age": 0})]
        assert seeded.batch_update("users", records, batch_size=2) == 1

    def test_batch_delete_with_single_key_uses_in_lists(self, seeded: Database) -> None:
        records = [Record({"id": i}) for i in (1, 2, 3, 99)] + [Record({"id": None})]

        assert seeded.batch_delete("users", records, batch_size=3) == 3
        assert seeded.count("users") == SEEDED_USERS - 3

    def test_batch_delete_with_composite_key(self, memberships: Database) -> None:
        records = [Record({"user_id": 2, "team_id": 10}), Record({"user_id": 2, "team_id": 20})]

        assert memberships.batch_delete("memberships", records) == 2
        assert memberships.count("memberships", "user_id = ?", 2) == 0

    def test_batch_delete_by_ids(self, seeded: Database) -> None:
        assert seeded.batch_delete_by_ids("users", list(range(1, 11)), batch_size=4) == 10
        assert seeded.count("users") == SEEDED_USERS - 10

    def test_batch_delete_by_ids_needs_a_single_column_key(self, memberships: Database) -> None:
        with pytest.raises(ArgumentError):
            memberships.batch_delete_by_ids("memberships", [1])
        with pytest.raises(ArgumentError):
            memberships.batch_delete_by_ids("audit", [1])

    @pytest.mark.parametrize("operation", ["batch_update", "batch_delete", "batch_delete_by_ids"])
    def test_empty_input_is_rejected(self, db: Database, operation: str) -> None:
        with pytest.raises(ArgumentError):
            getattr(db, operation)("users", [])


class TestPagination:
    def test_page_invariants(self, seeded: Database) -> None:
        for number in range(1, 4):
            page = seeded.paginate(number, PAGE_SIZE, "*", "users", "", "id")
            assert len(page.records) <= PAGE_SIZE
            assert page.total_row == SEEDED_USERS
            assert page.total_page == math.ceil(SEEDED_USERS / PAGE_SIZE)

    def test_last_and_beyond_last_page(self, seeded: Database) -> None:
        last = seeded.paginate(3, PAGE_SIZE, "id, name", "users", "", "id")
        assert [r.get_int("id") for r in last.records] == list(range(21, 26))
        assert last.is_last_page

        beyond = seeded.paginate(4, PAGE_SIZE, "id, name", "users", "", "id")
        assert beyond.records == []
        assert beyond.total_row == SEEDED_USERS

    def test_filters_apply_to_count_and_slice(self, seeded: Database) -> None:
        page = seeded.paginate(1, 3, "name", "users", "age >= ?", "age DESC", args=[40])
        assert page.total_row == 5
        assert page.total_page == 2
        assert [r.get("name") for r in page.records] == ["user24", "user23", "user22"]

    def test_distinct_pages_count_distinct_rows(self, seeded: Database) -> None:
        seeded.exec("UPDATE users SET age = 30 WHERE id <= 10")
        page = seeded.paginate(1, 100, "DISTINCT age", "users", "", "age")
        # ages 30..44 remain, ids 1-10 all collapsed onto 30
        assert page.total_row == len(page.records) == 15

    def test_page_zero_is_first_page(self, seeded: Database) -> None:
        page = seeded.paginate(0, PAGE_SIZE, "*", "users")
        assert page.page == 1
        assert page.is_first_page

    def test_bad_page_size(self, seeded: Database) -> None:
        with pytest.raises(ArgumentError):
            seeded.paginate(1, 0, "*", "users")

    def test_paginate_sql_keeps_trailing_order(self, seeded: Database) -> None:
        page = seeded.paginate_sql(
            2, PAGE_SIZE, "SELECT id, name FROM users WHERE age > ? ORDER BY id DESC", args=[0]
        )
        assert page.total_row == SEEDED_USERS
        assert page.records[0].get_int("id") == SEEDED_USERS - PAGE_SIZE

    def test_empty_table(self, db: Database) -> None:
        page = db.paginate(1, PAGE_SIZE, "*", "users")
        assert page.records == []
        assert page.total_row == 0
        assert page.total_page == 0


class TestHandle:
    def test_timeout_view_shares_the_pool(self, seeded: Database) -> None:
        bounded = seeded.timeout(5.0)
        assert bounded is not seeded
        assert bounded.count("users") == SEEDED_USERS
        assert bounded.pool_stats() == seeded.pool_stats()

    def test_closing_a_timeout_view_closes_the_handle(self, db: Database) -> None:
        bounded = db.timeout(1.0)

        bounded.close()

        assert db.closed
        assert bounded.closed
        db.close()

    def test_pool_limits_can_be_changed(self, db: Database) -> None:
        limits = db.set_pool_limits(max_open=2, max_idle=8)
        assert limits.max_open == 2
        assert limits.max_idle == 2
        assert db.pool_stats().max_open == 2

    def test_connections_are_returned_after_each_call(self, seeded: Database) -> None:
        seeded.query("SELECT * FROM users")
        stats = seeded.pool_stats()
        assert stats.in_use == 0
        assert stats.idle >= 1

    def test_close_is_idempotent(self, db: Database) -> None:
        db.ping()
        db.close()
        db.close()
        assert db.closed
