"""Tests for the storage engines (table contract and units of work)."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

import pytest

from cryptodash.db.engine import MemoryEngine
from cryptodash.db.schema import AI_ANALYSES, MARKET_SUMMARIES, USERS

NOW = datetime(2025, 3, 1, 9, 30, tzinfo=UTC)


def _user(name: str, **extra):
    return {
        "username": name,
        "email": f"{name}@example.com",
        "plan": "starter",
        "created_at": NOW,
        **extra,
    }


class TestTable:
    """Tests for the CRUD surface shared by both engines."""

    def test_insert_assigns_increasing_ids(self, engine):
        users = engine.table(USERS)
        first = users.insert(_user("a"))
        second = users.insert(_user("b"))
        assert (first["id"], second["id"]) == (1, 2)

    def test_ids_are_per_table(self, engine):
        engine.table(USERS).insert(_user("a"))
        summary = engine.table(MARKET_SUMMARIES).insert({"created_at": NOW})
        assert summary["id"] == 1

    def test_get_unknown_returns_none(self, engine):
        assert engine.table(USERS).get(99) is None

    def test_timestamps_round_trip_as_utc(self, engine):
        row = engine.table(USERS).insert(_user("a"))
        assert engine.table(USERS).get(row["id"])["created_at"] == NOW

    def test_find_by_equality_and_membership(self, engine):
        users = engine.table(USERS)
        for name in ("a", "b", "c"):
            users.insert(_user(name))

        assert [r["username"] for r in users.find(username="b")] == ["b"]
        assert [r["username"] for r in users.find(username=["a", "c"])] == ["a", "c"]
        assert users.find(username=[]) == []

    def test_find_none_matches_null(self, engine):
        users = engine.table(USERS)
        users.insert(_user("a", external_auth_id="uid-1"))
        users.insert(_user("b"))
        assert [r["username"] for r in users.find(external_auth_id=None)] == ["b"]

    def test_count(self, engine):
        users = engine.table(USERS)
        users.insert(_user("a", plan="pro"))
        users.insert(_user("b"))
        assert users.count() == 2
        assert users.count(plan="pro") == 1

    def test_update_merges_changes(self, engine):
        users = engine.table(USERS)
        row = users.insert(_user("a"))
        updated = users.update(row["id"], {"plan": "pro"})
        assert updated["plan"] == "pro"
        assert updated["username"] == "a"

    def test_update_unknown_returns_none(self, engine):
        assert engine.table(USERS).update(42, {"plan": "pro"}) is None

    def test_delete_where_returns_count(self, engine):
        users = engine.table(USERS)
        users.insert(_user("a", plan="pro"))
        users.insert(_user("b", plan="pro"))
        users.insert(_user("c"))
        assert users.delete_where(plan="pro") == 2
        assert users.count() == 1

    def test_delete_single(self, engine):
        users = engine.table(USERS)
        row = users.insert(_user("a"))
        assert users.delete(row["id"]) is True
        assert users.delete(row["id"]) is False

    def test_json_columns_round_trip(self, engine):
        analyses = engine.table(AI_ANALYSES)
        row = analyses.insert(
            {
                "portfolio_id": 1,
                "key_insights": ["hold ETH"],
                "rebalance_actions": [],
                "risk_factors": [],
                "opportunities": [],
                "data_source": "Gemini AI",
                "has_error": False,
                "created_at": NOW,
            }
        )
        assert analyses.get(row["id"])["key_insights"] == ["hold ETH"]

    def test_returned_rows_are_copies(self, engine):
        analyses = engine.table(AI_ANALYSES)
        row = analyses.insert(
            {"portfolio_id": 1, "key_insights": ["x"], "created_at": NOW}
        )
        row["key_insights"].append("mutated")
        fetched = analyses.get(row["id"])
        fetched["key_insights"].append("mutated again")
        assert analyses.get(row["id"])["key_insights"] == ["x"]

    def test_unknown_table_rejected(self, engine):
        with pytest.raises(ValueError, match="Unknown table"):
            engine.table("passwords")


class TestTransaction:
    """Tests for units of work."""

    def test_commit_keeps_changes(self, engine):
        with engine.transaction():
            engine.table(USERS).insert(_user("a"))
        assert engine.table(USERS).count() == 1

    def test_exception_rolls_back_every_change(self, engine):
        users = engine.table(USERS)
        kept = users.insert(_user("kept"))

        with pytest.raises(RuntimeError), engine.transaction():
            users.insert(_user("new"))
            users.update(kept["id"], {"plan": "pro"})
            users.delete_where(username="kept")
            raise RuntimeError("boom")

        rows = users.find()
        assert [r["username"] for r in rows] == ["kept"]
        assert rows[0]["plan"] == "starter"

    def test_nested_units_commit_once(self, engine):
        users = engine.table(USERS)
        with pytest.raises(RuntimeError), engine.transaction():
            with engine.transaction():
                users.insert(_user("inner"))
            raise RuntimeError("outer fails")
        assert users.count() == 0

    def test_memory_ids_not_reused_after_rollback(self):
        users = MemoryEngine().table(USERS)
        engine = users.engine
        with pytest.raises(RuntimeError), engine.transaction():
            users.insert(_user("a"))
            raise RuntimeError("boom")
        assert users.insert(_user("b"))["id"] == 2


class TestConcurrency:
    """Tests for thread safety of the shared lock."""

    def test_parallel_inserts_get_distinct_ids(self, engine):
        users = engine.table(USERS)
        ids: list[int] = []
        lock = threading.Lock()

        def worker(prefix: str) -> None:
            for i in range(20):
                row = users.insert(_user(f"{prefix}{i}"))
                with lock:
                    ids.append(row["id"])

        threads = [threading.Thread(target=worker, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(ids) == list(range(1, 81))
