"""Shared pytest fixtures for CryptoDash storage tests.

Store tests take the ``storage`` fixture, which runs each test once
against the memory engine and once against an in-memory DuckDB engine.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest

from cryptodash.db.connection import init_memory_db
from cryptodash.db.engine import DuckDBEngine, Engine, MemoryEngine
from cryptodash.db.storage import Storage

EPOCH = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic clock. Each call advances one second unless pinned."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start
        self.pinned: datetime | None = None

    def __call__(self) -> datetime:
        if self.pinned is not None:
            return self.pinned
        current = self.now
        self.now += timedelta(seconds=1)
        return current

    def pin(self, moment: datetime | None) -> None:
        """Return ``moment`` from every call until unpinned with None."""
        self.pinned = moment


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fresh deterministic clock."""
    return FakeClock()


@pytest.fixture(params=["memory", "duckdb"])
def engine(request: pytest.FixtureRequest) -> Iterator[Engine]:
    """Provide an empty engine of each kind."""
    if request.param == "memory":
        eng: Engine = MemoryEngine()
    else:
        eng = DuckDBEngine(init_memory_db())
    yield eng
    eng.close()


@pytest.fixture
def storage(engine: Engine, clock: FakeClock) -> Storage:
    """Provide an empty store on each engine, driven by the fake clock."""
    return Storage(engine, clock)


@pytest.fixture
def alice(storage: Storage):
    """Provide a registered user."""
    return storage.users.create_user(username="alice", email="alice@example.com")


@pytest.fixture
def bob(storage: Storage):
    """Provide a second registered user."""
    return storage.users.create_user(username="bob", email="bob@example.com")
