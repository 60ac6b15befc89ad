"""Storage facade: the four entity-family stores over one engine.

Usage::

    storage = open_storage()              # engine from CRYPTODASH_STORAGE
    alice = storage.users.create_user(username="alice", email="a@x.com")
    pf = storage.portfolios.create_portfolio(user_id=alice.id, wallet_address="0xABC")
    storage.portfolios.delete_portfolio(pf.id)   # assets and analyses go too

Callers depend only on the store methods, so swapping the memory engine
for the DuckDB one changes no caller.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from cryptodash.db.base import Clock, utcnow
from cryptodash.db.chatbot_store import ChatbotStore
from cryptodash.db.engine import DuckDBEngine, Engine, MemoryEngine
from cryptodash.db.identity_store import IdentityStore
from cryptodash.db.market_store import MarketSummaryStore
from cryptodash.db.portfolio_store import PortfolioStore

logger = logging.getLogger(__name__)

BACKEND_ENV = "CRYPTODASH_STORAGE"
BACKENDS = ("memory", "duckdb")


class Storage:
    """Entry point to every store, sharing one engine and one clock.

    Attributes:
        users: Users and billing state.
        portfolios: Portfolios, assets, and AI analyses.
        chatbots: Chatbots, files, sessions, and messages.
        market: Market summaries.

    """

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self.users = IdentityStore(engine, clock)
        self.portfolios = PortfolioStore(engine, clock)
        self.chatbots = ChatbotStore(engine, clock)
        self.market = MarketSummaryStore(engine, clock)

    def close(self) -> None:
        """Release the engine."""
        self.engine.close()

    def __enter__(self) -> Storage:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def memory_storage(clock: Clock = utcnow) -> Storage:
    """Create an empty process-local store."""
    return Storage(MemoryEngine(), clock)


def duckdb_storage(
    db_path: str | Path | None = None,
    clock: Clock = utcnow,
    *,
    in_memory: bool = False,
) -> Storage:
    """Open a DuckDB-backed store, creating the schema if needed.

    Args:
        db_path: Database file. Defaults to ``CRYPTODASH_DB_PATH`` or
            ~/.cryptodash/data/cryptodash.duckdb.
        clock: Source of timestamps.
        in_memory: Use a throwaway in-memory DuckDB database instead of a file.

    """
    from cryptodash.db.connection import init_memory_db, init_storage_db

    conn = init_memory_db() if in_memory else init_storage_db(db_path)
    return Storage(DuckDBEngine(conn), clock)


def open_storage(
    backend: str | None = None,
    db_path: str | Path | None = None,
    clock: Clock = utcnow,
) -> Storage:
    """Open the configured store.

    Args:
        backend: "memory" or "duckdb". Falls back to the
            ``CRYPTODASH_STORAGE`` env var, then "memory".
        db_path: Database file for the duckdb backend.
        clock: Source of timestamps.

    Raises:
        ValueError: If the backend name is unknown.

    """
    backend = (backend or os.environ.get(BACKEND_ENV, "") or "memory").strip().lower()
    if backend not in BACKENDS:
        msg = f"backend must be one of {BACKENDS}, got '{backend}'"
        raise ValueError(msg)

    logger.info("Opening %s storage", backend)
    if backend == "duckdb":
        return duckdb_storage(db_path, clock)
    return memory_storage(clock)
