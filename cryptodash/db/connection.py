"""DuckDB connection management for the CryptoDash store.

Handles database initialization, schema creation, and connection
lifecycle for the durable engine. The default file layout is::

    ~/.cryptodash/
      data/
        cryptodash.duckdb

"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import duckdb

from cryptodash.db.schema import ALL_SEQUENCES, ALL_TABLES

logger = logging.getLogger(__name__)

# Default data directory (can be overridden for testing)
_DEFAULT_DATA_DIR = Path.home() / ".cryptodash" / "data"

DB_PATH_ENV = "CRYPTODASH_DB_PATH"


def default_db_path() -> Path:
    """Return the database path from ``CRYPTODASH_DB_PATH`` or the default."""
    configured = os.environ.get(DB_PATH_ENV, "").strip()
    if configured:
        return Path(configured).expanduser()
    return _DEFAULT_DATA_DIR / "cryptodash.duckdb"


def get_connection(
    db_path: str | Path | None = None,
    read_only: bool = False,
) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB connection.

    Args:
        db_path: Path to the .duckdb file. If None, uses in-memory database.
        read_only: Open in read-only mode.

    Returns:
        Active DuckDB connection.

    """
    if db_path is None:
        return duckdb.connect(":memory:")

    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def _create_schema(conn: duckdb.DuckDBPyConnection) -> None:
    for ddl in ALL_SEQUENCES:
        conn.execute(ddl)
    for ddl in ALL_TABLES:
        conn.execute(ddl)


def init_storage_db(
    db_path: str | Path | None = None,
) -> duckdb.DuckDBPyConnection:
    """Initialize the store database with schema.

    Creates one id sequence and one table per entity type. Safe to call
    on an existing file (IF NOT EXISTS).

    Args:
        db_path: Path to the .duckdb file.
            Defaults to ``default_db_path()``.

    Returns:
        Initialized DuckDB connection.

    """
    if db_path is None:
        db_path = default_db_path()

    conn = get_connection(db_path)
    _create_schema(conn)
    logger.info("Store database initialized at %s", db_path)
    return conn


def init_memory_db() -> duckdb.DuckDBPyConnection:
    """Create an in-memory DuckDB database with full schema.

    Useful for testing the durable engine without touching disk.

    Returns:
        In-memory DuckDB connection with all tables created.

    """
    conn = get_connection(None)
    _create_schema(conn)
    return conn
