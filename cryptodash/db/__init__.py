"""CryptoDash storage layer.

An in-process relational store for users, portfolios, chatbots and
market summaries. The memory engine is the default; DuckDB provides a
durable engine behind the same store methods.
"""

from cryptodash.db.storage import Storage, duckdb_storage, memory_storage, open_storage

__all__ = ["Storage", "duckdb_storage", "memory_storage", "open_storage"]
