"""Storage engines behind the CryptoDash stores.

Stores are written against the small ``Table`` contract below and run
unchanged on either engine:

- ``MemoryEngine``: one id-to-row mapping and one id counter per table,
  filtered by linear scan. Nothing survives the process.
- ``DuckDBEngine``: one DuckDB table and id sequence per entity type.

Both engines guard all state with a single re-entrant lock. Multi-step
operations (cascades, counter bumps) run inside ``engine.transaction()``
so a failure part-way leaves no partial state behind.

Criteria passed to ``find``/``count``/``delete_where`` are matched by
equality; a list, tuple, set or frozenset value matches by membership.

Rows are plain dicts. Every row handed out is a fresh deep copy.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from cryptodash.db.schema import JSON_COLUMNS, TABLE_NAMES

if TYPE_CHECKING:
    import duckdb

logger = logging.getLogger(__name__)

Row = dict[str, Any]

_MEMBERSHIP_TYPES = (list, tuple, set, frozenset)


def _check_table(name: str) -> None:
    if name not in TABLE_NAMES:
        msg = f"Unknown table '{name}'"
        raise ValueError(msg)


class Table(ABC):
    """CRUD surface of one entity collection."""

    def __init__(self, engine: Engine, name: str) -> None:
        self.engine = engine
        self.name = name

    @abstractmethod
    def insert(self, values: Row) -> Row:
        """Assign the next id to ``values``, store it, and return the row."""

    @abstractmethod
    def get(self, row_id: int) -> Row | None:
        """Return the row with ``row_id``, or None."""

    @abstractmethod
    def find(self, **criteria: Any) -> list[Row]:
        """Return rows matching all criteria, ordered by id."""

    @abstractmethod
    def count(self, **criteria: Any) -> int:
        """Return the number of rows matching all criteria."""

    @abstractmethod
    def update(self, row_id: int, changes: Row) -> Row | None:
        """Merge ``changes`` into a row. Returns None if the id is unknown."""

    @abstractmethod
    def delete_where(self, **criteria: Any) -> int:
        """Delete rows matching all criteria. Returns the number removed."""

    def delete(self, row_id: int) -> bool:
        """Delete a single row. Returns False if the id is unknown."""
        return self.delete_where(id=row_id) > 0


class Engine(ABC):
    """Shared lock and nested unit-of-work bookkeeping."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._tables: dict[str, Table] = {}

    def table(self, name: str) -> Table:
        """Return the table called ``name``."""
        _check_table(name)
        with self._lock:
            if name not in self._tables:
                self._tables[name] = self._make_table(name)
            return self._tables[name]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run a unit of work. Only the outermost level commits.

        An exception escaping the outermost level rolls back every
        change made inside it, then propagates.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._begin()
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback()
                    logger.debug("Rolled back unit of work")
                raise
            self._depth -= 1
            if outermost:
                self._commit()

    def close(self) -> None:  # noqa: B027
        """Release engine resources."""

    @abstractmethod
    def _make_table(self, name: str) -> Table: ...

    @abstractmethod
    def _begin(self) -> None: ...

    @abstractmethod
    def _commit(self) -> None: ...

    @abstractmethod
    def _rollback(self) -> None: ...


# ── memory engine ─────────────────────────────────────────────────


def _matches(row: Row, criteria: dict[str, Any]) -> bool:
    for key, expected in criteria.items():
        actual = row.get(key)
        if isinstance(expected, _MEMBERSHIP_TYPES):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class MemoryTable(Table):
    """An id-to-row mapping with a monotonically increasing counter."""

    engine: MemoryEngine

    def __init__(self, engine: MemoryEngine, name: str) -> None:
        super().__init__(engine, name)
        self._rows: dict[int, Row] = {}
        self._next_id = 1

    def insert(self, values: Row) -> Row:
        with self.engine._lock:
            row_id = self._next_id
            self._next_id += 1
            row = copy.deepcopy(values)
            row["id"] = row_id
            self._rows[row_id] = row
            self.engine._journal_undo(lambda: self._rows.pop(row_id, None))
            return copy.deepcopy(row)

    def get(self, row_id: int) -> Row | None:
        with self.engine._lock:
            row = self._rows.get(row_id)
            return copy.deepcopy(row) if row is not None else None

    def find(self, **criteria: Any) -> list[Row]:
        with self.engine._lock:
            return [
                copy.deepcopy(self._rows[row_id])
                for row_id in sorted(self._rows)
                if _matches(self._rows[row_id], criteria)
            ]

    def count(self, **criteria: Any) -> int:
        with self.engine._lock:
            return sum(1 for row in self._rows.values() if _matches(row, criteria))

    def update(self, row_id: int, changes: Row) -> Row | None:
        with self.engine._lock:
            previous = self._rows.get(row_id)
            if previous is None:
                return None
            # Replace rather than mutate so the journal keeps the old row intact
            updated = {**previous, **copy.deepcopy(changes), "id": row_id}
            self._rows[row_id] = updated
            self.engine._journal_undo(
                lambda: self._rows.__setitem__(row_id, previous)
            )
            return copy.deepcopy(updated)

    def delete_where(self, **criteria: Any) -> int:
        with self.engine._lock:
            doomed = [
                row_id
                for row_id, row in self._rows.items()
                if _matches(row, criteria)
            ]
            removed = {row_id: self._rows.pop(row_id) for row_id in doomed}
            if removed:
                self.engine._journal_undo(lambda: self._rows.update(removed))
            return len(removed)


class MemoryEngine(Engine):
    """Process-local engine. Rollback replays an undo journal.

    Id counters are not rewound on rollback, matching sequence
    semantics: an id is never handed out twice.
    """

    def __init__(self) -> None:
        super().__init__()
        self._journal: list[Callable[[], object]] | None = None

    def _make_table(self, name: str) -> Table:
        return MemoryTable(self, name)

    def _journal_undo(self, undo: Callable[[], object]) -> None:
        if self._journal is not None:
            self._journal.append(undo)

    def _begin(self) -> None:
        self._journal = []

    def _commit(self) -> None:
        self._journal = None

    def _rollback(self) -> None:
        journal, self._journal = self._journal or [], None
        for undo in reversed(journal):
            undo()


# ── DuckDB engine ─────────────────────────────────────────────────


def _quote(column: str) -> str:
    return '"' + column.replace('"', '""') + '"'


class DuckDBTable(Table):
    """A DuckDB table with its own id sequence."""

    engine: DuckDBEngine

    def __init__(self, engine: DuckDBEngine, name: str) -> None:
        super().__init__(engine, name)
        self._json_columns = JSON_COLUMNS.get(name, frozenset())

    # ── value conversion ──

    def _encode(self, column: str, value: Any) -> Any:
        if value is None:
            return None
        if column in self._json_columns:
            return json.dumps(value)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(UTC).replace(tzinfo=None)
        return value

    def _decode(self, column: str, value: Any) -> Any:
        if value is None:
            return None
        if column in self._json_columns:
            return json.loads(value)
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def _where(self, criteria: dict[str, Any]) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, expected in criteria.items():
            if isinstance(expected, _MEMBERSHIP_TYPES):
                members = list(expected)
                if not members:
                    clauses.append("FALSE")
                    continue
                placeholders = ", ".join("?" for _ in members)
                clauses.append(f"{_quote(column)} IN ({placeholders})")
                params.extend(self._encode(column, m) for m in members)
            elif expected is None:
                clauses.append(f"{_quote(column)} IS NULL")
            else:
                clauses.append(f"{_quote(column)} = ?")
                params.append(self._encode(column, expected))
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        return where, params

    def _fetch(self, sql: str, params: list[Any]) -> list[Row]:
        conn = self.engine.conn
        result = conn.execute(sql, params).fetchall()
        columns = [desc[0] for desc in conn.description]
        return [
            {col: self._decode(col, val) for col, val in zip(columns, row, strict=True)}
            for row in result
        ]

    # ── Table contract ──

    def insert(self, values: Row) -> Row:
        with self.engine._lock:
            conn = self.engine.conn
            seq = conn.execute(f"SELECT nextval('{self.name}_id_seq')").fetchone()
            row_id = int(seq[0]) if seq else 0
            row = {**values, "id": row_id}
            columns = list(row)
            placeholders = ", ".join("?" for _ in columns)
            conn.execute(
                f"INSERT INTO {self.name} "  # noqa: S608
                f"({', '.join(_quote(c) for c in columns)}) "
                f"VALUES ({placeholders})",
                [self._encode(c, row[c]) for c in columns],
            )
            inserted = self.get(row_id)
            if inserted is None:
                msg = f"Row {row_id} vanished from {self.name} after insert"
                raise RuntimeError(msg)
            return inserted

    def get(self, row_id: int) -> Row | None:
        rows = self.find(id=row_id)
        return rows[0] if rows else None

    def find(self, **criteria: Any) -> list[Row]:
        where, params = self._where(criteria)
        with self.engine._lock:
            return self._fetch(
                f"SELECT * FROM {self.name}{where} ORDER BY id",  # noqa: S608
                params,
            )

    def count(self, **criteria: Any) -> int:
        where, params = self._where(criteria)
        with self.engine._lock:
            result = self.engine.conn.execute(
                f"SELECT COUNT(*) FROM {self.name}{where}",  # noqa: S608
                params,
            ).fetchone()
            return int(result[0]) if result else 0

    def update(self, row_id: int, changes: Row) -> Row | None:
        changes = {k: v for k, v in changes.items() if k != "id"}
        with self.engine._lock:
            if self.count(id=row_id) == 0:
                return None
            if changes:
                assignments = ", ".join(f"{_quote(c)} = ?" for c in changes)
                self.engine.conn.execute(
                    f"UPDATE {self.name} SET {assignments} WHERE id = ?",  # noqa: S608
                    [*(self._encode(c, v) for c, v in changes.items()), row_id],
                )
            return self.get(row_id)

    def delete_where(self, **criteria: Any) -> int:
        where, params = self._where(criteria)
        with self.engine._lock:
            doomed = self.count(**criteria)
            if doomed:
                self.engine.conn.execute(
                    f"DELETE FROM {self.name}{where}",  # noqa: S608
                    params,
                )
            return doomed


class DuckDBEngine(Engine):
    """Durable engine over an initialized DuckDB connection.

    A unit of work maps to BEGIN / COMMIT / ROLLBACK.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        super().__init__()
        self.conn = conn

    def _make_table(self, name: str) -> Table:
        return DuckDBTable(self, name)

    def _begin(self) -> None:
        self.conn.begin()

    def _commit(self) -> None:
        self.conn.commit()

    def _rollback(self) -> None:
        self.conn.rollback()

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self.conn.close()
