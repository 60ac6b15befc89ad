"""Shared helpers for the entity-family stores."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from cryptodash.db.engine import Engine, Row, Table
from cryptodash.errors import NotFoundError, ValidationError

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC; pass aware ones and None through."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def latest(rows: Iterable[Row], key: str) -> Row | None:
    """Return the row with the greatest ``key``; ties go to the higher id."""
    return max(rows, key=lambda row: (row[key], row["id"]), default=None)


class BaseStore:
    """Base store providing clock, lookup, and validation helpers."""

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self._engine = engine
        self._clock = clock

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        return now

    def _table(self, name: str) -> Table:
        return self._engine.table(name)

    def _require(self, table_name: str, entity: str, row_id: int) -> Row:
        """Return the row or raise ``NotFoundError``."""
        row = self._table(table_name).get(row_id)
        if row is None:
            raise NotFoundError(entity, row_id)
        return row

    @staticmethod
    def _check_fields(entity: str, changes: dict[str, Any], allowed: frozenset[str]) -> None:
        unknown = sorted(set(changes) - allowed)
        if unknown:
            msg = f"Cannot update {entity} field(s) {unknown}; allowed: {sorted(allowed)}"
            raise ValidationError(msg)

    @staticmethod
    def _require_text(value: Any, field_name: str) -> str:
        """Return ``value`` stripped, rejecting non-strings and blanks."""
        if not isinstance(value, str) or not value.strip():
            msg = f"{field_name} must be a non-empty string"
            raise ValidationError(msg)
        return value.strip()

    @staticmethod
    def _require_bool(value: Any, field_name: str) -> bool:
        # "false" is a truthy string, so nothing is coerced
        if not isinstance(value, bool):
            msg = f"{field_name} must be a boolean, got {value!r}"
            raise ValidationError(msg)
        return value

    @staticmethod
    def _require_count(value: Any, field_name: str) -> int:
        """Return ``value`` if it is a non-negative int (bools excluded)."""
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            msg = f"{field_name} must be a non-negative integer, got {value!r}"
            raise ValidationError(msg)
        return value

    @staticmethod
    def _optional_text(value: Any, field_name: str) -> str | None:
        if value is not None and not isinstance(value, str):
            msg = f"{field_name} must be a string or null, got {value!r}"
            raise ValidationError(msg)
        return value

    @staticmethod
    def _parse_timestamp(value: Any, field_name: str) -> datetime | None:
        """Accept a datetime or an ISO-8601 string; naive values are UTC.

        Raises:
            ValidationError: If ``value`` is neither, or does not parse.

        """
        if value is None or isinstance(value, datetime):
            return as_utc(value)
        if isinstance(value, str):
            try:
                return as_utc(datetime.fromisoformat(value))
            except ValueError as exc:
                msg = f"{field_name} must be an ISO-8601 timestamp, got {value!r}"
                raise ValidationError(msg) from exc
        msg = f"{field_name} must be an ISO-8601 timestamp, got {value!r}"
        raise ValidationError(msg)
