"""Typed errors raised by the CryptoDash store.

Each error carries the status code the request layer reports for it::

    NotFoundError   -> 404
    ConflictError   -> 409
    ValidationError -> 400

Read operations never raise ``NotFoundError``; they return ``None`` or an
empty list instead.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for all store errors."""

    status = 500


class NotFoundError(StoreError, LookupError):
    """An update, delete-dependent insert, or merge targeted a missing id."""

    status = 404

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(StoreError):
    """An insert would violate a uniqueness constraint."""

    status = 409


class ValidationError(StoreError, ValueError):
    """A value was rejected at the store boundary."""

    status = 400
