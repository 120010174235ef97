"""
Guarded access to resource rows.

``GuardedResourceService`` is the seam between the HTTP layer and whatever
holds the rows: every operation asks the policy evaluator first and only
touches the store on Allow. ``InMemoryResourceStore`` is the bundled store;
a SQL-backed store only needs the same five methods.
"""

import logging
import threading
import uuid as uuid_pkg
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from rowguard.core.exceptions import (
    AuthorizationDenied,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from rowguard.services.policy.evaluator import PolicyEvaluator
from rowguard.services.policy.types import Operation, Subject

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class RowConflictError(Exception):
    """A write found the row in a different state than the caller expected."""

    def __init__(self, resource_type: str, row_id: str, message: str):
        self.resource_type = resource_type
        self.row_id = row_id
        super().__init__(f"{resource_type} {row_id}: {message}")


class ResourceStore(Protocol):
    def list(self, resource_type: str) -> list[Row]: ...

    def get(self, resource_type: str, row_id: str) -> Row | None: ...

    def insert(self, resource_type: str, row: Mapping[str, Any]) -> Row: ...

    def update(
        self,
        resource_type: str,
        row_id: str,
        changes: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> Row: ...

    def delete(
        self, resource_type: str, row_id: str, expected: Mapping[str, Any] | None = None
    ) -> bool: ...


class InMemoryResourceStore:
    """Rows per resource type, keyed by their ``id``. Safe to share between threads.

    ``update`` and ``delete`` take the row as the caller last read it and
    refuse to write if it has changed since, so a policy check made on that
    row still holds when the write lands.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Row]] = {}
        self._lock = threading.Lock()

    def seed(self, resource_type: str, rows: Iterable[Mapping[str, Any]]) -> None:
        for row in rows:
            self.insert(resource_type, row)

    def list(self, resource_type: str) -> list[Row]:
        with self._lock:
            return [dict(row) for row in self._rows.get(resource_type, {}).values()]

    def get(self, resource_type: str, row_id: str) -> Row | None:
        with self._lock:
            row = self._rows.get(resource_type, {}).get(row_id)
            return dict(row) if row is not None else None

    def insert(self, resource_type: str, row: Mapping[str, Any]) -> Row:
        """Store a new row. Raises RowConflictError if its ``id`` is taken."""
        stored = dict(row)
        stored["id"] = str(stored.get("id") or uuid_pkg.uuid4())
        with self._lock:
            table = self._rows.setdefault(resource_type, {})
            if stored["id"] in table:
                raise RowConflictError(resource_type, stored["id"], "row already exists")
            table[stored["id"]] = stored
        return dict(stored)

    def update(
        self,
        resource_type: str,
        row_id: str,
        changes: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> Row:
        with self._lock:
            current = self._rows.get(resource_type, {}).get(row_id)
            if current is None:
                raise KeyError(row_id)
            if expected is not None and current != dict(expected):
                raise RowConflictError(resource_type, row_id, "row changed since it was read")
            current.update(changes)
            return dict(current)

    def delete(
        self, resource_type: str, row_id: str, expected: Mapping[str, Any] | None = None
    ) -> bool:
        with self._lock:
            table = self._rows.get(resource_type, {})
            current = table.get(row_id)
            if current is None:
                return False
            if expected is not None and current != dict(expected):
                raise RowConflictError(resource_type, row_id, "row changed since it was read")
            del table[row_id]
            return True

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()


class GuardedResourceService:
    """CRUD over a ResourceStore with a policy check before every operation.

    A row the subject may not read answers 404, exactly like a row that does
    not exist. A readable row the subject may not change answers 403.
    """

    def __init__(self, store: ResourceStore, evaluator: PolicyEvaluator):
        self.store = store
        self.evaluator = evaluator

    def _require(
        self,
        subject: Subject,
        resource_type: str,
        operation: Operation,
        row: Mapping[str, Any] | None,
    ) -> None:
        decision = self.evaluator.evaluate(subject, resource_type, operation, row)
        if decision.denied:
            raise AuthorizationDenied(decision)

    def _require_visible(
        self,
        subject: Subject,
        resource_type: str,
        operation: Operation,
        row: Row,
    ) -> None:
        """Check ``operation`` on a stored row, hiding rows the subject cannot read."""
        decision = self.evaluator.evaluate(subject, resource_type, operation, row)
        if decision.allowed:
            return
        if operation is Operation.READ or self.evaluator.evaluate(
            subject, resource_type, Operation.READ, row
        ).denied:
            raise NotFoundError(resource_type)
        raise AuthorizationDenied(decision)

    def _existing(self, resource_type: str, row_id: str) -> Row:
        row = self.store.get(resource_type, row_id)
        if row is None:
            raise NotFoundError(resource_type)
        return row

    def list(self, subject: Subject, resource_type: str) -> list[Row]:
        """Rows of ``resource_type`` the subject may read (one audit entry for the collection)."""
        return self.evaluator.scoped_read(subject, resource_type, self.store.list(resource_type))

    def get(self, subject: Subject, resource_type: str, row_id: str) -> Row:
        row = self._existing(resource_type, row_id)
        self._require_visible(subject, resource_type, Operation.READ, row)
        return row

    def create(self, subject: Subject, resource_type: str, payload: Mapping[str, Any]) -> Row:
        self._require(subject, resource_type, Operation.CREATE, payload)
        try:
            return self.store.insert(resource_type, payload)
        except RowConflictError as e:
            raise ConflictError(f"{resource_type} row already exists") from e

    def update(
        self,
        subject: Subject,
        resource_type: str,
        row_id: str,
        changes: Mapping[str, Any],
    ) -> Row:
        """
        Apply ``changes`` to a row.

        The subject must be allowed to update the row as stored and the row
        as it would look afterwards, so an owner cannot hand a row over to
        someone else. The write only lands if the row is still the one that
        was checked; otherwise the caller gets a 409 and can retry.
        """
        if "id" in changes and str(changes["id"]) != row_id:
            raise ValidationError("Row id cannot be changed")
        row = self._existing(resource_type, row_id)
        self._require_visible(subject, resource_type, Operation.UPDATE, row)
        self._require(subject, resource_type, Operation.UPDATE, {**row, **changes})
        try:
            return self.store.update(resource_type, row_id, changes, expected=row)
        except KeyError:
            raise NotFoundError(resource_type) from None
        except RowConflictError as e:
            raise ConflictError(f"{resource_type} row was modified concurrently") from e

    def delete(self, subject: Subject, resource_type: str, row_id: str) -> None:
        row = self._existing(resource_type, row_id)
        self._require_visible(subject, resource_type, Operation.DELETE, row)
        try:
            deleted = self.store.delete(resource_type, row_id, expected=row)
        except RowConflictError as e:
            raise ConflictError(f"{resource_type} row was modified concurrently") from e
        if not deleted:
            raise NotFoundError(resource_type)
        logger.info(f"Deleted {resource_type} {row_id}")
