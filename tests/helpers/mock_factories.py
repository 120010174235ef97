"""Factories for policy engine tests.

Builds subjects, rules and audit entries with sensible defaults, plus mock
database results for the domain operations. Used in unit tests where the
database is fully mocked.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock

from rowguard.services.policy.types import (
    AUTHENTICATED_ROLE,
    AuditEntry,
    Operation,
    Outcome,
    PolicyRule,
    RuleKind,
    Subject,
)


def make_subject(**overrides: Any) -> Subject:
    """An authenticated, non-admin subject unless overridden."""
    return Subject(
        id=overrides.get("id", str(uuid.uuid4())),
        email=overrides.get("email", "user@example.com"),
        roles=overrides.get("roles", frozenset({AUTHENTICATED_ROLE})),
        is_admin=overrides.get("is_admin", False),
        attributes=overrides.get("attributes", {}),
    )


def make_admin(**overrides: Any) -> Subject:
    return make_subject(is_admin=True, email=overrides.pop("email", "admin@example.com"), **overrides)


def make_rule(
    name: str = "rule",
    predicate: Any = None,
    resource_type: str = "providers",
    operation: Operation = Operation.READ,
    **overrides: Any,
) -> PolicyRule:
    return PolicyRule(
        resource_type=resource_type,
        operation=operation,
        name=name,
        predicate=predicate or (lambda subject, row: True),
        kind=overrides.get("kind", RuleKind.CUSTOM),
        params=overrides.get("params", {}),
        identity_sources=frozenset(overrides.get("identity_sources", ())),
    )


def raising_predicate(subject: Subject, row: Any) -> bool:
    raise RuntimeError("permission denied for table users")


def make_audit_entry(**overrides: Any) -> AuditEntry:
    return AuditEntry(
        subject_id=overrides.get("subject_id", "user-1"),
        resource_type=overrides.get("resource_type", "providers"),
        operation=overrides.get("operation", Operation.READ),
        outcome=overrides.get("outcome", Outcome.ALLOW),
        reason=overrides.get("reason", "rule matched"),
        matched_rule=overrides.get("matched_rule"),
        error=overrides.get("error"),
        broken_rules=tuple(overrides.get("broken_rules", ())),
        admin_elevated=overrides.get("admin_elevated", False),
        scope=overrides.get("scope", "row"),
        row_count=overrides.get("row_count"),
        registry_version=overrides.get("registry_version", 1),
        timestamp=overrides.get("timestamp", datetime.now(UTC)),
    )


def make_broken_entry(**overrides: Any) -> AuditEntry:
    overrides.setdefault("outcome", Outcome.DENY)
    overrides.setdefault("reason", "rule error: broken")
    overrides.setdefault("broken_rules", ("broken",))
    overrides.setdefault("error", "Rule 'broken' on providers.read raised RuntimeError: boom")
    return make_audit_entry(**overrides)


class RecordingWriter:
    """Audit writer that keeps every batch it receives."""

    def __init__(self, fail: bool = False):
        self.batches: list[list[AuditEntry]] = []
        self.fail = fail

    async def write(self, entries: list[AuditEntry]) -> None:
        if self.fail:
            raise ConnectionError("audit store unavailable")
        self.batches.append(list(entries))

    @property
    def entries(self) -> list[AuditEntry]:
        return [entry for batch in self.batches for entry in batch]


def mock_scalars_result(values: list) -> MagicMock:
    """Create a mock execute() result that yields values via .scalars().all()."""
    result = MagicMock()
    result.scalars.return_value.all.return_value = values
    result.scalars.return_value.first.return_value = values[0] if values else None
    return result


def mock_scalar_result(value: object) -> MagicMock:
    """Create a mock execute() result that yields a single value."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar.return_value = value
    return result


def make_mock_admin_email(**overrides: object) -> MagicMock:
    row = MagicMock()
    row.id = overrides.get("id", uuid.uuid4())
    row.email = overrides.get("email", "admin@example.com")
    row.note = overrides.get("note")
    row.created_at = overrides.get("created_at", datetime.now(UTC))
    row.updated_at = overrides.get("updated_at", datetime.now(UTC))
    return row


def make_mock_audit_row(**overrides: object) -> MagicMock:
    row = MagicMock()
    row.id = overrides.get("id", uuid.uuid4())
    row.created_at = overrides.get("created_at", datetime.now(UTC))
    row.subject_id = overrides.get("subject_id", "user-1")
    row.resource_type = overrides.get("resource_type", "providers")
    row.operation = overrides.get("operation", "read")
    row.outcome = overrides.get("outcome", "deny")
    row.reason = overrides.get("reason", "no rule matched")
    row.matched_rule = overrides.get("matched_rule")
    row.error = overrides.get("error")
    row.broken_rules = overrides.get("broken_rules", [])
    row.admin_elevated = overrides.get("admin_elevated", False)
    row.scope = overrides.get("scope", "row")
    row.row_count = overrides.get("row_count")
    row.registry_version = overrides.get("registry_version", 1)
    return row
