"""Data types for the policy engine."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rowguard.services.policy.exceptions import RuleEvaluationError

# Read-only projection of the row being accessed (or the write payload for CREATE)
RowView = Mapping[str, Any]

_EMPTY_ROW: RowView = MappingProxyType({})

ANON_ROLE = "anon"
AUTHENTICATED_ROLE = "authenticated"
SERVICE_ROLE = "service_role"


class Operation(str, Enum):
    """Closed set of data operations a rule can govern."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Operation | str) -> Operation:
        """Accept enum members, names in any case, or the SQL command names."""
        if isinstance(value, Operation):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown operation: {value!r}")
        normalized = value.strip().lower()
        normalized = _SQL_COMMANDS.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown operation: {value!r}") from None


_SQL_COMMANDS = {"insert": "create", "select": "read"}


class RuleKind(str, Enum):
    """Built-in predicate constructors a rule spec can name."""

    OWNER_MATCH = "ownerMatch"
    ADMIN_ONLY = "adminOnly"
    PUBLIC_READ = "publicRead"
    EMAIL_MATCH = "emailMatch"
    AUTHENTICATED = "authenticated"
    SERVICE_ROLE = "serviceRole"
    CUSTOM = "custom"


class Outcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class Subject:
    """Resolved identity for the current request.

    Created once per request from the identity provider's claims and never
    mutated. ``is_admin`` is resolved up front so rule predicates never have
    to look it up.
    """

    id: str | None = None
    email: str | None = None
    roles: frozenset[str] = frozenset({ANON_ROLE})
    is_admin: bool = False
    attributes: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_ROW, compare=False)

    @classmethod
    def anonymous(cls) -> Subject:
        return cls()

    @classmethod
    def service(cls) -> Subject:
        """The backend's own service-role identity (bypasses owner checks via serviceRole rules)."""
        return cls(roles=frozenset({SERVICE_ROLE}))

    @property
    def is_anonymous(self) -> bool:
        return self.id is None and not self.is_service

    @property
    def is_authenticated(self) -> bool:
        return self.id is not None

    @property
    def is_service(self) -> bool:
        return SERVICE_ROLE in self.roles

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "roles": sorted(self.roles),
            "is_admin": self.is_admin,
        }


Predicate = Callable[[Subject, RowView], Any]


def as_row_view(row: Mapping[str, Any] | None) -> RowView:
    """Wrap a row (or write payload) in a read-only view. ``None`` becomes an empty view."""
    if row is None:
        return _EMPTY_ROW
    if isinstance(row, MappingProxyType):
        return row
    return MappingProxyType(dict(row))


@dataclass(frozen=True)
class PolicyRule:
    """Named predicate deciding allow/deny for one (resource type, operation)."""

    resource_type: str
    operation: Operation
    name: str
    predicate: Predicate
    kind: RuleKind = RuleKind.CUSTOM
    params: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_ROW, compare=False)
    # Identity sources the predicate reads, e.g. "subject.id" or "auth.users"
    identity_sources: frozenset[str] = frozenset()

    @property
    def key(self) -> tuple[str, Operation]:
        return (self.resource_type, self.operation)

    @property
    def grants_admin(self) -> bool:
        return self.kind is RuleKind.ADMIN_ONLY


@dataclass(frozen=True)
class Decision:
    """Outcome of a single evaluation.

    A denial is a value, not an exception. ``error`` is only set when at
    least one rule raised, which keeps "broken" distinct from "denied".
    """

    outcome: Outcome
    reason: str
    matched_rule: str | None = None
    broken_rules: tuple[str, ...] = ()
    error: RuleEvaluationError | None = None

    @classmethod
    def allow(
        cls,
        matched_rule: str | None = None,
        *,
        reason: str = "rule matched",
        broken_rules: tuple[str, ...] = (),
        error: RuleEvaluationError | None = None,
    ) -> Decision:
        return cls(Outcome.ALLOW, reason, matched_rule, broken_rules, error)

    @classmethod
    def deny(
        cls,
        reason: str,
        *,
        broken_rules: tuple[str, ...] = (),
        error: RuleEvaluationError | None = None,
    ) -> Decision:
        return cls(Outcome.DENY, reason, None, broken_rules, error)

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW

    @property
    def denied(self) -> bool:
        return self.outcome is Outcome.DENY


@dataclass(frozen=True)
class AuditEntry:
    """Append-only record of one authorization decision."""

    subject_id: str | None
    resource_type: str
    operation: Operation
    outcome: Outcome
    reason: str
    matched_rule: str | None = None
    error: str | None = None
    broken_rules: tuple[str, ...] = ()
    admin_elevated: bool = False
    scope: str = "row"  # "row" or "collection"
    row_count: int | None = None
    registry_version: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_broken_rule(self) -> bool:
        return bool(self.broken_rules) or self.error is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "subject_id": self.subject_id,
            "resource_type": self.resource_type,
            "operation": self.operation.value,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "matched_rule": self.matched_rule,
            "error": self.error,
            "broken_rules": list(self.broken_rules),
            "admin_elevated": self.admin_elevated,
            "scope": self.scope,
            "row_count": self.row_count,
            "registry_version": self.registry_version,
        }
