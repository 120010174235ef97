"""
Immutable policy registry snapshots.

A PolicyRegistry maps (resource type, operation) to the rules that may grant
that operation. Snapshots are never mutated: every change produces a new
registry which the PolicyStore swaps in atomically, so an evaluation that
started on one snapshot finishes on that same snapshot.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from rowguard.services.policy.types import Operation, PolicyRule

RuleKey = tuple[str, Operation]


def _jsonable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [_jsonable(v) for v in value]
    return value


class PolicyRegistry:
    """Read-only snapshot of every registered rule."""

    __slots__ = ("_rules", "_resources", "_permissive", "version", "loaded_at")

    def __init__(
        self,
        rules: Mapping[RuleKey, tuple[PolicyRule, ...]] | None = None,
        *,
        resources: Iterable[str] = (),
        permissive: Iterable[str] = (),
        version: int = 0,
        loaded_at: datetime | None = None,
    ):
        self._rules: Mapping[RuleKey, tuple[PolicyRule, ...]] = MappingProxyType(
            {key: tuple(value) for key, value in (rules or {}).items() if value}
        )
        declared = set(resources)
        declared.update(resource for resource, _ in self._rules)
        self._resources: frozenset[str] = frozenset(declared)
        self._permissive: frozenset[str] = frozenset(permissive)
        self.version = version
        self.loaded_at = loaded_at or datetime.now(UTC)

    @classmethod
    def from_rules(
        cls,
        rules: Iterable[PolicyRule],
        *,
        resources: Iterable[str] = (),
        permissive: Iterable[str] = (),
        version: int = 0,
    ) -> PolicyRegistry:
        """Build a registry, replacing rules that share (resource, operation, name).

        The later rule wins but keeps the position of the first one, so
        loading the same specs twice yields exactly the same registry.
        """
        grouped: dict[RuleKey, list[PolicyRule]] = {}
        for rule in rules:
            grouped.setdefault(rule.key, [])
            _put_rule(grouped[rule.key], rule)
        return cls(
            {key: tuple(value) for key, value in grouped.items()},
            resources=resources,
            permissive=permissive,
            version=version,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────

    def rules_for(self, resource_type: str, operation: Operation) -> tuple[PolicyRule, ...]:
        return self._rules.get((resource_type, operation), ())

    def is_default_deny(self, resource_type: str) -> bool:
        """Every resource type is default-deny unless explicitly marked permissive."""
        return resource_type not in self._permissive

    @property
    def resource_types(self) -> frozenset[str]:
        return self._resources

    @property
    def permissive_resource_types(self) -> frozenset[str]:
        return self._permissive

    def items(self) -> Iterable[tuple[RuleKey, tuple[PolicyRule, ...]]]:
        return self._rules.items()

    def all_rules(self) -> list[PolicyRule]:
        return [rule for rules in self._rules.values() for rule in rules]

    def rule_count(self, resource_type: str | None = None) -> int:
        return sum(
            len(rules)
            for (resource, _), rules in self._rules.items()
            if resource_type is None or resource == resource_type
        )

    def describe(self, resource_type: str) -> dict[str, Any]:
        """Dump the rules of one resource type in a JSON-friendly shape."""
        operations: dict[str, list[dict[str, Any]]] = {}
        for operation in Operation:
            operations[operation.value] = [
                {
                    "name": rule.name,
                    "kind": rule.kind.value,
                    "params": _jsonable(rule.params),
                    "identity_sources": sorted(rule.identity_sources),
                }
                for rule in self.rules_for(resource_type, operation)
            ]
        return {
            "resource_type": resource_type,
            "default_deny": self.is_default_deny(resource_type),
            "rule_count": self.rule_count(resource_type),
            "operations": operations,
        }

    # ─────────────────────────────────────────────────────────────────────
    # Copy-on-write derivations
    # ─────────────────────────────────────────────────────────────────────

    def with_rule(self, rule: PolicyRule) -> PolicyRegistry:
        """Return a new registry with ``rule`` added, or replacing the rule of the same name."""
        rules = dict(self._rules)
        current = list(rules.get(rule.key, ()))
        _put_rule(current, rule)
        rules[rule.key] = tuple(current)
        return PolicyRegistry(
            rules,
            resources=self._resources,
            permissive=self._permissive,
            version=self.version + 1,
        )

    def merged_with(self, staged: PolicyRegistry) -> PolicyRegistry:
        """Replace every resource type present in ``staged``; keep the rest."""
        replaced = staged.resource_types
        rules = {key: value for key, value in self._rules.items() if key[0] not in replaced}
        rules.update(staged._rules)
        permissive = (self._permissive - replaced) | staged._permissive
        return PolicyRegistry(
            rules,
            resources=self._resources | replaced,
            permissive=permissive,
            version=staged.version,
        )

    def with_version(self, version: int) -> PolicyRegistry:
        return PolicyRegistry(
            self._rules,
            resources=self._resources,
            permissive=self._permissive,
            version=version,
        )


def _put_rule(rules: list[PolicyRule], rule: PolicyRule) -> None:
    for index, existing in enumerate(rules):
        if existing.name == rule.name:
            rules[index] = rule
            return
    rules.append(rule)


def check_structure(registry: PolicyRegistry) -> list[str]:
    """Structural problems that make a registry unusable (empty predicate, bad operation, ...)."""
    problems: list[str] = []
    for (resource_type, operation), rules in registry.items():
        if not isinstance(resource_type, str) or not resource_type.strip():
            problems.append(f"empty resource type for operation {operation!r}")
        if not isinstance(operation, Operation):
            problems.append(f"{resource_type}: operation {operation!r} is not a known operation")
        for rule in rules:
            label = f"{resource_type}.{getattr(operation, 'value', operation)}"
            if not isinstance(rule.name, str) or not rule.name.strip():
                problems.append(f"{label}: rule with empty name")
            if not callable(rule.predicate):
                problems.append(f"{label}: rule '{rule.name}' has no callable predicate")
            if rule.key != (resource_type, operation):
                problems.append(f"{label}: rule '{rule.name}' filed under the wrong key")
    return problems
