"""
Offline diagnostics for a policy registry.

Not on the request path: run as a pre-deploy gate (``scripts/audit_policies.py``),
after every reload, and once a day by the scheduler. Reports:

- default-deny resource types missing a rule for some operation
- rules that read a restricted identity store instead of the resolved Subject
- duplicate rule names under one (resource type, operation)
- suspiciously many rules for one operation
- unfiltered public rules on UPDATE/DELETE
"""

from __future__ import annotations

import ast
import inspect
import logging
import textwrap
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, ClassVar

from rowguard.services.policy.registry import PolicyRegistry
from rowguard.services.policy.types import Operation, PolicyRule, RuleKind

logger = logging.getLogger(__name__)

DEFAULT_RESTRICTED_SOURCES: tuple[str, ...] = (
    "auth.users",
    "admin_emails",
    "profiles",
    "is_admin_user",
)
DEFAULT_MAX_RULES_PER_OPERATION = 3

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass(frozen=True)
class Finding:
    """Base class for a diagnostic finding."""

    code: ClassVar[str] = "finding"
    severity: ClassVar[str] = SEVERITY_WARNING

    resource_type: str
    operation: Operation

    @property
    def message(self) -> str:
        return self.code

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity,
            "resource_type": self.resource_type,
            "operation": self.operation.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class MissingOperationCoverage(Finding):
    code: ClassVar[str] = "missing_operation_coverage"

    @property
    def message(self) -> str:
        return (
            f"{self.resource_type} is default-deny but has no {self.operation.value.upper()} "
            f"rule; every {self.operation.value} will be denied"
        )


@dataclass(frozen=True)
class SuspiciousIdentitySource(Finding):
    code: ClassVar[str] = "suspicious_identity_source"
    severity: ClassVar[str] = SEVERITY_ERROR

    rule_name: str
    source: str

    @property
    def message(self) -> str:
        return (
            f"rule '{self.rule_name}' reads restricted identity source '{self.source}' "
            f"instead of the resolved subject"
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "rule_name": self.rule_name, "source": self.source}


@dataclass(frozen=True)
class DuplicateRuleName(Finding):
    code: ClassVar[str] = "duplicate_rule_name"
    severity: ClassVar[str] = SEVERITY_ERROR

    name: str

    @property
    def message(self) -> str:
        return f"rule name '{self.name}' is registered more than once"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "rule_name": self.name}


@dataclass(frozen=True)
class ExcessiveRuleCount(Finding):
    code: ClassVar[str] = "excessive_rule_count"

    count: int
    threshold: int

    @property
    def message(self) -> str:
        return (
            f"{self.count} rules for {self.operation.value.upper()} "
            f"(more than {self.threshold} usually means overlapping fixes)"
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "count": self.count, "threshold": self.threshold}


@dataclass(frozen=True)
class PublicMutationRule(Finding):
    code: ClassVar[str] = "public_mutation_rule"
    severity: ClassVar[str] = SEVERITY_ERROR

    rule_name: str

    @property
    def message(self) -> str:
        return (
            f"rule '{self.rule_name}' lets anyone {self.operation.value} any row "
            f"(publicRead without a 'where' filter)"
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "rule_name": self.rule_name}


# ─────────────────────────────────────────────────────────────────────────────
# Identity source detection
# ─────────────────────────────────────────────────────────────────────────────


def _is_restricted(source: str, restricted: Iterable[str]) -> str | None:
    for token in restricted:
        if source == token or source.startswith(token + "."):
            return token
    return None


def _dotted_name(node: ast.AST) -> str | None:
    parts: list[str] = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if isinstance(node, ast.Name):
        parts.append(node.id)
        return ".".join(reversed(parts))
    return None


def scan_predicate_source(func: Any, restricted: Iterable[str]) -> set[str]:
    """
    Look through a predicate's source for references to restricted identity stores.

    Catches string constants such as ``"SELECT email FROM auth.users"``,
    dotted attributes such as ``auth.users`` and calls such as
    ``is_admin_user(...)``. Returns an empty set when the source is unavailable.
    """
    restricted = tuple(restricted)
    try:
        source = textwrap.dedent(inspect.getsource(func))
    except (OSError, TypeError):
        return set()

    try:
        tree = ast.parse(source)
    except SyntaxError:
        # Lambdas embedded mid-expression don't parse on their own
        return {token for token in restricted if token in source}

    hits: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Constant) and isinstance(node.value, str):
            hits.update(token for token in restricted if token in node.value)
        elif isinstance(node, ast.Attribute):
            dotted = _dotted_name(node)
            if dotted:
                token = _is_restricted(dotted, restricted)
                if token:
                    hits.add(token)
        elif isinstance(node, ast.Name) and node.id in restricted:
            hits.add(node.id)
    return hits


def _restricted_sources_for(rule: PolicyRule, restricted: tuple[str, ...]) -> set[str]:
    hits = {
        token
        for source in rule.identity_sources
        if (token := _is_restricted(source, restricted)) is not None
    }
    if rule.kind is RuleKind.CUSTOM:
        hits |= scan_predicate_source(rule.predicate, restricted)
    return hits


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────


def validate(
    registry: PolicyRegistry,
    *,
    max_rules_per_operation: int = DEFAULT_MAX_RULES_PER_OPERATION,
    restricted_sources: Iterable[str] = DEFAULT_RESTRICTED_SOURCES,
) -> list[Finding]:
    """Run every check against a registry snapshot and return the findings."""
    restricted = tuple(restricted_sources)
    findings: list[Finding] = []

    for resource_type in sorted(registry.resource_types):
        for operation in Operation:
            rules = registry.rules_for(resource_type, operation)

            if not rules:
                if registry.is_default_deny(resource_type):
                    findings.append(MissingOperationCoverage(resource_type, operation))
                continue

            for name, count in Counter(rule.name for rule in rules).items():
                if count > 1:
                    findings.append(DuplicateRuleName(resource_type, operation, name))

            if len(rules) > max_rules_per_operation:
                findings.append(
                    ExcessiveRuleCount(
                        resource_type, operation, len(rules), max_rules_per_operation
                    )
                )

            for rule in rules:
                for source in sorted(_restricted_sources_for(rule, restricted)):
                    findings.append(
                        SuspiciousIdentitySource(resource_type, operation, rule.name, source)
                    )
                if (
                    rule.kind is RuleKind.PUBLIC_READ
                    and operation in (Operation.UPDATE, Operation.DELETE)
                    and not rule.params.get("where")
                ):
                    findings.append(PublicMutationRule(resource_type, operation, rule.name))

    return findings


def has_errors(findings: Iterable[Finding]) -> bool:
    return any(finding.severity == SEVERITY_ERROR for finding in findings)


def describe_registry(
    registry: PolicyRegistry, resource_type: str | None = None
) -> list[dict[str, Any]]:
    """Dump every rule of one resource type (or all of them)."""
    resource_types = [resource_type] if resource_type else sorted(registry.resource_types)
    return [registry.describe(resource) for resource in resource_types]


def coverage_table(registry: PolicyRegistry) -> list[dict[str, Any]]:
    """Per-resource rule counts by operation with a one-word status."""
    rows = []
    for resource_type in sorted(registry.resource_types):
        counts = {
            operation.value: len(registry.rules_for(resource_type, operation))
            for operation in Operation
        }
        total = sum(counts.values())
        if not registry.is_default_deny(resource_type):
            status = "PERMISSIVE"
        elif total == 0:
            status = "NO RULES"
        elif counts[Operation.DELETE.value] == 0:
            status = "MISSING DELETE"
        elif not all(counts.values()):
            status = "INCOMPLETE"
        else:
            status = "COMPLETE"
        rows.append({"resource_type": resource_type, **counts, "total": total, "status": status})
    return rows


def format_report(findings: list[Finding]) -> str:
    if not findings:
        return "No findings."
    lines = [
        f"[{finding.severity.upper()}] {finding.code} "
        f"{finding.resource_type}.{finding.operation.value}: {finding.message}"
        for finding in findings
    ]
    errors = sum(1 for finding in findings if finding.severity == SEVERITY_ERROR)
    lines.append(f"{len(findings)} finding(s), {errors} error(s)")
    return "\n".join(lines)


def log_findings(findings: list[Finding]) -> None:
    for finding in findings:
        logger.warning(
            f"[policy] {finding.code} {finding.resource_type}.{finding.operation.value}: "
            f"{finding.message}"
        )
