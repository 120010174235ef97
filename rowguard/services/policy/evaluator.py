"""
Policy evaluator.

Decides whether a Subject may perform an operation on a row by OR-ing the
rules registered for (resource type, operation). A rule that raises is
reported as broken (RuleEvaluationError) and never treated as a silent
"no match": the remaining rules still run, so one broken rule cannot take
down an otherwise correct rule set, and the decision names the broken rule.

Every call to ``evaluate()`` records exactly one audit entry, including when
the engine itself fails.
"""

import inspect
import logging
from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

from rowguard.services.policy.audit import AuditSink
from rowguard.services.policy.exceptions import RuleEvaluationError
from rowguard.services.policy.registry import PolicyRegistry
from rowguard.services.policy.store import PolicyStore
from rowguard.services.policy.types import (
    SERVICE_ROLE,
    AuditEntry,
    Decision,
    Operation,
    PolicyRule,
    RowView,
    Subject,
    as_row_view,
)

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=Mapping[str, Any])

REASON_NO_RULE = "no rule"
REASON_NO_MATCH = "no rule matched"
REASON_UNPROTECTED = "unprotected resource"
REASON_ENGINE_ERROR = "evaluation error"


def _run_rule(
    rule: PolicyRule, subject: Subject, row: RowView
) -> tuple[bool, RuleEvaluationError | None]:
    """Run one predicate. Returns (matched, error); a raising rule never matches."""
    try:
        result = rule.predicate(subject, row)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise TypeError("predicate returned an awaitable; predicates must be synchronous")
    except Exception as e:
        return False, RuleEvaluationError(rule.name, rule.resource_type, rule.operation, e)
    return bool(result), None


def _rule_error_reason(broken: Iterable[str]) -> str:
    return f"rule error: {', '.join(broken)}"


def _audit_subject_id(subject: Subject) -> str | None:
    if subject.id is None and subject.is_service:
        return SERVICE_ROLE
    return subject.id


class RowFilter:
    """
    OR-composition of a resource type's READ rules, applied per row.

    Short-circuits per row and records nothing in the audit sink; it only
    remembers which rules raised and which rules granted at least one row,
    so the caller can write a single collection-level audit entry.
    """

    def __init__(
        self,
        subject: Subject,
        resource_type: str,
        rules: tuple[PolicyRule, ...],
        *,
        default_allow: bool,
        registry_version: int = 0,
    ):
        self.subject = subject
        self.resource_type = resource_type
        self.rules = rules
        self.default_allow = default_allow
        self.registry_version = registry_version
        self._errors: dict[str, RuleEvaluationError] = {}
        self._matched: dict[str, PolicyRule] = {}

    def __call__(self, row: Mapping[str, Any] | None) -> bool:
        if not self.rules:
            return self.default_allow
        view = as_row_view(row)
        for rule in self.rules:
            matched, error = _run_rule(rule, self.subject, view)
            if error is not None:
                if rule.name not in self._errors:
                    logger.error(f"[policy] {error}", exc_info=error.cause)
                    self._errors[rule.name] = error
                continue
            if matched:
                self._matched.setdefault(rule.name, rule)
                return True
        return False

    @property
    def broken_rules(self) -> tuple[str, ...]:
        return tuple(self._errors)

    @property
    def errors(self) -> tuple[RuleEvaluationError, ...]:
        return tuple(self._errors.values())

    @property
    def matched_rules(self) -> tuple[PolicyRule, ...]:
        return tuple(self._matched.values())


class PolicyEvaluator:
    """Evaluates subjects against the live registry and audits every decision."""

    def __init__(self, store: PolicyStore, sink: AuditSink, *, strict_rule_audit: bool = False):
        self._store = store
        self._sink = sink
        # When set, rules keep running after a match so every broken rule is reported
        self.strict_rule_audit = strict_rule_audit

    @property
    def store(self) -> PolicyStore:
        return self._store

    @property
    def sink(self) -> AuditSink:
        return self._sink

    # ─────────────────────────────────────────────────────────────────────
    # Single-row decisions
    # ─────────────────────────────────────────────────────────────────────

    def evaluate(
        self,
        subject: Subject,
        resource_type: str,
        operation: Operation | str,
        row: Mapping[str, Any] | None = None,
    ) -> Decision:
        """
        Decide whether ``subject`` may perform ``operation`` on ``row``.

        ``row`` is the stored row for READ/UPDATE/DELETE and the write
        payload for CREATE. Raises ValueError only for an unknown operation;
        every other failure becomes a Deny.
        """
        operation = Operation.parse(operation)
        registry = self._store.snapshot()

        decision = Decision.deny(REASON_ENGINE_ERROR)
        matched: PolicyRule | None = None
        engine_error: str | None = None
        try:
            decision, matched = self._decide(registry, subject, resource_type, operation, row)
        except Exception as e:
            engine_error = f"{type(e).__name__}: {e}"
            logger.exception(f"[policy] Evaluation of {resource_type}.{operation.value} failed: {e}")
        finally:
            self._record(
                subject,
                registry,
                resource_type,
                operation,
                decision,
                admin_elevated=decision.allowed and matched is not None and matched.grants_admin,
                error=engine_error,
            )

        self._log_decision(subject, resource_type, operation, decision, matched)
        return decision

    def _decide(
        self,
        registry: PolicyRegistry,
        subject: Subject,
        resource_type: str,
        operation: Operation,
        row: Mapping[str, Any] | None,
    ) -> tuple[Decision, PolicyRule | None]:
        rules = registry.rules_for(resource_type, operation)
        if not rules:
            if registry.is_default_deny(resource_type):
                return Decision.deny(REASON_NO_RULE), None
            return Decision.allow(reason=REASON_UNPROTECTED), None

        view = as_row_view(row)
        matched: PolicyRule | None = None
        errors: list[RuleEvaluationError] = []
        for rule in rules:
            if matched is not None and not self.strict_rule_audit:
                break
            ok, error = _run_rule(rule, subject, view)
            if error is not None:
                logger.error(f"[policy] {error}", exc_info=error.cause)
                errors.append(error)
            elif ok and matched is None:
                matched = rule

        broken = tuple(error.rule_name for error in errors)
        first_error = errors[0] if errors else None
        if matched is not None:
            return (
                Decision.allow(matched.name, broken_rules=broken, error=first_error),
                matched,
            )
        if errors:
            return (
                Decision.deny(_rule_error_reason(broken), broken_rules=broken, error=first_error),
                None,
            )
        return Decision.deny(REASON_NO_MATCH), None

    def _log_decision(
        self,
        subject: Subject,
        resource_type: str,
        operation: Operation,
        decision: Decision,
        matched: PolicyRule | None,
    ) -> None:
        who = _audit_subject_id(subject) or "anonymous"
        target = f"{resource_type}.{operation.value}"
        if decision.denied:
            logger.warning(f"[policy] DENY {who} {target}: {decision.reason}")
        elif matched is not None and matched.grants_admin:
            logger.info(f"[policy] ALLOW (admin) {who} {target} via '{matched.name}'")
        else:
            logger.debug(f"[policy] ALLOW {who} {target} via '{decision.matched_rule}'")

    # ─────────────────────────────────────────────────────────────────────
    # Collection reads
    # ─────────────────────────────────────────────────────────────────────

    def filter_predicate(self, subject: Subject, resource_type: str) -> RowFilter:
        """Compose every READ rule for ``resource_type`` into a per-row filter."""
        registry = self._store.snapshot()
        return RowFilter(
            subject,
            resource_type,
            registry.rules_for(resource_type, Operation.READ),
            default_allow=not registry.is_default_deny(resource_type),
            registry_version=registry.version,
        )

    def scoped_read(
        self, subject: Subject, resource_type: str, rows: Iterable[RowT]
    ) -> list[RowT]:
        """Return the rows the subject may read, recording one collection-level audit entry."""
        registry = self._store.snapshot()
        row_filter = RowFilter(
            subject,
            resource_type,
            registry.rules_for(resource_type, Operation.READ),
            default_allow=not registry.is_default_deny(resource_type),
            registry_version=registry.version,
        )

        candidates = list(rows)
        visible: list[RowT] = []
        decision = Decision.deny(REASON_ENGINE_ERROR)
        engine_error: str | None = None
        try:
            visible = [row for row in candidates if row_filter(row)]
            decision = self._collection_decision(registry, row_filter, len(candidates), visible)
        except Exception as e:
            visible = []
            engine_error = f"{type(e).__name__}: {e}"
            logger.exception(f"[policy] Scoped read of {resource_type} failed: {e}")
        finally:
            self._record(
                subject,
                registry,
                resource_type,
                Operation.READ,
                decision,
                admin_elevated=decision.allowed
                and any(rule.grants_admin for rule in row_filter.matched_rules),
                scope="collection",
                row_count=len(visible),
                error=engine_error,
            )

        if row_filter.broken_rules:
            logger.warning(
                f"[policy] Scoped read of {resource_type} hit broken rules: "
                f"{', '.join(row_filter.broken_rules)}"
            )
        return visible

    def _collection_decision(
        self,
        registry: PolicyRegistry,
        row_filter: RowFilter,
        total: int,
        visible: list[Any],
    ) -> Decision:
        broken = row_filter.broken_rules
        error = row_filter.errors[0] if broken else None
        if not row_filter.rules:
            if registry.is_default_deny(row_filter.resource_type):
                return Decision.deny(REASON_NO_RULE)
            return Decision.allow(reason=REASON_UNPROTECTED)
        if visible or total == 0:
            matched = row_filter.matched_rules
            return Decision.allow(
                matched[0].name if matched else None,
                reason=f"{len(visible)} of {total} rows visible",
                broken_rules=broken,
                error=error,
            )
        if broken:
            return Decision.deny(_rule_error_reason(broken), broken_rules=broken, error=error)
        return Decision.deny(REASON_NO_MATCH)

    # ─────────────────────────────────────────────────────────────────────
    # Audit
    # ─────────────────────────────────────────────────────────────────────

    def _record(
        self,
        subject: Subject,
        registry: PolicyRegistry,
        resource_type: str,
        operation: Operation,
        decision: Decision,
        *,
        admin_elevated: bool,
        scope: str = "row",
        row_count: int | None = None,
        error: str | None = None,
    ) -> None:
        if error is None and decision.error is not None:
            error = str(decision.error)
        self._sink.record(
            AuditEntry(
                subject_id=_audit_subject_id(subject),
                resource_type=resource_type,
                operation=operation,
                outcome=decision.outcome,
                reason=decision.reason,
                matched_rule=decision.matched_rule,
                error=error,
                broken_rules=decision.broken_rules,
                admin_elevated=admin_elevated,
                scope=scope,
                row_count=row_count,
                registry_version=registry.version,
            )
        )
