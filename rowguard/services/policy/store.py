"""
Holder of the live policy registry.

Readers call ``snapshot()`` once per evaluation and keep that reference for
the whole call; writers build a complete new registry off to the side and
swap the reference in one assignment. The writer lock only serialises
writers against each other, so the evaluation path never waits on it.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any

from rowguard.services.policy import diagnostics
from rowguard.services.policy.exceptions import RegistryValidationError
from rowguard.services.policy.loader import PolicySource, build_registry
from rowguard.services.policy.registry import PolicyRegistry, check_structure
from rowguard.services.policy.types import Operation, PolicyRule, Predicate, RuleKind

logger = logging.getLogger(__name__)


class PolicyStore:
    """Copy-on-write store of the current PolicyRegistry."""

    def __init__(
        self,
        registry: PolicyRegistry | None = None,
        *,
        strict_load: bool = False,
        max_rules_per_operation: int = diagnostics.DEFAULT_MAX_RULES_PER_OPERATION,
        restricted_sources: Iterable[str] = diagnostics.DEFAULT_RESTRICTED_SOURCES,
    ):
        self._registry = registry or PolicyRegistry()
        self._write_lock = threading.Lock()
        self.strict_load = strict_load
        self.max_rules_per_operation = max_rules_per_operation
        self.restricted_sources = tuple(restricted_sources)
        self.last_findings: list[diagnostics.Finding] = []

    def snapshot(self) -> PolicyRegistry:
        """The current registry. Never mutated after it is returned."""
        return self._registry

    @property
    def version(self) -> int:
        return self._registry.version

    def register(
        self,
        resource_type: str,
        operation: Operation | str,
        name: str,
        predicate: Predicate,
        *,
        kind: RuleKind = RuleKind.CUSTOM,
        params: Mapping[str, Any] | None = None,
        identity_sources: Iterable[str] = (),
    ) -> PolicyRule:
        """Add a rule, or replace the rule with the same name for that (resource, operation)."""
        try:
            operation = Operation.parse(operation)
        except ValueError as e:
            raise RegistryValidationError([str(e)]) from e

        rule = PolicyRule(
            resource_type=resource_type,
            operation=operation,
            name=name,
            predicate=predicate,
            kind=kind,
            params=dict(params or {}),
            identity_sources=frozenset(identity_sources),
        )

        with self._write_lock:
            staged = self._registry.with_rule(rule)
            problems = check_structure(staged)
            if problems:
                logger.error(f"[policy] Rejected rule '{name}' on {resource_type}: {problems}")
                raise RegistryValidationError(problems)
            self._registry = staged

        logger.debug(
            f"[policy] Registered {resource_type}.{operation.value} '{name}' "
            f"(v{staged.version})"
        )
        return rule

    def load_all(self, source: PolicySource, *, merge: bool = False) -> PolicyRegistry:
        """
        Atomically replace the rule set from a declarative document.

        The new registry is built and validated completely before it becomes
        visible. With ``merge=True`` only the resource types present in the
        document are replaced; everything else is carried over. Any error
        leaves the previous registry live.
        """
        with self._write_lock:
            current = self._registry
            try:
                staged = build_registry(source, version=current.version + 1)
            except RegistryValidationError as e:
                logger.error(f"[policy] Reload rejected: {e}")
                raise

            if merge:
                staged = current.merged_with(staged)

            findings = diagnostics.validate(
                staged,
                max_rules_per_operation=self.max_rules_per_operation,
                restricted_sources=self.restricted_sources,
            )
            diagnostics.log_findings(findings)
            if findings and self.strict_load:
                logger.error(
                    f"[policy] Reload rejected: {len(findings)} diagnostic finding(s) "
                    f"with strict loading enabled"
                )
                raise RegistryValidationError([finding.message for finding in findings])

            self.last_findings = findings
            self._registry = staged

        logger.info(
            f"[policy] Loaded registry v{staged.version}: "
            f"{staged.rule_count()} rules across {len(staged.resource_types)} resource types"
            f"{' (merged)' if merge else ''}"
        )
        return staged
