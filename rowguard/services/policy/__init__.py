# Policy engine package

from rowguard.config import settings
from rowguard.services.policy.audit import (
    AuditSink,
    AuditWriter,
    DatabaseAuditWriter,
    LoggingAuditWriter,
)
from rowguard.services.policy.evaluator import PolicyEvaluator, RowFilter
from rowguard.services.policy.exceptions import (
    IdentityError,
    PolicyError,
    RegistryValidationError,
    RuleEvaluationError,
)
from rowguard.services.policy.predicates import policy_predicate
from rowguard.services.policy.registry import PolicyRegistry
from rowguard.services.policy.store import PolicyStore
from rowguard.services.policy.types import (
    AuditEntry,
    Decision,
    Operation,
    Outcome,
    PolicyRule,
    RuleKind,
    Subject,
)

# Process-wide singletons; the registry itself is swapped atomically inside the store
policy_store = PolicyStore(
    strict_load=settings.strict_policy_load,
    max_rules_per_operation=settings.max_rules_per_operation,
    restricted_sources=settings.restricted_identity_sources,
)
audit_sink = AuditSink(capacity=settings.audit_buffer_size, writers=[LoggingAuditWriter()])
policy_evaluator = PolicyEvaluator(
    policy_store, audit_sink, strict_rule_audit=settings.strict_rule_audit
)

__all__ = [
    # Engine
    "PolicyEvaluator",
    "PolicyRegistry",
    "PolicyStore",
    "RowFilter",
    "policy_predicate",
    # Audit
    "AuditSink",
    "AuditWriter",
    "DatabaseAuditWriter",
    "LoggingAuditWriter",
    # Types
    "AuditEntry",
    "Decision",
    "Operation",
    "Outcome",
    "PolicyRule",
    "RuleKind",
    "Subject",
    # Errors
    "IdentityError",
    "PolicyError",
    "RegistryValidationError",
    "RuleEvaluationError",
    # Singletons
    "audit_sink",
    "policy_evaluator",
    "policy_store",
]
