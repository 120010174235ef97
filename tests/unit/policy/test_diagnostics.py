"""Unit tests for the offline policy diagnostics."""

import pytest

from rowguard.services.policy import diagnostics
from rowguard.services.policy.diagnostics import (
    DuplicateRuleName,
    ExcessiveRuleCount,
    MissingOperationCoverage,
    PublicMutationRule,
    SuspiciousIdentitySource,
    scan_predicate_source,
)
from rowguard.services.policy.loader import build_registry
from rowguard.services.policy.master import MASTER_POLICY
from rowguard.services.policy.registry import PolicyRegistry
from rowguard.services.policy.types import Operation, RuleKind

from tests.helpers.mock_factories import make_rule

RESTRICTED = diagnostics.DEFAULT_RESTRICTED_SOURCES


def _spec(resource_type: str, operation: str, name: str, kind: str = "adminOnly", **params) -> dict:
    return {
        "resourceType": resource_type,
        "operation": operation,
        "name": name,
        "ruleKind": kind,
        "params": params,
    }


def _full(resource_type: str) -> list[dict]:
    return [_spec(resource_type, op.value, f"{resource_type}_{op.value}") for op in Operation]


def _codes(findings) -> list[str]:
    return [finding.code for finding in findings]


# Predicates used by the source scan tests (module level so inspect can read them)


def reads_identity_store(subject, row):
    query = "SELECT email FROM auth.users WHERE id = $1"
    return bool(query) and row.get("email") == subject.email


def calls_admin_function(subject, row):
    return is_admin_user(subject.id)  # noqa: F821


def reads_claims_only(subject, row):
    return row.get("owner_user_id") == subject.id


class TestCoverage:
    def test_missing_update_and_delete(self):
        registry = build_registry(
            [
                _spec("contact_leads", "create", "contact_insert_public", "publicRead"),
                _spec("contact_leads", "read", "contact_select_admin"),
            ]
        )

        findings = diagnostics.validate(registry)

        assert findings == [
            MissingOperationCoverage("contact_leads", Operation.UPDATE),
            MissingOperationCoverage("contact_leads", Operation.DELETE),
        ]

    def test_full_coverage_has_no_findings(self):
        assert diagnostics.validate(build_registry(_full("contact_leads"))) == []

    def test_declared_resource_without_rules(self):
        registry = build_registry({"resources": ["empty_table"], "rules": []})
        findings = diagnostics.validate(registry)
        assert len(findings) == 4
        assert {finding.operation for finding in findings} == set(Operation)

    def test_permissive_resource_not_flagged(self):
        registry = build_registry({"resources": ["stats"], "permissive": ["stats"], "rules": []})
        assert diagnostics.validate(registry) == []

    def test_findings_ordered_by_resource_then_operation(self):
        registry = build_registry({"resources": ["zeta", "alpha"], "rules": []})
        findings = diagnostics.validate(registry)
        assert [f.resource_type for f in findings] == ["alpha"] * 4 + ["zeta"] * 4
        assert [f.operation for f in findings[:4]] == list(Operation)


class TestDuplicatesAndCounts:
    def test_duplicate_rule_name(self):
        rule = make_rule("dup")
        registry = PolicyRegistry({rule.key: (rule, make_rule("dup"))})

        findings = diagnostics.validate(registry)

        assert DuplicateRuleName("providers", Operation.READ, "dup") in findings

    def test_excessive_rule_count(self):
        specs = _full("providers") + [
            _spec("providers", "read", f"read_fix_{i}", "publicRead") for i in range(3)
        ]
        findings = diagnostics.validate(build_registry(specs))

        assert findings == [ExcessiveRuleCount("providers", Operation.READ, 4, 3)]
        assert findings[0].severity == diagnostics.SEVERITY_WARNING

    def test_threshold_is_configurable(self):
        specs = _full("providers") + [_spec("providers", "read", "extra", "publicRead")]
        registry = build_registry(specs)

        assert diagnostics.validate(registry, max_rules_per_operation=1) != []
        assert diagnostics.validate(registry, max_rules_per_operation=2) == []


class TestPublicMutation:
    def test_unfiltered_public_delete(self):
        specs = [s for s in _full("providers") if s["operation"] != "delete"]
        specs.append(_spec("providers", "delete", "anyone_deletes", "publicRead"))

        findings = diagnostics.validate(build_registry(specs))

        assert findings == [PublicMutationRule("providers", Operation.DELETE, "anyone_deletes")]
        assert diagnostics.has_errors(findings)

    def test_filtered_public_update_allowed(self):
        specs = [s for s in _full("providers") if s["operation"] != "update"]
        specs.append(_spec("providers", "update", "drafts", "publicRead", where={"draft": True}))
        assert diagnostics.validate(build_registry(specs)) == []


class TestIdentitySources:
    def test_tagged_restricted_source(self):
        rule = make_rule(
            "select_own_email",
            kind=RuleKind.EMAIL_MATCH,
            identity_sources={"auth.users.email"},
        )
        registry = PolicyRegistry({rule.key: (rule,)})

        findings = [
            f for f in diagnostics.validate(registry) if isinstance(f, SuspiciousIdentitySource)
        ]

        assert findings == [
            SuspiciousIdentitySource("providers", Operation.READ, "select_own_email", "auth.users")
        ]
        assert findings[0].severity == diagnostics.SEVERITY_ERROR

    def test_custom_predicate_source_scanned(self):
        rule = make_rule("email_lookup", predicate=reads_identity_store)
        registry = PolicyRegistry({rule.key: (rule,)})

        sources = [
            f.source for f in diagnostics.validate(registry) if isinstance(f, SuspiciousIdentitySource)
        ]
        assert sources == ["auth.users"]

    def test_builtin_rules_not_source_scanned(self):
        rule = make_rule("owner", predicate=reads_identity_store, kind=RuleKind.OWNER_MATCH)
        registry = PolicyRegistry({rule.key: (rule,)})

        assert not any(
            isinstance(f, SuspiciousIdentitySource) for f in diagnostics.validate(registry)
        )

    def test_custom_restricted_list(self):
        rule = make_rule("owner", identity_sources={"subject.id"})
        registry = PolicyRegistry({rule.key: (rule,)})

        findings = diagnostics.validate(registry, restricted_sources=["subject.id"])

        assert any(isinstance(f, SuspiciousIdentitySource) for f in findings)


class TestScanPredicateSource:
    def test_string_constant(self):
        assert scan_predicate_source(reads_identity_store, RESTRICTED) == {"auth.users"}

    def test_function_call(self):
        assert scan_predicate_source(calls_admin_function, RESTRICTED) == {"is_admin_user"}

    def test_clean_predicate(self):
        assert scan_predicate_source(reads_claims_only, RESTRICTED) == set()

    def test_source_unavailable(self):
        assert scan_predicate_source(len, RESTRICTED) == set()

    def test_inline_lambda(self):
        rule = make_rule("inline", predicate=lambda s, r: r.get("x") == "auth.users")
        assert scan_predicate_source(rule.predicate, RESTRICTED) == {"auth.users"}


class TestMasterPolicy:
    def test_master_policy_has_no_findings(self):
        registry = build_registry(MASTER_POLICY)
        assert diagnostics.validate(registry) == []

    def test_every_master_table_is_complete(self):
        registry = build_registry(MASTER_POLICY)
        statuses = {row["status"] for row in diagnostics.coverage_table(registry)}
        assert statuses == {"COMPLETE"}


class TestReporting:
    def test_coverage_table_statuses(self):
        registry = build_registry(
            {
                "resources": ["empty", "stats"],
                "permissive": ["stats"],
                "rules": [
                    *_full("complete"),
                    _spec("no_delete", "read", "r"),
                    _spec("partial", "delete", "d"),
                ],
            }
        )
        statuses = {row["resource_type"]: row["status"] for row in diagnostics.coverage_table(registry)}

        assert statuses == {
            "complete": "COMPLETE",
            "empty": "NO RULES",
            "no_delete": "MISSING DELETE",
            "partial": "INCOMPLETE",
            "stats": "PERMISSIVE",
        }

    def test_coverage_counts(self):
        [row] = diagnostics.coverage_table(build_registry(_full("complete")))
        assert row == {
            "resource_type": "complete",
            "create": 1,
            "read": 1,
            "update": 1,
            "delete": 1,
            "total": 4,
            "status": "COMPLETE",
        }

    def test_format_report_empty(self):
        assert diagnostics.format_report([]) == "No findings."

    def test_format_report(self):
        findings = [
            MissingOperationCoverage("contact_leads", Operation.DELETE),
            PublicMutationRule("providers", Operation.UPDATE, "anyone"),
        ]
        report = diagnostics.format_report(findings).splitlines()

        assert report[0].startswith("[WARNING] missing_operation_coverage contact_leads.delete:")
        assert report[1].startswith("[ERROR] public_mutation_rule providers.update:")
        assert report[-1] == "2 finding(s), 1 error(s)"

    def test_finding_to_dict(self):
        finding = ExcessiveRuleCount("providers", Operation.READ, 5, 3)
        assert finding.to_dict() == {
            "code": "excessive_rule_count",
            "severity": "warning",
            "resource_type": "providers",
            "operation": "read",
            "message": finding.message,
            "count": 5,
            "threshold": 3,
        }

    def test_describe_registry_single_resource(self):
        registry = build_registry(_full("complete") + _full("other"))
        [described] = diagnostics.describe_registry(registry, "complete")
        assert described["resource_type"] == "complete"
        assert described["rule_count"] == 4

    @pytest.mark.parametrize("resource_type", [None, ""])
    def test_describe_registry_all(self, resource_type):
        registry = build_registry(_full("b") + _full("a"))
        described = diagnostics.describe_registry(registry, resource_type)
        assert [d["resource_type"] for d in described] == ["a", "b"]
