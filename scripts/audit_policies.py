"""Pre-deploy policy audit.

Builds the registry from a policy document without touching any running
service, prints per-table rule coverage and every diagnostic finding.

Usage:
    python -m scripts.audit_policies
    python -m scripts.audit_policies --file policies.json --strict
    python -m scripts.audit_policies --resource provider_job_posts

Exit codes:
    0  no findings of severity "error" (or no findings at all with --strict)
    1  findings that should block the deploy
    2  the document itself was rejected
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from rowguard.config import settings
from rowguard.services.policy import diagnostics
from rowguard.services.policy.exceptions import RegistryValidationError
from rowguard.services.policy.loader import build_registry, configured_policy_source

logging.basicConfig(level=logging.WARNING, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_REJECTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Audit a policy document before deploying it.")
    parser.add_argument(
        "--file",
        default=settings.policy_file,
        help="JSON policy document (default: POLICY_FILE, or the bundled master policy)",
    )
    parser.add_argument("--resource", help="Dump every rule of one resource type")
    parser.add_argument(
        "--max-rules",
        type=int,
        default=settings.max_rules_per_operation,
        help="Flag operations with more rules than this",
    )
    parser.add_argument(
        "--strict", action="store_true", help="Fail on warnings as well as errors"
    )
    parser.add_argument("--json", action="store_true", help="Print a JSON report")
    return parser


def format_coverage(rows: list[dict]) -> str:
    header = f"{'resource':<28} {'C':>3} {'R':>3} {'U':>3} {'D':>3} {'total':>6}  status"
    lines = [header, "-" * len(header)]
    for row in rows:
        lines.append(
            f"{row['resource_type']:<28} {row['create']:>3} {row['read']:>3} "
            f"{row['update']:>3} {row['delete']:>3} {row['total']:>6}  {row['status']}"
        )
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        registry = build_registry(configured_policy_source(args.file))
    except RegistryValidationError as e:
        print(f"Policy document rejected ({len(e.problems)} problem(s)):", file=sys.stderr)
        for problem in e.problems:
            print(f"  - {problem}", file=sys.stderr)
        return EXIT_REJECTED

    findings = diagnostics.validate(
        registry,
        max_rules_per_operation=args.max_rules,
        restricted_sources=settings.restricted_identity_sources,
    )
    failed = bool(findings) if args.strict else diagnostics.has_errors(findings)

    if args.json:
        report = {
            "rule_count": registry.rule_count(),
            "coverage": diagnostics.coverage_table(registry),
            "findings": [finding.to_dict() for finding in findings],
            "passed": not failed,
        }
        if args.resource:
            report["rules"] = diagnostics.describe_registry(registry, args.resource)
        print(json.dumps(report, indent=2, default=str))
        return EXIT_FINDINGS if failed else EXIT_OK

    print(format_coverage(diagnostics.coverage_table(registry)))
    print()
    if args.resource:
        print(json.dumps(diagnostics.describe_registry(registry, args.resource), indent=2))
        print()
    print(diagnostics.format_report(findings))
    print("FAILED" if failed else "PASSED")
    return EXIT_FINDINGS if failed else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
