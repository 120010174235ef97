"""
Declarative policy documents and staging.

A policy document is plain data: a list of rule specs, each naming a resource
type, an operation, a rule name, a built-in ``ruleKind`` and its params.
Staging turns a document into a PolicyRegistry without touching the live one;
any problem anywhere in the document rejects the whole document.

Document format (JSON):

    {
      "resources": ["contact_leads"],
      "permissive": [],
      "rules": [
        {"resourceType": "contact_leads", "operation": "create",
         "name": "contact_insert_public", "ruleKind": "publicRead"},
        {"resourceType": "contact_leads", "operation": "read",
         "name": "contact_select_admin", "ruleKind": "adminOnly"}
      ]
    }

A bare list of rule specs is accepted as well.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from rowguard.services.policy.exceptions import RegistryValidationError
from rowguard.services.policy.predicates import build_predicate
from rowguard.services.policy.registry import PolicyRegistry, check_structure
from rowguard.services.policy.types import Operation, PolicyRule, RuleKind

logger = logging.getLogger(__name__)


class RuleSpec(BaseModel):
    """One declarative rule. Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    resource_type: str = Field(alias="resourceType", min_length=1)
    operation: Operation
    name: str = Field(min_length=1)
    rule_kind: RuleKind = Field(alias="ruleKind")
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("operation", mode="before")
    @classmethod
    def _parse_operation(cls, value: Any) -> Operation:
        return Operation.parse(value)

    @field_validator("resource_type", "name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class PolicyDocument(BaseModel):
    """A full rule set plus resource-level posture."""

    model_config = ConfigDict(extra="forbid")

    # Resource types that exist even if they have no rules yet (so missing coverage is reported)
    resources: list[str] = Field(default_factory=list)
    # Resource types that are NOT default-deny (no rules = allow)
    permissive: list[str] = Field(default_factory=list)
    rules: list[RuleSpec] = Field(default_factory=list)


PolicySource = PolicyDocument | Mapping[str, Any] | Sequence[RuleSpec | Mapping[str, Any]]


def _format_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        problems.append(f"{location}: {error['msg']}")
    return problems


def parse_document(source: PolicySource) -> PolicyDocument:
    """Validate raw input into a PolicyDocument, raising RegistryValidationError on any problem."""
    if isinstance(source, PolicyDocument):
        return source
    try:
        if isinstance(source, Mapping):
            return PolicyDocument.model_validate(source)
        rules = [
            spec if isinstance(spec, RuleSpec) else RuleSpec.model_validate(spec)
            for spec in source
        ]
        return PolicyDocument(rules=rules)
    except PydanticValidationError as e:
        raise RegistryValidationError(_format_pydantic_errors(e)) from e


def build_rule(spec: RuleSpec) -> PolicyRule:
    """Turn one spec into a PolicyRule. Raises ValueError on bad params or unknown predicates."""
    built = build_predicate(spec.rule_kind, spec.params)
    return PolicyRule(
        resource_type=spec.resource_type,
        operation=spec.operation,
        name=spec.name,
        predicate=built.predicate,
        kind=spec.rule_kind,
        params=dict(spec.params),
        identity_sources=built.identity_sources,
    )


def build_registry(source: PolicySource, *, version: int = 0) -> PolicyRegistry:
    """
    Stage a complete registry from a document.

    Every spec is built before anything is returned; all problems are
    collected and raised together so one reload reports everything wrong
    with a document at once.
    """
    document = parse_document(source)

    rules: list[PolicyRule] = []
    problems: list[str] = []
    for spec in document.rules:
        try:
            rules.append(build_rule(spec))
        except ValueError as e:
            problems.append(f"{spec.resource_type}.{spec.operation.value} '{spec.name}': {e}")

    if problems:
        raise RegistryValidationError(problems)

    registry = PolicyRegistry.from_rules(
        rules,
        resources=document.resources,
        permissive=document.permissive,
        version=version,
    )
    structural = check_structure(registry)
    if structural:
        raise RegistryValidationError(structural)
    return registry


def load_policy_file(path: str | Path) -> PolicyDocument:
    """Read a JSON policy document from disk."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise RegistryValidationError([f"policy file not found: {path}"]) from None
    except json.JSONDecodeError as e:
        raise RegistryValidationError([f"{path}: invalid JSON ({e})"]) from e

    document = parse_document(raw)
    logger.debug(f"Read {len(document.rules)} rule specs from {path}")
    return document


def configured_policy_source(path: str | Path = "") -> PolicySource:
    """The policy file at ``path`` or, when no path is given, the bundled master policy."""
    if path:
        return load_policy_file(path)
    from rowguard.services.policy.master import MASTER_POLICY

    return MASTER_POLICY
