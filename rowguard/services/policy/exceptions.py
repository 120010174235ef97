"""Exceptions for the policy engine."""

from typing import Any


class PolicyError(Exception):
    """Base error for identity resolution, rule evaluation and registry loading."""


class IdentityError(PolicyError):
    """The authentication context could not be resolved into a Subject.

    Callers recover by treating the request as anonymous.
    """


class RuleEvaluationError(PolicyError):
    """A rule predicate raised while being evaluated.

    Never propagates out of the evaluator: it is attached to the resulting
    Decision and to the audit entry so the broken rule is named explicitly.
    """

    def __init__(
        self,
        rule_name: str,
        resource_type: str,
        operation: Any,
        cause: BaseException,
    ):
        self.rule_name = rule_name
        self.resource_type = resource_type
        self.operation = operation
        self.cause = cause
        op_value = getattr(operation, "value", operation)
        super().__init__(
            f"Rule '{rule_name}' on {resource_type}.{op_value} raised "
            f"{type(cause).__name__}: {cause}"
        )


class RegistryValidationError(PolicyError):
    """A staged registry failed structural checks; the live registry is unchanged."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        summary = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            summary += f" (+{len(self.problems) - 5} more)"
        super().__init__(f"Policy registry rejected: {summary}")
