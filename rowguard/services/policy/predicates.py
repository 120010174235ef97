"""
Built-in predicate constructors for declarative rule specs.

Each ``ruleKind`` in a policy document maps to a constructor here, so the
common rules (owner match, admin only, public read, email match) are data
rather than code. Every constructor returns the predicate together with the
identity sources it reads, which the diagnostics use to spot rules that
reach into restricted identity stores.

Predicates only ever read the resolved Subject and the row view. They never
perform I/O: anything expensive (such as "is this user an admin") must
already be resolved on the Subject.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from rowguard.services.policy.types import SERVICE_ROLE, Predicate, RowView, RuleKind, Subject


# Identity source tags for built-in predicates
SOURCE_SUBJECT_ID = "subject.id"
SOURCE_SUBJECT_EMAIL = "subject.email"
SOURCE_SUBJECT_ADMIN = "subject.is_admin"
SOURCE_SUBJECT_ROLES = "subject.roles"
SOURCE_SUBJECT_ATTRIBUTES = "subject.attributes"


@dataclass(frozen=True)
class BuiltPredicate:
    """A predicate plus the identity sources it reads."""

    predicate: Predicate
    identity_sources: frozenset[str]


# name -> custom predicate registered in code
_custom_predicates: dict[str, BuiltPredicate] = {}


def policy_predicate(
    name: str, *, identity_sources: Iterable[str] = ()
) -> Callable[[Predicate], Predicate]:
    """
    Register a custom predicate that policy documents can reference.

    Usage:
        @policy_predicate("provider_owner", identity_sources={"subject.attributes"})
        def provider_owner(subject, row):
            return row.get("provider_id") in subject.attributes.get("provider_ids", ())

    Then in a document: {"ruleKind": "custom", "params": {"predicate": "provider_owner"}}

    Re-registering a name replaces the previous predicate.
    """

    def decorator(func: Predicate) -> Predicate:
        _custom_predicates[name] = BuiltPredicate(func, frozenset(identity_sources))
        return func

    return decorator


def get_custom_predicate(name: str) -> BuiltPredicate:
    try:
        return _custom_predicates[name]
    except KeyError:
        raise ValueError(f"Unknown custom predicate '{name}'") from None


def unregister_custom_predicate(name: str) -> None:
    _custom_predicates.pop(name, None)


def _field_param(params: Mapping[str, Any], default: str) -> str:
    field_name = params.get("field", default)
    if not isinstance(field_name, str) or not field_name:
        raise ValueError(f"'field' must be a non-empty string, got {field_name!r}")
    return field_name


def owner_match(params: Mapping[str, Any]) -> BuiltPredicate:
    """row[field] == subject.id (the ``owner_user_id = auth.uid()`` pattern)."""
    field_name = _field_param(params, "owner_user_id")

    def predicate(subject: Subject, row: RowView) -> bool:
        if subject.id is None:
            return False
        owner = row.get(field_name)
        return owner is not None and str(owner) == subject.id

    return BuiltPredicate(predicate, frozenset({SOURCE_SUBJECT_ID}))


def admin_only(params: Mapping[str, Any]) -> BuiltPredicate:
    """Subject was resolved as an admin (the ``is_admin_user(auth.uid())`` pattern)."""

    def predicate(subject: Subject, row: RowView) -> bool:
        return subject.is_admin

    return BuiltPredicate(predicate, frozenset({SOURCE_SUBJECT_ADMIN}))


def public_read(params: Mapping[str, Any]) -> BuiltPredicate:
    """Anyone, optionally restricted to rows whose fields match ``where``.

    A list value in ``where`` means "any of", so
    ``{"where": {"status": ["approved", None]}}`` mirrors
    ``status = 'approved' OR status IS NULL``.
    """
    where = params.get("where") or {}
    if not isinstance(where, Mapping):
        raise ValueError(f"'where' must be a mapping, got {type(where).__name__}")
    conditions = {
        key: tuple(value) if isinstance(value, list | tuple | set) else (value,)
        for key, value in where.items()
    }

    def predicate(subject: Subject, row: RowView) -> bool:
        return all(row.get(key) in allowed for key, allowed in conditions.items())

    return BuiltPredicate(predicate, frozenset())


def email_match(params: Mapping[str, Any]) -> BuiltPredicate:
    """Case-insensitive row[field] == subject.email.

    Replaces ``email = (SELECT email FROM auth.users WHERE id = auth.uid())``:
    the email comes from the resolved claims, never from the identity store.
    """
    field_name = _field_param(params, "email")

    def predicate(subject: Subject, row: RowView) -> bool:
        if not subject.email:
            return False
        value = row.get(field_name)
        return isinstance(value, str) and value.strip().lower() == subject.email.lower()

    return BuiltPredicate(predicate, frozenset({SOURCE_SUBJECT_EMAIL}))


def authenticated(params: Mapping[str, Any]) -> BuiltPredicate:
    """Any signed-in user (the ``auth.role() = 'authenticated'`` pattern)."""

    def predicate(subject: Subject, row: RowView) -> bool:
        return subject.is_authenticated

    return BuiltPredicate(predicate, frozenset({SOURCE_SUBJECT_ID}))


def service_role(params: Mapping[str, Any]) -> BuiltPredicate:
    """The backend's own service-role identity."""

    def predicate(subject: Subject, row: RowView) -> bool:
        return SERVICE_ROLE in subject.roles

    return BuiltPredicate(predicate, frozenset({SOURCE_SUBJECT_ROLES}))


def custom(params: Mapping[str, Any]) -> BuiltPredicate:
    name = params.get("predicate")
    if not isinstance(name, str) or not name:
        raise ValueError("custom rules require a 'predicate' name in params")
    return get_custom_predicate(name)


# ─────────────────────────────────────────────────────────────────────────────
# Bundled custom predicates (available to every policy document)
# ─────────────────────────────────────────────────────────────────────────────


@policy_predicate("provider_owner", identity_sources={SOURCE_SUBJECT_ATTRIBUTES})
def provider_owner(subject: Subject, row: RowView) -> bool:
    """Row belongs to one of the providers the subject owns.

    ``provider_ids`` is resolved into the subject's attributes from the token
    claims, so the rule never queries the providers table.
    """
    provider_id = row.get("provider_id")
    if provider_id is None:
        return False
    owned = subject.attributes.get("provider_ids") or ()
    return str(provider_id) in {str(value) for value in owned}


BUILDERS: dict[RuleKind, Callable[[Mapping[str, Any]], BuiltPredicate]] = {
    RuleKind.OWNER_MATCH: owner_match,
    RuleKind.ADMIN_ONLY: admin_only,
    RuleKind.PUBLIC_READ: public_read,
    RuleKind.EMAIL_MATCH: email_match,
    RuleKind.AUTHENTICATED: authenticated,
    RuleKind.SERVICE_ROLE: service_role,
    RuleKind.CUSTOM: custom,
}


def build_predicate(kind: RuleKind, params: Mapping[str, Any]) -> BuiltPredicate:
    """Build the predicate for a rule kind. Raises ValueError on bad params."""
    return BUILDERS[kind](params)
