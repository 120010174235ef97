"""API dependencies - re-exports from submodules."""

from .auth import (
    AdminSubject,
    CurrentSubject,
    decode_token,
    get_current_subject,
    get_identity_resolver,
    get_jwks,
    get_signing_key,
    require_admin,
    security,
)
from .policy import (
    AuditSinkDep,
    EvaluatorDep,
    PolicyStoreDep,
    ResourceServiceDep,
    get_audit_sink,
    get_evaluator,
    get_policy_store,
    get_resource_service,
)

__all__ = [
    # Auth
    "security",
    "get_jwks",
    "get_signing_key",
    "decode_token",
    "get_identity_resolver",
    "get_current_subject",
    "require_admin",
    "CurrentSubject",
    "AdminSubject",
    # Policy engine
    "get_policy_store",
    "get_audit_sink",
    "get_evaluator",
    "get_resource_service",
    "PolicyStoreDep",
    "AuditSinkDep",
    "EvaluatorDep",
    "ResourceServiceDep",
]
