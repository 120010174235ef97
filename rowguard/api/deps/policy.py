"""Policy engine dependencies.

Routes receive the engine singletons through these functions so tests can
swap them with ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends

from rowguard.domain.resource_store import GuardedResourceService, InMemoryResourceStore
from rowguard.services.policy import audit_sink, policy_evaluator, policy_store
from rowguard.services.policy.audit import AuditSink
from rowguard.services.policy.evaluator import PolicyEvaluator
from rowguard.services.policy.store import PolicyStore

resource_service = GuardedResourceService(InMemoryResourceStore(), policy_evaluator)


def get_policy_store() -> PolicyStore:
    return policy_store


def get_audit_sink() -> AuditSink:
    return audit_sink


def get_evaluator() -> PolicyEvaluator:
    return policy_evaluator


def get_resource_service() -> GuardedResourceService:
    return resource_service


PolicyStoreDep = Annotated[PolicyStore, Depends(get_policy_store)]
AuditSinkDep = Annotated[AuditSink, Depends(get_audit_sink)]
EvaluatorDep = Annotated[PolicyEvaluator, Depends(get_evaluator)]
ResourceServiceDep = Annotated[GuardedResourceService, Depends(get_resource_service)]
