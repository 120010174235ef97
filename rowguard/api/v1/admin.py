"""Admin API endpoints for the policy registry, audit log and admin allow-list."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from rowguard.api.deps import AdminSubject, AuditSinkDep, PolicyStoreDep
from rowguard.config import settings
from rowguard.core.database import get_db
from rowguard.core.exceptions import NotFoundError, ValidationError
from rowguard.domain import admin_email_ops, audit_log_ops
from rowguard.models.admin_email import AdminEmailCreate
from rowguard.services.policy import diagnostics
from rowguard.services.policy.exceptions import RegistryValidationError
from rowguard.services.policy.loader import configured_policy_source

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class ReloadRequest(BaseModel):
    """Schema for a policy reload.

    Without a document the configured policy file (or the bundled master
    policy) is reloaded.
    """

    document: dict[str, Any] | list[dict[str, Any]] | None = None
    merge: bool = False


class ReloadResponse(BaseModel):
    version: int
    rule_count: int
    resource_count: int
    findings: list[dict[str, Any]]


# ─────────────────────────────────────────────────────────────────────────────
# Policies
# ─────────────────────────────────────────────────────────────────────────────


@router.get("/policies")
async def get_policy_overview(
    _admin: AdminSubject,
    store: PolicyStoreDep,
) -> dict[str, Any]:
    """Registry version plus per-resource rule coverage."""
    registry = store.snapshot()
    return {
        "version": registry.version,
        "loaded_at": registry.loaded_at.isoformat(),
        "rule_count": registry.rule_count(),
        "coverage": diagnostics.coverage_table(registry),
    }


@router.get("/policies/diagnostics")
async def get_policy_diagnostics(
    _admin: AdminSubject,
    store: PolicyStoreDep,
) -> dict[str, Any]:
    """Run the diagnostic checks against the live registry."""
    findings = diagnostics.validate(
        store.snapshot(),
        max_rules_per_operation=store.max_rules_per_operation,
        restricted_sources=store.restricted_sources,
    )
    return {
        "has_errors": diagnostics.has_errors(findings),
        "findings": [finding.to_dict() for finding in findings],
    }


@router.post("/policies/reload")
async def reload_policies(
    admin: AdminSubject,
    store: PolicyStoreDep,
    data: ReloadRequest | None = None,
) -> ReloadResponse:
    """
    Atomically reload the registry.

    A rejected document leaves the live registry untouched and returns 400
    with the problems found.
    """
    data = data or ReloadRequest()
    try:
        source = data.document if data.document is not None else configured_policy_source(
            settings.policy_file
        )
        registry = store.load_all(source, merge=data.merge)
    except RegistryValidationError as e:
        raise ValidationError(str(e)) from e

    logger.info(f"Policy registry reloaded by admin {admin.id} (v{registry.version})")
    return ReloadResponse(
        version=registry.version,
        rule_count=registry.rule_count(),
        resource_count=len(registry.resource_types),
        findings=[finding.to_dict() for finding in store.last_findings],
    )


@router.get("/policies/{resource_type}")
async def describe_policy(
    resource_type: str,
    _admin: AdminSubject,
    store: PolicyStoreDep,
) -> dict[str, Any]:
    """Dump every rule registered for one resource type."""
    registry = store.snapshot()
    if resource_type not in registry.resource_types:
        raise NotFoundError("Resource type")
    return registry.describe(resource_type)


# ─────────────────────────────────────────────────────────────────────────────
# Audit
# ─────────────────────────────────────────────────────────────────────────────


@router.get("/audit")
async def get_pending_audit(
    _admin: AdminSubject,
    sink: AuditSinkDep,
    broken_only: bool = False,
) -> dict[str, Any]:
    """Entries still buffered in the audit sink, oldest first."""
    entries = sink.pending()
    if broken_only:
        entries = [entry for entry in entries if entry.is_broken_rule]
    return {
        "stats": sink.stats(),
        "entries": [entry.to_dict() for entry in entries],
    }


@router.post("/audit/flush")
async def flush_audit(
    _admin: AdminSubject,
    sink: AuditSinkDep,
) -> dict[str, int]:
    """Flush the audit buffer to its writers now."""
    flushed = await sink.flush()
    return {"flushed": flushed, "pending": len(sink)}


@router.get("/audit/log")
async def get_audit_log(
    _admin: AdminSubject,
    resource_type: str | None = None,
    outcome: str | None = None,
    broken_only: bool = False,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """Persisted decisions (requires AUDIT_PERSIST_ENABLED)."""
    if broken_only:
        rows = await audit_log_ops.list_broken_rules(db, limit=limit)
    else:
        rows = await audit_log_ops.list_recent(
            db, resource_type=resource_type, outcome=outcome, skip=skip, limit=limit
        )
    return [
        {
            "id": str(row.id),
            "created_at": row.created_at.isoformat(),
            "subject_id": row.subject_id,
            "resource_type": row.resource_type,
            "operation": row.operation,
            "outcome": row.outcome,
            "reason": row.reason,
            "matched_rule": row.matched_rule,
            "error": row.error,
            "broken_rules": row.broken_rules or [],
            "admin_elevated": row.admin_elevated,
            "scope": row.scope,
            "row_count": row.row_count,
            "registry_version": row.registry_version,
        }
        for row in rows
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Admin allow-list
# ─────────────────────────────────────────────────────────────────────────────


@router.get("/admin-emails")
async def list_admin_emails(
    _admin: AdminSubject,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Admin emails from the database plus those configured in settings."""
    rows = await admin_email_ops.list_all(db)
    return {
        "database": [{"email": row.email, "note": row.note} for row in rows],
        "settings": settings.admin_emails,
        "source": settings.admin_allowlist_source,
    }


@router.post("/admin-emails", status_code=status.HTTP_201_CREATED)
async def add_admin_email(
    data: AdminEmailCreate,
    admin: AdminSubject,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    row = await admin_email_ops.add(db, data.email, note=data.note)
    logger.info(f"Admin email {row.email} added by {admin.id}")
    return {"email": row.email, "note": row.note}


@router.delete("/admin-emails/{email}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_admin_email(
    email: str,
    admin: AdminSubject,
    db: AsyncSession = Depends(get_db),
) -> None:
    if not await admin_email_ops.remove(db, email):
        raise NotFoundError("Admin email")
    logger.info(f"Admin email {email.strip().lower()} removed by {admin.id}")
