"""Domain operations for the persisted audit log."""

from collections.abc import Iterable
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rowguard.domain.base_operations import BaseOperations
from rowguard.models.audit_log import PolicyAuditLog

if TYPE_CHECKING:
    from rowguard.services.policy.types import AuditEntry


class AuditLogOperations(BaseOperations[PolicyAuditLog]):
    """Append and query operations for PolicyAuditLog."""

    def __init__(self) -> None:
        super().__init__(PolicyAuditLog)

    async def bulk_create(
        self,
        db: AsyncSession,
        entries: Iterable["AuditEntry"],
    ) -> list[PolicyAuditLog]:
        """Insert one row per audit entry, keeping the entry timestamps."""
        rows = [
            PolicyAuditLog(
                created_at=entry.timestamp,
                subject_id=entry.subject_id,
                resource_type=entry.resource_type,
                operation=entry.operation.value,
                scope=entry.scope,
                row_count=entry.row_count,
                outcome=entry.outcome.value,
                reason=entry.reason,
                matched_rule=entry.matched_rule,
                error=entry.error,
                broken_rules=list(entry.broken_rules),
                admin_elevated=entry.admin_elevated,
                registry_version=entry.registry_version,
            )
            for entry in entries
        ]
        if rows:
            db.add_all(rows)
            await db.flush()
        return rows

    async def list_recent(
        self,
        db: AsyncSession,
        resource_type: str | None = None,
        outcome: str | None = None,
        subject_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[PolicyAuditLog]:
        """Most recent decisions first, optionally filtered."""
        filters = []
        if resource_type:
            filters.append(PolicyAuditLog.resource_type == resource_type)
        if outcome:
            filters.append(PolicyAuditLog.outcome == outcome)
        if subject_id:
            filters.append(PolicyAuditLog.subject_id == subject_id)
        return await self.get_multi(db, *filters, skip=skip, limit=limit)

    async def list_broken_rules(
        self,
        db: AsyncSession,
        limit: int = 100,
    ) -> list[PolicyAuditLog]:
        """Broken-rule events only (a rule raised, or the engine failed)."""
        statement = (
            select(PolicyAuditLog)
            .where(
                or_(
                    func.jsonb_array_length(PolicyAuditLog.broken_rules) > 0,
                    PolicyAuditLog.error.is_not(None),  # type: ignore[union-attr]
                )
            )
            .order_by(PolicyAuditLog.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())


audit_log_ops = AuditLogOperations()
