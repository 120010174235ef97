"""Persisted authorization decisions."""

from sqlalchemy import Column, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from rowguard.models.base import CreatedAtMixin, UUIDMixin


class PolicyAuditLog(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    """
    One authorization decision flushed from the audit sink.

    Append-only. Rows with a non-empty ``broken_rules`` (or an ``error``) are
    broken-rule events, as opposed to ordinary denials.
    """

    __tablename__ = "policy_audit_log"
    __table_args__ = (
        Index("ix_policy_audit_log_resource_operation", "resource_type", "operation"),
        Index("ix_policy_audit_log_created_at", "created_at"),
    )

    # Who (None = anonymous)
    subject_id: str | None = Field(default=None, max_length=255, index=True)

    # What
    resource_type: str = Field(max_length=100, nullable=False)
    operation: str = Field(max_length=10, nullable=False)
    scope: str = Field(default="row", max_length=20)
    row_count: int | None = Field(default=None)

    # Outcome
    outcome: str = Field(max_length=10, nullable=False)
    reason: str = Field(nullable=False)
    matched_rule: str | None = Field(default=None, max_length=255)
    error: str | None = Field(default=None)
    broken_rules: list[str] = Field(default=[], sa_column=Column(JSONB, server_default="[]"))
    admin_elevated: bool = Field(default=False)
    registry_version: int = Field(default=0)

    @property
    def is_broken_rule(self) -> bool:
        return bool(self.broken_rules) or self.error is not None
