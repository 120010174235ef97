"""Create policy_audit_log and admin_emails tables

Revision ID: a0c1d2e3f4b5
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a0c1d2e3f4b5"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "policy_audit_log",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("subject_id", sa.String(255), nullable=True),
        sa.Column("resource_type", sa.String(100), nullable=False),
        sa.Column("operation", sa.String(10), nullable=False),
        sa.Column("scope", sa.String(20), server_default="row", nullable=False),
        sa.Column("row_count", sa.Integer(), nullable=True),
        sa.Column("outcome", sa.String(10), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("matched_rule", sa.String(255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "broken_rules",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default="[]",
            nullable=True,
        ),
        sa.Column("admin_elevated", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("registry_version", sa.Integer(), server_default="0", nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_policy_audit_log_id", "policy_audit_log", ["id"])
    op.create_index("ix_policy_audit_log_subject_id", "policy_audit_log", ["subject_id"])
    op.create_index(
        "ix_policy_audit_log_resource_operation",
        "policy_audit_log",
        ["resource_type", "operation"],
    )
    op.create_index("ix_policy_audit_log_created_at", "policy_audit_log", ["created_at"])

    op.create_table(
        "admin_emails",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_admin_emails_id", "admin_emails", ["id"])
    op.create_index("ix_admin_emails_email", "admin_emails", ["email"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_admin_emails_email", table_name="admin_emails")
    op.drop_index("ix_admin_emails_id", table_name="admin_emails")
    op.drop_table("admin_emails")
    op.drop_index("ix_policy_audit_log_created_at", table_name="policy_audit_log")
    op.drop_index("ix_policy_audit_log_resource_operation", table_name="policy_audit_log")
    op.drop_index("ix_policy_audit_log_subject_id", table_name="policy_audit_log")
    op.drop_index("ix_policy_audit_log_id", table_name="policy_audit_log")
    op.drop_table("policy_audit_log")
