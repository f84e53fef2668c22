"""Create admin grant and grant audit tables

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

- admin_grants: one row per identity (unique index on identity)
- grant_audit_logs: append-only trail of create/update/revoke
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str | None = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply schema changes."""
    op.create_table(
        "admin_grants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("identity", sa.String(length=255), nullable=False),
        sa.Column("tier", sa.String(length=32), nullable=False),
        sa.Column("explicit_permissions", sa.JSON(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ip_allow_list", sa.JSON(), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "tier IN ('moderator', 'admin', 'super_admin')",
            name="valid_admin_tier",
        ),
    )
    op.create_index(
        "ix_admin_grants_identity", "admin_grants", ["identity"], unique=True
    )

    op.create_table(
        "grant_audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("target_identity", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("before_state", sa.JSON(), nullable=True),
        sa.Column("after_state", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "action IN ('create', 'update', 'revoke')",
            name="valid_grant_audit_action",
        ),
    )
    op.create_index("ix_grant_audit_logs_actor", "grant_audit_logs", ["actor"])
    op.create_index(
        "ix_grant_audit_logs_target_identity", "grant_audit_logs", ["target_identity"]
    )
    op.create_index("ix_grant_audit_logs_action", "grant_audit_logs", ["action"])
    op.create_index("ix_grant_audit_logs_created_at", "grant_audit_logs", ["created_at"])


def downgrade() -> None:
    """Revert schema changes."""
    op.drop_index("ix_grant_audit_logs_created_at", table_name="grant_audit_logs")
    op.drop_index("ix_grant_audit_logs_action", table_name="grant_audit_logs")
    op.drop_index("ix_grant_audit_logs_target_identity", table_name="grant_audit_logs")
    op.drop_index("ix_grant_audit_logs_actor", table_name="grant_audit_logs")
    op.drop_table("grant_audit_logs")

    op.drop_index("ix_admin_grants_identity", table_name="admin_grants")
    op.drop_table("admin_grants")
