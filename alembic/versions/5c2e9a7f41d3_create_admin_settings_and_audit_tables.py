"""Create organization settings, backup and audit log tables

Revision ID: 5c2e9a7f41d3
Revises:
Create Date: 2026-10-18 09:12:44.310512

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e9a7f41d3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    ]
    if updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
                nullable=False,
            )
        )
    return columns


def _org_fk(primary_key: bool = False) -> sa.Column:
    return sa.Column(
        "organization_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("organizations.id"),
        primary_key=primary_key,
        nullable=False,
    )


def upgrade() -> None:
    """Create all tables."""
    # Organizations table
    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), unique=True, nullable=False),
        sa.Column("settings", sa.JSON, nullable=True),
        *_timestamps(),
    )

    # Users table
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="client"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id"),
            nullable=True,
        ),
        sa.Column("preferences", sa.JSON, nullable=True),
        *_timestamps(),
    )

    # API keys table
    op.create_table(
        "api_keys",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _org_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("scopes", sa.JSON, nullable=False),
        sa.Column("key_hash", sa.String(64), unique=True, nullable=False),
        sa.Column("prefix", sa.String(12), nullable=False, index=True),
        sa.Column(
            "created_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=True,
        ),
        *_timestamps(updated=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_api_keys_org_created", "api_keys", ["organization_id", "created_at"])

    # Webhooks table
    op.create_table(
        "webhooks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _org_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("events", sa.JSON, nullable=False),
        sa.Column("secret", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=True,
        ),
        *_timestamps(),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_failure_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_count", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_webhooks_organization_id", "webhooks", ["organization_id"])

    # Backups table
    op.create_table(
        "backups",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _org_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("status", sa.String(20), nullable=False, server_default="in_progress"),
        sa.Column("entities", sa.JSON, nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(updated=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("size", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("compressed_size", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("entity_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("location", sa.String(1024), nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_backups_org_created", "backups", ["organization_id", "created_at"])
    op.create_index("ix_backups_status", "backups", ["status"])

    # Backup schedules table
    op.create_table(
        "backup_schedules",
        _org_fk(primary_key=True),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("frequency", sa.String(20), nullable=False, server_default="daily"),
        sa.Column("time", sa.String(5), nullable=False, server_default="02:00"),
        sa.Column("retention_days", sa.Integer, nullable=False, server_default="7"),
        sa.Column("entities", sa.JSON, nullable=False),
        sa.Column("updated_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # Billing settings table
    op.create_table(
        "billing_settings",
        _org_fk(primary_key=True),
        sa.Column("default_invoice_day", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "default_payment_terms", sa.String(50), nullable=False, server_default="Net 30"
        ),
        sa.Column(
            "auto_generate_invoices", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column("invoice_prefix", sa.String(20), nullable=False, server_default="INV"),
        sa.Column("invoice_start_number", sa.Integer, nullable=False, server_default="1000"),
        sa.Column("late_fee_percentage", sa.Float, nullable=False, server_default="1.5"),
        sa.Column("grace_period_days", sa.Integer, nullable=False, server_default="5"),
        sa.Column("pre_bill_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "pre_bill_threshold_amount", sa.Float, nullable=False, server_default="10000"
        ),
        sa.Column("email_settings", sa.JSON, nullable=True),
        *_timestamps(),
    )

    # Pre-bill flags table
    op.create_table(
        "pre_bill_flags",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _org_fk(),
        sa.Column("advertiser_id", sa.String(100), nullable=False),
        sa.Column("advertiser_name", sa.String(255), nullable=True),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("flagged_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "flagged_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_index(
        "ix_pre_bill_flags_org_advertiser", "pre_bill_flags", ["organization_id", "advertiser_id"]
    )

    # Audit logs table
    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=True,
        ),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(100), nullable=True),
        sa.Column("action", sa.Text, nullable=False),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("success", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("error_message", sa.Text, nullable=True),
    )
    op.create_index("ix_audit_logs_org_timestamp", "audit_logs", ["organization_id", "timestamp"])
    op.create_index("ix_audit_logs_user_timestamp", "audit_logs", ["user_id", "timestamp"])
    op.create_index("ix_audit_logs_event_type", "audit_logs", ["event_type"])
    op.create_index("ix_audit_logs_severity", "audit_logs", ["severity"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("audit_logs")
    op.drop_table("pre_bill_flags")
    op.drop_table("billing_settings")
    op.drop_table("backup_schedules")
    op.drop_table("backups")
    op.drop_table("webhooks")
    op.drop_table("api_keys")
    op.drop_table("users")
    op.drop_table("organizations")
