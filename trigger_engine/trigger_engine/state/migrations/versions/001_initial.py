"""Create trigger_registry, trigger_audit_log and trigger_migrations.

Revision ID: 001
Revises:
Create Date: 2026-01-05 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "trigger_registry",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trigger_name", sa.String(255), nullable=False, unique=True),
        sa.Column("table_name", sa.String(255), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source", sa.String(32), nullable=False, server_default="dsl"),
        sa.Column("checksum", sa.String(64), nullable=False),
        sa.Column("definition", postgresql.JSONB(), nullable=True),
        sa.Column("function_body", sa.Text(), nullable=True),
        sa.Column("condition", sa.Text(), nullable=True),
        sa.Column("timing", sa.String(16), nullable=False, server_default="before"),
        sa.Column("environment", sa.String(64), nullable=True),
        sa.Column("installed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("version >= 1", name="ck_trigger_registry_version_positive"),
        sa.CheckConstraint("source IN ('dsl', 'generated', 'manual_sql')", name="ck_trigger_registry_source"),
        sa.CheckConstraint("timing IN ('before', 'after')", name="ck_trigger_registry_timing"),
    )
    op.create_index("ix_trigger_registry_table_name", "trigger_registry", ["table_name"])
    op.create_index("ix_trigger_registry_enabled", "trigger_registry", ["enabled"])
    op.create_index("ix_trigger_registry_source", "trigger_registry", ["source"])

    op.create_table(
        "trigger_audit_log",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("trigger_name", sa.String(255), nullable=True),
        sa.Column("operation", sa.String(64), nullable=False),
        sa.Column("actor", postgresql.JSONB(), nullable=True),
        sa.Column("environment", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("confirmation_text", sa.Text(), nullable=True),
        sa.Column("before_state", postgresql.JSONB(), nullable=True),
        sa.Column("after_state", postgresql.JSONB(), nullable=True),
        sa.Column("diff", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.Column("entry_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('success', 'failure')", name="ck_trigger_audit_log_status"),
    )
    op.create_index("ix_trigger_audit_trigger_created", "trigger_audit_log", ["trigger_name", "created_at"])
    op.create_index("ix_trigger_audit_operation", "trigger_audit_log", ["operation"])

    op.create_table(
        "trigger_migrations",
        sa.Column("version", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )


def downgrade() -> None:
    op.drop_table("trigger_migrations")
    op.drop_table("trigger_audit_log")
    op.drop_table("trigger_registry")
