"""SQLAlchemy 2.0 ORM table definitions for the trigger registry state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for Alembic migrations and the
repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON (stored as TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all state tables."""


# ---------------------------------------------------------------------------
# Trigger registry
# ---------------------------------------------------------------------------


class TriggerRegistryTable(Base):
    """Durable record of each managed trigger's intended configuration."""

    __tablename__ = "trigger_registry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trigger_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="dsl")
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    definition: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    function_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    condition: Mapped[str | None] = mapped_column(Text, nullable=True)
    timing: Mapped[str] = mapped_column(String(16), nullable=False, default="before")
    environment: Mapped[str | None] = mapped_column(String(64), nullable=True)
    installed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("version >= 1", name="ck_trigger_registry_version_positive"),
        CheckConstraint(
            "source IN ('dsl', 'generated', 'manual_sql')",
            name="ck_trigger_registry_source",
        ),
        CheckConstraint("timing IN ('before', 'after')", name="ck_trigger_registry_timing"),
        Index("ix_trigger_registry_table_name", "table_name"),
        Index("ix_trigger_registry_enabled", "enabled"),
        Index("ix_trigger_registry_source", "source"),
    )


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class TriggerAuditLogTable(Base):
    """Append-only audit log of trigger operations, hash-chained.

    ``entry_hash`` is a SHA-256 digest of the entry's content fields and
    ``previous_hash`` links to the preceding entry's hash, so modifying any
    stored row breaks the chain for every later entry.
    """

    __tablename__ = "trigger_audit_log"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    trigger_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    operation: Mapped[str] = mapped_column(String(64), nullable=False)
    actor: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    environment: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmation_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    before_state: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    after_state: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    diff: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('success', 'failure')", name="ck_trigger_audit_log_status"),
        Index("ix_trigger_audit_trigger_created", "trigger_name", "created_at"),
        Index("ix_trigger_audit_operation", "operation"),
    )


# ---------------------------------------------------------------------------
# Trigger migrations
# ---------------------------------------------------------------------------


class TriggerMigrationTable(Base):
    """Applied trigger migration versions (timestamp-derived integers)."""

    __tablename__ = "trigger_migrations"

    version: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
