"""Repository classes providing access to the trigger registry state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.state.database import is_postgres
from trigger_engine.state.tables import (
    TriggerAuditLogTable,
    TriggerMigrationTable,
    TriggerRegistryTable,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# TriggerRegistryRepository
# ---------------------------------------------------------------------------


class TriggerRegistryRepository:
    """CRUD and scoped queries over ``trigger_registry``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, trigger_name: str, *, for_update: bool = False) -> TriggerRegistryTable | None:
        """Fetch one entry by trigger name.

        ``for_update`` takes a row lock on PostgreSQL so concurrent lifecycle
        operations on the same trigger serialise, and refreshes an already
        loaded instance from the locked row.  SQLite ignores the lock.
        """
        stmt = select(TriggerRegistryTable).where(TriggerRegistryTable.trigger_name == trigger_name)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[TriggerRegistryTable]:
        stmt = select(TriggerRegistryTable).order_by(TriggerRegistryTable.trigger_name)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_enabled(self, enabled: bool = True) -> list[TriggerRegistryTable]:
        stmt = (
            select(TriggerRegistryTable)
            .where(TriggerRegistryTable.enabled.is_(enabled))
            .order_by(TriggerRegistryTable.trigger_name)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_table(self, table_name: str) -> list[TriggerRegistryTable]:
        stmt = (
            select(TriggerRegistryTable)
            .where(TriggerRegistryTable.table_name == table_name)
            .order_by(TriggerRegistryTable.trigger_name)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_environment(self, environment: str) -> list[TriggerRegistryTable]:
        """Entries scoped to *environment* plus entries with no environment."""
        stmt = (
            select(TriggerRegistryTable)
            .where(
                or_(
                    TriggerRegistryTable.environment == environment,
                    TriggerRegistryTable.environment.is_(None),
                )
            )
            .order_by(TriggerRegistryTable.trigger_name)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_by_source(self, source: str) -> list[TriggerRegistryTable]:
        stmt = (
            select(TriggerRegistryTable)
            .where(TriggerRegistryTable.source == source)
            .order_by(TriggerRegistryTable.trigger_name)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def upsert(
        self,
        *,
        trigger_name: str,
        table_name: str,
        version: int,
        enabled: bool,
        source: str,
        checksum: str,
        definition: dict[str, Any] | None = None,
        function_body: str | None = None,
        condition: str | None = None,
        timing: str = "before",
        environment: str | None = None,
    ) -> TriggerRegistryTable:
        """Create the entry for *trigger_name* or overwrite its defining fields."""
        row = await self.get(trigger_name)
        if row is None:
            row = TriggerRegistryTable(trigger_name=trigger_name)
            self._session.add(row)
        row.table_name = table_name
        row.version = version
        row.enabled = enabled
        row.source = source
        row.checksum = checksum
        row.definition = definition
        row.function_body = function_body
        row.condition = condition
        row.timing = timing
        row.environment = environment
        await self._session.flush()
        return row

    async def touch(self, row: TriggerRegistryTable, **fields: Any) -> TriggerRegistryTable:
        """Apply *fields* to *row* and flush."""
        for key, value in fields.items():
            setattr(row, key, value)
        await self._session.flush()
        return row

    async def delete(self, row: TriggerRegistryTable) -> None:
        await self._session.delete(row)
        await self._session.flush()

    async def delete_by_names(self, trigger_names: Iterable[str]) -> int:
        names = list(trigger_names)
        if not names:
            return 0
        result = await self._session.execute(
            delete(TriggerRegistryTable).where(TriggerRegistryTable.trigger_name.in_(names))
        )
        return result.rowcount or 0


# ---------------------------------------------------------------------------
# AuditRepository
# ---------------------------------------------------------------------------

# Stable advisory lock key for the audit hash chain.
_AUDIT_CHAIN_LOCK_ID = int(hashlib.sha256(b"trigger_audit_chain").hexdigest()[:8], 16) & 0x7FFFFFFF


class AuditRepository:
    """Append-only audit log repository with hash-chaining for tamper evidence.

    Each entry is linked to its predecessor via ``previous_hash``.
    ``entry_hash`` is a SHA-256 digest of the entry's content fields and the
    previous hash, so modifying a stored row breaks the chain for every
    subsequent entry.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _compute_hash(
        *,
        trigger_name: str | None,
        operation: str,
        status: str,
        actor: dict | None,
        environment: str | None,
        reason: str | None,
        confirmation_text: str | None,
        before_state: dict | None,
        after_state: dict | None,
        diff: str | None,
        error_message: str | None,
        previous_hash: str | None,
        created_at: datetime,
    ) -> str:
        """Compute SHA-256 over the canonical JSON of the entry content.

        ``created_at`` is hashed as UTC.  Backends without timezone support
        (SQLite) hand the stored value back naive, so a naive timestamp is
        taken to be UTC already.
        """
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        else:
            created_at = created_at.astimezone(UTC)
        content = {
            "trigger_name": trigger_name,
            "operation": operation,
            "status": status,
            "actor": actor,
            "environment": environment,
            "reason": reason,
            "confirmation_text": confirmation_text,
            "before_state": before_state,
            "after_state": after_state,
            "diff": diff,
            "error_message": error_message,
            "created_at": created_at.isoformat(),
        }
        payload = json.dumps(content, sort_keys=True, default=str)
        return hashlib.sha256(f"{previous_hash or ''}|{payload}".encode()).hexdigest()

    async def get_latest_hash(self) -> str | None:
        stmt = select(TriggerAuditLogTable.entry_hash).order_by(TriggerAuditLogTable.created_at.desc()).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def log(
        self,
        *,
        operation: str,
        status: str,
        trigger_name: str | None = None,
        actor: dict | None = None,
        environment: str | None = None,
        reason: str | None = None,
        confirmation_text: str | None = None,
        before_state: dict | None = None,
        after_state: dict | None = None,
        diff: str | None = None,
        error_message: str | None = None,
    ) -> str:
        """Write an audit entry.  Returns the entry ID."""
        entry_id = uuid.uuid4().hex
        now = datetime.now(UTC)

        # Serialise chain appends so two writers cannot fork the chain.
        if is_postgres(self._session):
            await self._session.execute(
                text("SELECT pg_advisory_xact_lock(:lock_id)"),
                {"lock_id": _AUDIT_CHAIN_LOCK_ID},
            )

        previous_hash = await self.get_latest_hash()
        entry_hash = self._compute_hash(
            trigger_name=trigger_name,
            operation=operation,
            status=status,
            actor=actor,
            environment=environment,
            reason=reason,
            confirmation_text=confirmation_text,
            before_state=before_state,
            after_state=after_state,
            diff=diff,
            error_message=error_message,
            previous_hash=previous_hash,
            created_at=now,
        )

        row = TriggerAuditLogTable(
            id=entry_id,
            trigger_name=trigger_name,
            operation=operation,
            actor=actor,
            environment=environment,
            status=status,
            reason=reason,
            confirmation_text=confirmation_text,
            before_state=before_state,
            after_state=after_state,
            diff=diff,
            error_message=error_message,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            created_at=now,
        )
        self._session.add(row)
        await self._session.flush()

        logger.info(
            "Audit: operation=%s trigger=%s status=%s",
            operation,
            trigger_name or "-",
            status,
        )
        return entry_id

    async def query(
        self,
        *,
        trigger_name: str | None = None,
        operation: str | None = None,
        status: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[TriggerAuditLogTable]:
        """Query audit entries, most recent first.  All filters are optional."""
        stmt = select(TriggerAuditLogTable)

        if trigger_name is not None:
            stmt = stmt.where(TriggerAuditLogTable.trigger_name == trigger_name)
        if operation is not None:
            stmt = stmt.where(TriggerAuditLogTable.operation == operation)
        if status is not None:
            stmt = stmt.where(TriggerAuditLogTable.status == status)
        if since is not None:
            stmt = stmt.where(TriggerAuditLogTable.created_at >= since)

        stmt = stmt.order_by(TriggerAuditLogTable.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def verify_chain(self, *, limit: int = 1000) -> tuple[bool, int]:
        """Verify hash chain integrity over the oldest *limit* entries.

        Returns
        -------
        tuple[bool, int]
            ``(is_valid, entries_checked)``.
        """
        stmt = select(TriggerAuditLogTable).order_by(TriggerAuditLogTable.created_at.asc()).limit(limit)
        result = await self._session.execute(stmt)
        entries = list(result.scalars().all())

        checked = 0
        previous_hash: str | None = None

        for entry in entries:
            if entry.previous_hash != previous_hash:
                logger.warning(
                    "Audit chain break at entry %s: expected previous_hash=%s, got=%s",
                    entry.id,
                    previous_hash,
                    entry.previous_hash,
                )
                return (False, checked)

            expected_hash = self._compute_hash(
                trigger_name=entry.trigger_name,
                operation=entry.operation,
                status=entry.status,
                actor=entry.actor,
                environment=entry.environment,
                reason=entry.reason,
                confirmation_text=entry.confirmation_text,
                before_state=entry.before_state,
                after_state=entry.after_state,
                diff=entry.diff,
                error_message=entry.error_message,
                previous_hash=entry.previous_hash,
                created_at=entry.created_at,
            )
            if entry.entry_hash != expected_hash:
                logger.warning(
                    "Audit hash mismatch at entry %s: stored=%s, computed=%s",
                    entry.id,
                    entry.entry_hash,
                    expected_hash,
                )
                return (False, checked)

            previous_hash = entry.entry_hash
            checked += 1

        return (True, checked)


# ---------------------------------------------------------------------------
# MigrationVersionRepository
# ---------------------------------------------------------------------------


class MigrationVersionRepository:
    """Tracks applied trigger migration versions in ``trigger_migrations``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def ensure_table(self) -> None:
        """Create ``trigger_migrations`` if it does not exist."""

        def _create(sync_session: Any) -> None:
            TriggerMigrationTable.__table__.create(sync_session.connection(), checkfirst=True)

        await self._session.run_sync(_create)

    async def applied_versions(self) -> list[int]:
        stmt = select(TriggerMigrationTable.version).order_by(TriggerMigrationTable.version)
        result = await self._session.execute(stmt)
        return [int(v) for v in result.scalars().all()]

    async def mark_applied(self, version: int) -> None:
        self._session.add(TriggerMigrationTable(version=version))
        await self._session.flush()

    async def mark_reverted(self, version: int) -> None:
        await self._session.execute(delete(TriggerMigrationTable).where(TriggerMigrationTable.version == version))
        await self._session.flush()
