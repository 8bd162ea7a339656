"""Detect unsafe DROP + CREATE sequences in trigger migrations.

A unit that drops a function or trigger and then recreates it with a plain
``CREATE`` (not ``CREATE OR REPLACE``) silently discards whatever the live
object was.  When the dropped object exists in the database the unit is
rejected with :class:`~trigger_engine.errors.UnsafeMigrationError` unless
unsafe migrations are allowed by configuration.

The unit's SQL is captured by running it in capture mode; nothing is
executed.  Existence checks are best-effort: when the catalog cannot be
queried the dropped object is treated as absent and the unit is allowed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.errors import UnsafeMigrationError
from trigger_engine.introspection.catalog import DatabaseIntrospector
from trigger_engine.lifecycle.best_effort import run_best_effort
from trigger_engine.migrator.loader import TriggerMigration, capture_sql

logger = logging.getLogger(__name__)

_IDENT = r'"?([A-Za-z_][\w$]*)"?'

_DROP_TRIGGER_RE = re.compile(rf"DROP\s+TRIGGER\s+(?:IF\s+EXISTS\s+)?{_IDENT}\s+ON\s+{_IDENT}", re.IGNORECASE)
_DROP_FUNCTION_RE = re.compile(rf"DROP\s+FUNCTION\s+(?:IF\s+EXISTS\s+)?{_IDENT}", re.IGNORECASE)
_CREATE_TRIGGER_RE = re.compile(rf"CREATE\s+TRIGGER\s+{_IDENT}\s+.*?\s+ON\s+{_IDENT}", re.IGNORECASE | re.DOTALL)
_CREATE_FUNCTION_RE = re.compile(rf"CREATE\s+FUNCTION\s+{_IDENT}\s*\(", re.IGNORECASE)


@dataclass(frozen=True)
class SqlOperation:
    kind: str  # drop | create
    object_type: str  # trigger | function
    name: str
    sql: str


def parse_operations(statements: list[str]) -> list[SqlOperation]:
    """Extract DROP and plain CREATE operations on triggers and functions."""
    operations: list[SqlOperation] = []
    for sql in statements:
        for pattern, kind, object_type in (
            (_DROP_TRIGGER_RE, "drop", "trigger"),
            (_DROP_FUNCTION_RE, "drop", "function"),
            (_CREATE_TRIGGER_RE, "create", "trigger"),
            (_CREATE_FUNCTION_RE, "create", "function"),
        ):
            for match in pattern.finditer(sql):
                operations.append(SqlOperation(kind=kind, object_type=object_type, name=match.group(1), sql=sql))
    return operations


class SafetyValidator:
    """Check migration units before they run."""

    def __init__(self, introspector: DatabaseIntrospector, session: AsyncSession | None = None) -> None:
        self._introspector = introspector
        self._session = session

    async def detect_violations(self, migration_class: type[TriggerMigration], direction: str) -> list[dict[str, Any]]:
        operations = parse_operations(await capture_sql(migration_class, direction))
        drops = [op for op in operations if op.kind == "drop"]
        creates = [op for op in operations if op.kind == "create"]

        violations: list[dict[str, Any]] = []
        for drop in drops:
            create = next(
                (c for c in creates if c.object_type == drop.object_type and c.name.lower() == drop.name.lower()),
                None,
            )
            if create is None:
                continue
            if not await self._exists(drop):
                continue
            violations.append(
                {
                    "type": "drop_create_pattern",
                    "object_type": drop.object_type,
                    "object_name": drop.name,
                    "drop_sql": drop.sql,
                    "create_sql": create.sql,
                    "message": (
                        f"Unsafe DROP + CREATE pattern detected for {drop.object_type} '{drop.name}'. "
                        f"Migration will drop the existing {drop.object_type} and recreate it."
                    ),
                }
            )
        return violations

    async def _exists(self, drop: SqlOperation) -> bool:
        if drop.object_type == "function":
            check = self._introspector.function_exists
        else:
            check = self._introspector.trigger_exists
        if self._session is None:
            return bool(await check(drop.name))
        outcome = await run_best_effort(
            self._session, f"{drop.object_type}_exists", lambda: check(drop.name), default=False
        )
        return bool(outcome.value)

    async def validate(
        self,
        migration_class: type[TriggerMigration],
        direction: str,
        *,
        allow_unsafe: bool = False,
    ) -> None:
        """Raise :class:`UnsafeMigrationError` when violations are found."""
        if allow_unsafe:
            return
        violations = await self.detect_violations(migration_class, direction)
        if not violations:
            return

        lines = [
            "=" * 80,
            "UNSAFE MIGRATION DETECTED",
            f"Migration: {migration_class.__name__} ({direction})",
            "=" * 80,
            *(f"  - {v['message']}" for v in violations),
        ]
        logger.error("Unsafe migration %s.%s: %d violation(s)", migration_class.__name__, direction, len(violations))
        raise UnsafeMigrationError("\n".join(lines), violations=violations)
