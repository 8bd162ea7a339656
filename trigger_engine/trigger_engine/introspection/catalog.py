"""Read-only PostgreSQL catalog introspection.

Queries ``pg_trigger``, ``pg_proc`` and ``information_schema`` to answer
questions about live triggers, functions, tables and columns.  Every query
binds its inputs as parameters; nothing from the registry is interpolated
into catalog SQL.  Database errors propagate to the caller, which decides
whether a failure is fatal (lifecycle DDL) or best-effort (existence
checks, drift detection).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.models.trigger import LiveTrigger, RegistrySnapshot
from trigger_engine.state.repository import TriggerRegistryRepository

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"

# Internal bookkeeping tables never offered as trigger targets.
DEFAULT_EXCLUDED_TABLES = frozenset(
    {
        "trigger_registry",
        "trigger_audit_log",
        "trigger_migrations",
        "alembic_version",
    }
)

_TRIGGER_COLUMNS = """
    t.oid AS trigger_oid,
    t.tgname AS trigger_name,
    c.relname AS table_name,
    n.nspname AS schema_name,
    p.proname AS function_name,
    pg_get_triggerdef(t.oid) AS trigger_definition,
    pg_get_functiondef(p.oid) AS function_definition,
    (t.tgenabled <> 'D') AS enabled
"""

_TRIGGER_FROM = """
FROM pg_trigger t
JOIN pg_class c ON t.tgrelid = c.oid
JOIN pg_namespace n ON c.relnamespace = n.oid
JOIN pg_proc p ON t.tgfoid = p.oid
WHERE n.nspname = :schema
  AND NOT t.tgisinternal
  AND t.tgname NOT LIKE 'RI_%'
"""

_ALL_TRIGGERS_SQL = text(f"SELECT {_TRIGGER_COLUMNS} {_TRIGGER_FROM} ORDER BY c.relname, t.tgname")
_TRIGGER_BY_NAME_SQL = text(f"SELECT {_TRIGGER_COLUMNS} {_TRIGGER_FROM} AND t.tgname = :name LIMIT 1")
_TRIGGERS_FOR_TABLE_SQL = text(f"SELECT {_TRIGGER_COLUMNS} {_TRIGGER_FROM} AND c.relname = :table ORDER BY t.tgname")

_TRIGGER_EXISTS_SQL = text(
    """
    SELECT 1
    FROM pg_trigger t
    JOIN pg_class c ON t.tgrelid = c.oid
    JOIN pg_namespace n ON c.relnamespace = n.oid
    WHERE t.tgname = :name AND n.nspname = :schema AND NOT t.tgisinternal
    LIMIT 1
    """
)

_FUNCTION_SQL = text(
    """
    SELECT p.proname AS function_name, pg_get_functiondef(p.oid) AS function_definition
    FROM pg_proc p
    JOIN pg_namespace n ON p.pronamespace = n.oid
    WHERE p.proname = :name AND n.nspname = :schema
    LIMIT 1
    """
)

_TABLES_SQL = text(
    """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = :schema AND table_type = 'BASE TABLE'
    ORDER BY table_name
    """
)

_TABLE_SQL = text(
    """
    SELECT c.relname AS table_name, n.nspname AS schema_name, obj_description(c.oid, 'pg_class') AS comment
    FROM pg_class c
    JOIN pg_namespace n ON c.relnamespace = n.oid
    WHERE c.relname = :table AND n.nspname = :schema AND c.relkind IN ('r', 'p')
    LIMIT 1
    """
)

_COLUMNS_SQL = text(
    """
    SELECT column_name, data_type, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = :schema AND table_name = :table
    ORDER BY ordinal_position
    """
)


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class ColumnInfo(BaseModel):
    name: str
    data_type: str
    nullable: bool = True
    default: str | None = None


class TableInfo(BaseModel):
    """Result of :meth:`DatabaseIntrospector.validate_table`."""

    table_name: str
    schema_name: str = DEFAULT_SCHEMA
    valid: bool
    comment: str | None = None
    error: str | None = None


class TableTriggers(BaseModel):
    """Registry and live triggers attached to one table."""

    table_name: str
    registry: list[RegistrySnapshot] = Field(default_factory=list)
    database: list[LiveTrigger] = Field(default_factory=list)


class TableTriggerCount(BaseModel):
    table_name: str
    registry_count: int = 0
    database_count: int = 0


# ---------------------------------------------------------------------------
# Introspector
# ---------------------------------------------------------------------------


def _to_live(row: object) -> LiveTrigger:
    mapping = row._mapping  # type: ignore[attr-defined]
    return LiveTrigger(
        trigger_name=mapping["trigger_name"],
        table_name=mapping["table_name"],
        schema_name=mapping["schema_name"],
        function_name=mapping["function_name"],
        trigger_definition=mapping["trigger_definition"],
        function_definition=mapping["function_definition"],
        enabled=bool(mapping["enabled"]),
    )


class DatabaseIntrospector:
    """Catalog queries scoped to one schema (``public`` by default).

    Parameters
    ----------
    session:
        Async session used for every query.
    excluded_tables:
        Extra table names hidden from :meth:`list_tables`, on top of
        :data:`DEFAULT_EXCLUDED_TABLES`.
    schema:
        Schema whose triggers and tables are inspected.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        excluded_tables: Iterable[str] = (),
        schema: str = DEFAULT_SCHEMA,
    ) -> None:
        self._session = session
        self._schema = schema
        self._excluded = DEFAULT_EXCLUDED_TABLES | frozenset(excluded_tables)

    # -- tables -------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        result = await self._session.execute(_TABLES_SQL, {"schema": self._schema})
        return [name for name in result.scalars().all() if name not in self._excluded]

    async def validate_table(self, table_name: str) -> TableInfo:
        if not table_name or not table_name.strip():
            return TableInfo(table_name=table_name or "", valid=False, error="Table name cannot be blank")
        result = await self._session.execute(_TABLE_SQL, {"table": table_name, "schema": self._schema})
        row = result.first()
        if row is None:
            return TableInfo(
                table_name=table_name,
                schema_name=self._schema,
                valid=False,
                error=f"Table '{table_name}' not found in schema '{self._schema}'",
            )
        return TableInfo(
            table_name=row.table_name,
            schema_name=row.schema_name,
            valid=True,
            comment=row.comment,
        )

    async def table_columns(self, table_name: str) -> list[ColumnInfo]:
        result = await self._session.execute(_COLUMNS_SQL, {"table": table_name, "schema": self._schema})
        return [
            ColumnInfo(
                name=row.column_name,
                data_type=row.data_type,
                nullable=row.is_nullable == "YES",
                default=row.column_default,
            )
            for row in result.all()
        ]

    # -- functions ------------------------------------------------------------

    async def find_function(self, function_name: str) -> dict[str, str] | None:
        result = await self._session.execute(_FUNCTION_SQL, {"name": function_name, "schema": self._schema})
        row = result.first()
        if row is None:
            return None
        return {"function_name": row.function_name, "function_definition": row.function_definition}

    async def function_exists(self, function_name: str) -> bool:
        return await self.find_function(function_name) is not None

    # -- triggers -------------------------------------------------------------

    async def trigger_exists(self, trigger_name: str) -> bool:
        result = await self._session.execute(_TRIGGER_EXISTS_SQL, {"name": trigger_name, "schema": self._schema})
        return result.first() is not None

    async def find_trigger(self, trigger_name: str) -> LiveTrigger | None:
        result = await self._session.execute(_TRIGGER_BY_NAME_SQL, {"name": trigger_name, "schema": self._schema})
        row = result.first()
        return _to_live(row) if row is not None else None

    async def all_triggers(self) -> list[LiveTrigger]:
        result = await self._session.execute(_ALL_TRIGGERS_SQL, {"schema": self._schema})
        return [_to_live(row) for row in result.all()]

    async def triggers_for_table(self, table_name: str) -> list[LiveTrigger]:
        result = await self._session.execute(_TRIGGERS_FOR_TABLE_SQL, {"table": table_name, "schema": self._schema})
        return [_to_live(row) for row in result.all()]

    # -- registry + catalog ---------------------------------------------------

    async def tables_with_triggers(self) -> list[TableTriggerCount]:
        """Every table that has a registered or live trigger, with counts."""
        counts: dict[str, TableTriggerCount] = {}
        for row in await TriggerRegistryRepository(self._session).list_all():
            entry = counts.setdefault(row.table_name, TableTriggerCount(table_name=row.table_name))
            entry.registry_count += 1
        for live in await self.all_triggers():
            entry = counts.setdefault(live.table_name, TableTriggerCount(table_name=live.table_name))
            entry.database_count += 1
        return [counts[name] for name in sorted(counts)]

    async def table_triggers(self, table_name: str) -> TableTriggers:
        rows = await TriggerRegistryRepository(self._session).list_for_table(table_name)
        return TableTriggers(
            table_name=table_name,
            registry=[RegistrySnapshot.from_row(row) for row in rows],
            database=await self.triggers_for_table(table_name),
        )
