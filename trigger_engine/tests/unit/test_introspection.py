"""Tests for catalog introspection."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from trigger_engine.introspection.catalog import DatabaseIntrospector
from trigger_engine.registry.manager import TriggerRegistry

_TRIGGER_ROW = SimpleNamespace(
    _mapping={
        "trigger_oid": 16421,
        "trigger_name": "audit_users",
        "table_name": "users",
        "schema_name": "public",
        "function_name": "audit_users_fn",
        "trigger_definition": (
            "CREATE TRIGGER audit_users AFTER UPDATE ON public.users FOR EACH ROW "
            "WHEN ((old.email IS DISTINCT FROM new.email)) EXECUTE FUNCTION audit_users_fn()"
        ),
        "function_definition": "CREATE OR REPLACE FUNCTION public.audit_users_fn() ...",
        "enabled": False,
    }
)


def _session(*, first=None, rows=(), scalars=()) -> AsyncMock:
    result = MagicMock()
    result.first.return_value = first
    result.all.return_value = list(rows)
    result.scalars.return_value.all.return_value = list(scalars)
    session = AsyncMock()
    session.execute.return_value = result
    return session


class TestTriggers:
    @pytest.mark.asyncio
    async def test_find_trigger_maps_catalog_row(self):
        session = _session(first=_TRIGGER_ROW)
        live = await DatabaseIntrospector(session).find_trigger("audit_users")

        assert live.trigger_name == "audit_users"
        assert live.enabled is False
        assert live.condition == "(old.email IS DISTINCT FROM new.email)"
        params = session.execute.await_args.args[1]
        assert params == {"name": "audit_users", "schema": "public"}

    @pytest.mark.asyncio
    async def test_find_missing_trigger(self):
        assert await DatabaseIntrospector(_session()).find_trigger("missing") is None

    @pytest.mark.asyncio
    async def test_trigger_exists(self):
        assert await DatabaseIntrospector(_session(first=(1,))).trigger_exists("audit_users")
        assert not await DatabaseIntrospector(_session()).trigger_exists("audit_users")

    @pytest.mark.asyncio
    async def test_schema_is_bound(self):
        session = _session(rows=[_TRIGGER_ROW])
        triggers = await DatabaseIntrospector(session, schema="audit").triggers_for_table("users")
        assert [t.trigger_name for t in triggers] == ["audit_users"]
        assert session.execute.await_args.args[1] == {"table": "users", "schema": "audit"}


class TestTables:
    @pytest.mark.asyncio
    async def test_list_tables_hides_bookkeeping(self):
        session = _session(scalars=["orders", "trigger_registry", "users", "alembic_version", "scratch"])
        tables = await DatabaseIntrospector(session, excluded_tables=["scratch"]).list_tables()
        assert tables == ["orders", "users"]

    @pytest.mark.asyncio
    async def test_validate_blank_table(self):
        session = _session()
        info = await DatabaseIntrospector(session).validate_table("  ")
        assert not info.valid
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validate_missing_table(self):
        info = await DatabaseIntrospector(_session()).validate_table("ghosts")
        assert info.error == "Table 'ghosts' not found in schema 'public'"

    @pytest.mark.asyncio
    async def test_table_columns(self):
        rows = [
            SimpleNamespace(column_name="id", data_type="integer", is_nullable="NO", column_default=None),
            SimpleNamespace(column_name="email", data_type="text", is_nullable="YES", column_default="''::text"),
        ]
        columns = await DatabaseIntrospector(_session(rows=rows)).table_columns("users")
        assert [(c.name, c.nullable) for c in columns] == [("id", False), ("email", True)]
        assert columns[1].default == "''::text"


class TestFunctions:
    @pytest.mark.asyncio
    async def test_function_exists(self):
        row = SimpleNamespace(function_name="audit_users_fn", function_definition="CREATE FUNCTION ...")
        introspector = DatabaseIntrospector(_session(first=row))
        assert await introspector.find_function("audit_users_fn") == {
            "function_name": "audit_users_fn",
            "function_definition": "CREATE FUNCTION ...",
        }
        assert await introspector.function_exists("audit_users_fn")


class TestRegistryViews:
    @pytest.mark.asyncio
    async def test_tables_with_triggers_combines_registry_and_catalog(self, async_session, make_definition, make_live):
        registry = TriggerRegistry(async_session)
        await registry.register(make_definition())
        await registry.register(make_definition(name="audit_orders", table_name="orders"))

        introspector = DatabaseIntrospector(async_session)
        live = [make_live(), make_live(trigger_name="stamp_accounts", table_name="accounts")]
        with patch.object(DatabaseIntrospector, "all_triggers", AsyncMock(return_value=live)):
            counts = await introspector.tables_with_triggers()

        assert [(c.table_name, c.registry_count, c.database_count) for c in counts] == [
            ("accounts", 0, 1),
            ("orders", 1, 0),
            ("users", 1, 1),
        ]

    @pytest.mark.asyncio
    async def test_table_triggers(self, async_session, make_definition, make_live):
        await TriggerRegistry(async_session).register(make_definition())

        introspector = DatabaseIntrospector(async_session)
        with patch.object(DatabaseIntrospector, "triggers_for_table", AsyncMock(return_value=[make_live()])):
            view = await introspector.table_triggers("users")

        assert view.table_name == "users"
        assert [(s.table_name, s.version, s.source) for s in view.registry] == [("users", 1, "dsl")]
        assert [t.trigger_name for t in view.database] == ["audit_users"]
