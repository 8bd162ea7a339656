"""Shared fixtures for trigger engine unit tests.

Repository-backed tests run against an in-memory SQLite database via
aiosqlite.  JSONB and timezone-aware DateTime columns are Postgres-specific,
so their types are swapped at import time:

* ``JSONB`` → ``JSON`` (SQLite has no JSONB type compiler).
* ``DateTime(timezone=True)`` → a :class:`~sqlalchemy.TypeDecorator` that
  coerces naive datetimes returned by SQLite back to UTC-aware, so tests
  compare timestamps the way they come back from PostgreSQL.

Catalog introspection (``pg_trigger`` and friends) does not exist on
SQLite; tests that need live triggers pass an ``AsyncMock`` introspector.
"""

from __future__ import annotations

from datetime import UTC
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.types import TypeDecorator

from trigger_engine.models.trigger import LiveTrigger, TriggerDefinition
from trigger_engine.state.sqlite_adapter import create_local_tables, get_local_engine
from trigger_engine.state.tables import Base


def _patch_columns_for_sqlite() -> None:
    class _UTCAwareDateTime(TypeDecorator):
        """SQLAlchemy TypeDecorator that ensures datetimes are always UTC-aware."""

        impl = DateTime
        cache_ok = True

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()
            elif isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


# Perform patching once at import time so every test shares the same
# metadata state.  The unit suite never runs against Postgres.
_patch_columns_for_sqlite()


@pytest_asyncio.fixture
async def async_session():
    """Provide an async session backed by an in-memory SQLite database."""
    engine = get_local_engine(":memory:")
    await create_local_tables(engine)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

FUNCTION_BODY = (
    "CREATE OR REPLACE FUNCTION audit_users_fn() RETURNS trigger AS $$\n"
    "BEGIN\n"
    "  INSERT INTO users_audit(user_id) VALUES (NEW.id);\n"
    "  RETURN NEW;\n"
    "END;\n"
    "$$ LANGUAGE plpgsql;"
)


def _definition(**overrides) -> TriggerDefinition:
    fields = {
        "name": "audit_users",
        "table_name": "users",
        "function_name": "audit_users_fn",
        "events": ["insert", "update"],
        "version": 1,
        "enabled": True,
        "timing": "after",
        "function_body": FUNCTION_BODY,
    }
    fields.update(overrides)
    return TriggerDefinition(**fields)


def _live(**overrides) -> LiveTrigger:
    fields = {
        "trigger_name": "audit_users",
        "table_name": "users",
        "function_name": "audit_users_fn",
        "trigger_definition": (
            "CREATE TRIGGER audit_users AFTER INSERT OR UPDATE ON public.users "
            "FOR EACH ROW EXECUTE FUNCTION audit_users_fn()"
        ),
        "function_definition": FUNCTION_BODY,
        "enabled": True,
    }
    fields.update(overrides)
    return LiveTrigger(**fields)


def _introspector(live: dict[str, LiveTrigger] | None = None) -> AsyncMock:
    """An introspector double answering from *live* (trigger name -> LiveTrigger)."""
    catalog = dict(live or {})
    introspector = AsyncMock()
    introspector.find_trigger.side_effect = lambda name: catalog.get(name)
    introspector.trigger_exists.side_effect = lambda name: name in catalog
    introspector.function_exists.return_value = False
    introspector.all_triggers.side_effect = lambda: list(catalog.values())
    introspector.triggers_for_table.side_effect = lambda table: [t for t in catalog.values() if t.table_name == table]
    introspector.catalog = catalog
    return introspector


@pytest.fixture
def make_definition():
    return _definition


@pytest.fixture
def make_live():
    return _live


@pytest.fixture
def make_introspector():
    return _introspector


@pytest.fixture
def definition() -> TriggerDefinition:
    return _definition()
