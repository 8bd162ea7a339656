"""Tests for guarded lifecycle operations.

SQLite has no ``ALTER TABLE ... ENABLE TRIGGER``, so tests that reach the
DDL step patch ``_execute_ddl`` and assert on the generated statement.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from trigger_engine.errors import KillSwitchError, NotFoundError, PermissionError, TriggerEngineError, ValidationError
from trigger_engine.lifecycle.service import TriggerLifecycle, require_reason
from trigger_engine.registry.manager import TriggerRegistry
from trigger_engine.safety.context import Actor, OperationContext
from trigger_engine.safety.permissions import PermissionChecker, role_policy
from trigger_engine.state.repository import TriggerRegistryRepository
from trigger_engine.state.tables import TriggerAuditLogTable


def _ctx(environment: str = "development", **kwargs) -> OperationContext:
    return OperationContext(environment=environment, actor=Actor(type="user", id="alice", role="admin"), **kwargs)


async def _audit_rows(session) -> list[TriggerAuditLogTable]:
    result = await session.execute(select(TriggerAuditLogTable).order_by(TriggerAuditLogTable.created_at))
    return list(result.scalars().all())


@pytest.fixture
def registered(async_session, make_definition):
    async def _register(introspector, **overrides):
        await TriggerRegistry(async_session, introspector=introspector).register(make_definition(**overrides))
        await async_session.commit()

    return _register


class TestRequireReason:
    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_blank_reasons_rejected(self, reason):
        with pytest.raises(ValidationError, match="Reason is required"):
            require_reason(reason, "trigger_drop")

    def test_reason_is_stripped(self):
        assert require_reason("  cleanup  ", "trigger_drop") == "cleanup"


class TestEnableDisable:
    @pytest.mark.asyncio
    async def test_enable_without_live_trigger_updates_registry_only(
        self, async_session, registered, make_introspector
    ):
        introspector = make_introspector()
        await registered(introspector, enabled=False)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        with patch.object(TriggerLifecycle, "_execute_ddl", new_callable=AsyncMock) as ddl:
            assert await lifecycle.enable("audit_users", _ctx()) is True
        ddl.assert_not_awaited()

        row = await TriggerRegistryRepository(async_session).get("audit_users")
        assert row.enabled is True
        audit = await _audit_rows(async_session)
        assert [(a.operation, a.status) for a in audit] == [("trigger_enable", "success")]
        assert audit[0].before_state["enabled"] is False
        assert audit[0].after_state["enabled"] is True

    @pytest.mark.asyncio
    async def test_enable_live_trigger_issues_quoted_ddl(self, async_session, registered, make_introspector, make_live):
        introspector = make_introspector({"audit_users": make_live(enabled=False)})
        await registered(introspector, enabled=False)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        with patch.object(TriggerLifecycle, "_execute_ddl", new_callable=AsyncMock) as ddl:
            await lifecycle.enable("audit_users", _ctx())
        ddl.assert_awaited_once_with('ALTER TABLE "users" ENABLE TRIGGER "audit_users"')

    @pytest.mark.asyncio
    async def test_disable_live_trigger(self, async_session, registered, make_introspector, make_live):
        introspector = make_introspector({"audit_users": make_live()})
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        with patch.object(TriggerLifecycle, "_execute_ddl", new_callable=AsyncMock) as ddl:
            await lifecycle.disable("audit_users", _ctx())
        ddl.assert_awaited_once_with('ALTER TABLE "users" DISABLE TRIGGER "audit_users"')
        row = await TriggerRegistryRepository(async_session).get("audit_users")
        assert row.enabled is False

    @pytest.mark.asyncio
    async def test_enable_unknown_trigger(self, async_session, make_introspector):
        lifecycle = TriggerLifecycle(async_session, introspector=make_introspector())
        with pytest.raises(NotFoundError):
            await lifecycle.enable("missing", _ctx())
        assert await _audit_rows(async_session) == []

    @pytest.mark.asyncio
    async def test_ddl_failure_rolls_back_and_audits(self, async_session, registered, make_introspector, make_live):
        introspector = make_introspector({"audit_users": make_live()})
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)
        failure = OperationalError("ALTER TABLE", {}, Exception("permission denied for table users"))

        with (
            patch.object(TriggerLifecycle, "_execute_ddl", new=AsyncMock(side_effect=failure)),
            pytest.raises(OperationalError),
        ):
            await lifecycle.disable("audit_users", _ctx())

        row = await TriggerRegistryRepository(async_session).get("audit_users")
        assert row.enabled is True
        audit = await _audit_rows(async_session)
        assert [(a.operation, a.status) for a in audit] == [("trigger_disable", "failure")]
        assert "permission denied" in audit[0].error_message


class TestDrop:
    @pytest.mark.asyncio
    async def test_drop_removes_entry_and_live_trigger(self, async_session, registered, make_introspector, make_live):
        introspector = make_introspector({"audit_users": make_live()})
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        with patch.object(TriggerLifecycle, "_execute_ddl", new_callable=AsyncMock) as ddl:
            await lifecycle.drop("audit_users", _ctx(), "no longer needed")

        ddl.assert_awaited_once_with('DROP TRIGGER IF EXISTS "audit_users" ON "users"')
        assert await TriggerRegistryRepository(async_session).get("audit_users") is None
        audit = await _audit_rows(async_session)
        assert audit[0].reason == "no longer needed"
        assert audit[0].after_state is None
        assert audit[0].before_state["trigger_name"] == "audit_users"

    @pytest.mark.asyncio
    async def test_drop_is_atomic(self, async_session, registered, make_introspector, make_live):
        introspector = make_introspector({"audit_users": make_live()})
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)
        failure = OperationalError("DROP TRIGGER", {}, Exception("lock timeout"))

        with (
            patch.object(TriggerLifecycle, "_execute_ddl", new=AsyncMock(side_effect=failure)),
            pytest.raises(OperationalError),
        ):
            await lifecycle.drop("audit_users", _ctx(), "cleanup")

        assert await TriggerRegistryRepository(async_session).get("audit_users") is not None
        audit = await _audit_rows(async_session)
        assert [(a.operation, a.status, a.reason) for a in audit] == [("trigger_drop", "failure", "cleanup")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", [None, "", "   "])
    async def test_drop_requires_reason(self, async_session, registered, make_introspector, reason):
        introspector = make_introspector()
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        with pytest.raises(ValidationError):
            await lifecycle.drop("audit_users", _ctx(), reason)
        assert await TriggerRegistryRepository(async_session).get("audit_users") is not None
        assert await _audit_rows(async_session) == []

    @pytest.mark.asyncio
    async def test_lookup_failure_falls_back_to_registry_only(self, async_session, registered, make_introspector):
        introspector = make_introspector()
        introspector.trigger_exists.side_effect = OperationalError("SELECT", {}, Exception("no pg_trigger"))
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        with patch.object(TriggerLifecycle, "_execute_ddl", new_callable=AsyncMock) as ddl:
            assert await lifecycle.drop("audit_users", _ctx(), "cleanup")
        ddl.assert_not_awaited()
        assert await TriggerRegistryRepository(async_session).get("audit_users") is None


class TestSafetyGates:
    @pytest.mark.asyncio
    async def test_kill_switch_block_writes_no_audit(self, async_session, registered, make_introspector):
        introspector = make_introspector()
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        with pytest.raises(KillSwitchError):
            await lifecycle.drop("audit_users", _ctx("production"), "cleanup")
        assert await TriggerRegistryRepository(async_session).get("audit_users") is not None
        assert await _audit_rows(async_session) == []

    @pytest.mark.asyncio
    async def test_kill_switch_block_takes_no_row_lock(self, async_session, registered, make_introspector):
        introspector = make_introspector()
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)
        original_get = TriggerRegistryRepository.get

        with patch.object(TriggerRegistryRepository, "get", autospec=True, side_effect=original_get) as get:
            with pytest.raises(KillSwitchError):
                await lifecycle.disable("audit_users", _ctx("production"))
            assert not any(c.kwargs.get("for_update") for c in get.call_args_list)
            assert not async_session.in_transaction()

            ctx = _ctx("production", confirmation="EXECUTE TRIGGER_DISABLE")
            assert await lifecycle.disable("audit_users", ctx)
            assert [c.kwargs.get("for_update", False) for c in get.call_args_list] == [False, False, True]

    @pytest.mark.asyncio
    async def test_confirmation_allows_production(self, async_session, registered, make_introspector):
        introspector = make_introspector()
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        ctx = _ctx("production", confirmation="EXECUTE TRIGGER_DROP")
        assert await lifecycle.drop("audit_users", ctx, "cleanup")
        audit = await _audit_rows(async_session)
        assert audit[0].confirmation_text == "EXECUTE TRIGGER_DROP"
        assert audit[0].environment == "production"

    @pytest.mark.asyncio
    async def test_permission_denied(self, async_session, registered, make_introspector):
        introspector = make_introspector()
        await registered(introspector)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector, permissions=PermissionChecker(role_policy))
        operator = OperationContext(environment="development", actor=Actor(id="bob", role="operator"))

        with pytest.raises(PermissionError):
            await lifecycle.drop("audit_users", operator, "cleanup")
        assert await lifecycle.disable("audit_users", operator)
        assert await TriggerRegistryRepository(async_session).get("audit_users") is not None


class TestReExecute:
    @pytest.mark.asyncio
    async def test_requires_function_body(self, async_session, registered, make_introspector):
        introspector = make_introspector()
        await registered(introspector, function_body=None)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        with pytest.raises(TriggerEngineError, match="no function body"):
            await lifecycle.re_execute("audit_users", _ctx(), "restore")
        assert await _audit_rows(async_session) == []

    @pytest.mark.asyncio
    async def test_recreates_and_records_diff(self, async_session, registered, make_introspector, make_live):
        introspector = make_introspector({"audit_users": make_live(function_definition="old body\n")})
        await registered(introspector, enabled=False)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)

        with (
            patch.object(TriggerLifecycle, "_execute_ddl", new_callable=AsyncMock) as ddl,
            patch.object(TriggerLifecycle, "_execute_script", new_callable=AsyncMock) as script,
        ):
            assert await lifecycle.re_execute("audit_users", _ctx(), "restore after drift")

        ddl.assert_awaited_once_with('DROP TRIGGER IF EXISTS "audit_users" ON "users"')
        script.assert_awaited_once()
        row = await TriggerRegistryRepository(async_session).get("audit_users")
        assert row.enabled is True
        assert row.installed_at is not None
        assert row.last_executed_at is not None
        audit = await _audit_rows(async_session)
        assert audit[0].operation == "trigger_re_execute"
        assert "-old body" in audit[0].diff

    @pytest.mark.asyncio
    async def test_script_failure_keeps_entry_state(self, async_session, registered, make_introspector):
        introspector = make_introspector()
        await registered(introspector, enabled=False)
        lifecycle = TriggerLifecycle(async_session, introspector=introspector)
        failure = OperationalError("CREATE FUNCTION", {}, Exception("syntax error"))

        with (
            patch.object(TriggerLifecycle, "_execute_script", new=AsyncMock(side_effect=failure)),
            pytest.raises(OperationalError),
        ):
            await lifecycle.re_execute("audit_users", _ctx(), "restore")

        row = await TriggerRegistryRepository(async_session).get("audit_users")
        assert row.enabled is False
        assert row.last_executed_at is None
        audit = await _audit_rows(async_session)
        assert [(a.operation, a.status) for a in audit] == [("trigger_re_execute", "failure")]
