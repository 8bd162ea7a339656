"""Tests for drift classification, detection and reporting.

Registry rows live in in-memory SQLite; the live catalog is an AsyncMock
introspector so each scenario controls exactly what "exists" in the
database.
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from trigger_engine.checksum import compute_checksum
from trigger_engine.drift.detector import DriftDetector, classify, live_checksum
from trigger_engine.drift.reporter import DriftReporter, render_diff, render_report
from trigger_engine.models.drift import DriftState, DriftSummary
from trigger_engine.models.trigger import TriggerSource
from trigger_engine.registry.manager import TriggerRegistry
from trigger_engine.state.tables import TriggerRegistryTable


def _row(definition, **overrides) -> TriggerRegistryTable:
    fields = {
        "trigger_name": definition.name,
        "table_name": definition.table_name,
        "version": definition.version,
        "enabled": definition.enabled,
        "source": TriggerSource.DSL.value,
        "checksum": compute_checksum(
            definition.name,
            definition.table_name,
            definition.version,
            definition.function_body,
            definition.condition,
        ),
        "function_body": definition.function_body,
        "condition": definition.condition,
        "timing": definition.timing,
    }
    fields.update(overrides)
    return TriggerRegistryTable(**fields)


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------


class TestClassify:
    def test_in_sync(self, definition, make_live):
        result = classify("audit_users", _row(definition), make_live())
        assert result.state == DriftState.IN_SYNC
        assert not result.is_problem

    def test_neither_side(self):
        result = classify("ghost", None, None)
        assert result.state == DriftState.UNKNOWN
        assert result.registry is None

    def test_unmanaged_live_trigger(self, make_live):
        result = classify("audit_users", None, make_live())
        assert result.state == DriftState.UNKNOWN
        assert "not managed" in result.details

    def test_manual_sql_source_wins(self, definition):
        row = _row(definition, source=TriggerSource.MANUAL_SQL.value)
        assert classify("audit_users", row, None).state == DriftState.MANUAL_OVERRIDE

    def test_disabled_and_absent(self, definition):
        row = _row(definition, enabled=False)
        assert classify("audit_users", row, None).state == DriftState.DISABLED

    def test_disabled_and_live_disabled(self, definition, make_live):
        row = _row(definition, enabled=False)
        assert classify("audit_users", row, make_live(enabled=False)).state == DriftState.DISABLED

    def test_disabled_in_registry_but_live_enabled(self, definition, make_live):
        row = _row(definition, enabled=False)
        result = classify("audit_users", row, make_live())
        assert result.state == DriftState.DRIFTED
        assert "disabled in registry" in result.details

    def test_dropped(self, definition):
        result = classify("audit_users", _row(definition), None)
        assert result.state == DriftState.DROPPED
        assert result.is_problem

    def test_function_changed(self, definition, make_live):
        live = make_live(function_definition=definition.function_body.replace("NEW.id", "NEW.email"))
        result = classify("audit_users", _row(definition), live)
        assert result.state == DriftState.DRIFTED
        assert "checksum mismatch" in result.details

    def test_condition_changed(self, make_definition, make_live):
        definition = make_definition(condition="NEW.active")
        live = make_live(
            trigger_definition=(
                "CREATE TRIGGER audit_users AFTER INSERT ON public.users FOR EACH ROW "
                "WHEN (NEW.deleted) EXECUTE FUNCTION audit_users_fn()"
            )
        )
        assert classify("audit_users", _row(definition), live).state == DriftState.DRIFTED

    def test_condition_matches(self, make_definition, make_live):
        definition = make_definition(condition="new.active")
        live = make_live(
            trigger_definition=(
                "CREATE TRIGGER audit_users AFTER INSERT ON public.users FOR EACH ROW "
                "WHEN (new.active) EXECUTE FUNCTION audit_users_fn()"
            )
        )
        assert live.condition == "new.active"
        assert classify("audit_users", _row(definition), live).state == DriftState.IN_SYNC

    def test_catalog_reformatting_is_in_sync(self, make_definition, make_live):
        definition = make_definition(condition="NEW.status = 'active'")
        live = make_live(
            function_definition=(
                "CREATE OR REPLACE FUNCTION public.audit_users_fn()\n"
                " RETURNS trigger\n"
                " LANGUAGE plpgsql\n"
                "AS $function$\n"
                "BEGIN\n"
                "  INSERT INTO users_audit(user_id) VALUES (NEW.id);\n"
                "  RETURN NEW;\n"
                "END;\n"
                "$function$\n"
            ),
            trigger_definition=(
                "CREATE TRIGGER audit_users AFTER INSERT ON public.users FOR EACH ROW "
                "WHEN ((new.status = 'active'::text)) EXECUTE FUNCTION audit_users_fn()"
            ),
        )
        row = _row(definition)
        assert live_checksum(row, live) != row.checksum

        result = classify("audit_users", row, live)
        assert result.state == DriftState.IN_SYNC
        assert "catalog formatting" in result.details

        changed = live.model_copy(update={"function_definition": live.function_definition.replace("NEW.id", "0")})
        assert classify("audit_users", row, changed).state == DriftState.DRIFTED

    def test_live_disabled_while_registry_enabled(self, definition, make_live):
        result = classify("audit_users", _row(definition), make_live(enabled=False))
        assert result.state == DriftState.DRIFTED

    def test_table_mismatch(self, definition, make_live):
        result = classify("audit_users", _row(definition), make_live(table_name="accounts"))
        assert result.state == DriftState.DRIFTED
        assert "accounts" in result.details

    def test_live_checksum_uses_registry_identity(self, definition, make_live):
        row = _row(definition)
        assert live_checksum(row, make_live()) == row.checksum


# ---------------------------------------------------------------------------
# DriftDetector against the registry
# ---------------------------------------------------------------------------


class TestDriftDetector:
    @pytest.mark.asyncio
    async def test_scenario_in_sync_drifted_dropped(self, async_session, definition, make_live, make_introspector):
        introspector = make_introspector({"audit_users": make_live()})
        registry = TriggerRegistry(async_session, introspector=introspector)
        await registry.register(definition)
        detector = DriftDetector(async_session, introspector)

        assert (await detector.detect("audit_users")).state == DriftState.IN_SYNC

        introspector.catalog["audit_users"] = make_live(function_definition="CREATE FUNCTION audit_users_fn() ...")
        assert (await detector.detect("audit_users")).state == DriftState.DRIFTED

        del introspector.catalog["audit_users"]
        assert (await detector.detect("audit_users")).state == DriftState.DROPPED

    @pytest.mark.asyncio
    async def test_detect_all_one_result_per_entry(self, async_session, make_definition, make_live, make_introspector):
        introspector = make_introspector({"audit_users": make_live()})
        registry = TriggerRegistry(async_session, introspector=introspector)
        await registry.register(make_definition())
        await registry.register(make_definition(name="orders_guard", table_name="orders", function_name="guard_fn"))
        detector = DriftDetector(async_session, introspector)

        results = {r.trigger_name: r.state for r in await detector.detect_all()}
        assert results == {"audit_users": DriftState.IN_SYNC, "orders_guard": DriftState.DROPPED}
        introspector.all_triggers.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_detect_all_with_unmanaged(self, async_session, definition, make_live, make_introspector):
        introspector = make_introspector(
            {"audit_users": make_live(), "legacy_trigger": make_live(trigger_name="legacy_trigger")}
        )
        await TriggerRegistry(async_session, introspector=introspector).register(definition)
        detector = DriftDetector(async_session, introspector)

        managed = await detector.detect_all()
        everything = await detector.detect_all(include_unmanaged=True)
        assert [r.trigger_name for r in managed] == ["audit_users"]
        assert {r.trigger_name for r in everything} == {"audit_users", "legacy_trigger"}

    @pytest.mark.asyncio
    async def test_detect_for_table(self, async_session, make_definition, make_live, make_introspector):
        introspector = make_introspector({"audit_users": make_live()})
        registry = TriggerRegistry(async_session, introspector=introspector)
        await registry.register(make_definition())
        await registry.register(make_definition(name="orders_guard", table_name="orders", function_name="guard_fn"))

        results = await DriftDetector(async_session, introspector).detect_for_table("users")
        assert [r.trigger_name for r in results] == ["audit_users"]
        introspector.triggers_for_table.assert_awaited_once_with("users")

    @pytest.mark.asyncio
    async def test_introspection_failure_is_unknown(self, async_session, definition, make_introspector):
        introspector = make_introspector()
        introspector.find_trigger.side_effect = OperationalError("SELECT", {}, Exception("catalog unavailable"))
        await TriggerRegistry(async_session, introspector=introspector).register(definition)

        result = await DriftDetector(async_session, introspector).detect("audit_users")
        assert result.state == DriftState.UNKNOWN
        assert "catalog unavailable" in result.details
        assert result.registry is not None

    @pytest.mark.asyncio
    async def test_real_catalog_on_sqlite_reports_unknown(self, async_session, definition):
        # pg_trigger does not exist on SQLite, so the catalog query fails.
        registry = TriggerRegistry(async_session)
        await registry.register(definition)
        result = await DriftDetector(async_session).detect("audit_users")
        assert result.state == DriftState.UNKNOWN


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------


class TestReporter:
    @pytest.mark.asyncio
    async def test_summary_counts(self, async_session, make_definition, make_live, make_introspector):
        introspector = make_introspector(
            {"audit_users": make_live(), "legacy_trigger": make_live(trigger_name="legacy_trigger")}
        )
        registry = TriggerRegistry(async_session, introspector=introspector)
        await registry.register(make_definition())
        await registry.register(make_definition(name="orders_guard", table_name="orders", function_name="guard_fn"))
        await registry.register(make_definition(name="off_trigger", enabled=False, function_name="off_fn"))

        summary = await DriftReporter(DriftDetector(async_session, introspector)).summary()
        assert summary == DriftSummary(total=4, in_sync=1, dropped=1, disabled=1, unknown=1)

    @pytest.mark.asyncio
    async def test_problematic_and_drifted_list(self, async_session, make_definition, make_live, make_introspector):
        introspector = make_introspector({"audit_users": make_live(function_definition="changed")})
        registry = TriggerRegistry(async_session, introspector=introspector)
        await registry.register(make_definition())
        await registry.register(make_definition(name="orders_guard", table_name="orders", function_name="guard_fn"))
        reporter = DriftReporter(DriftDetector(async_session, introspector))

        assert [r.trigger_name for r in await reporter.drifted_list()] == ["audit_users"]
        assert {r.trigger_name for r in await reporter.problematic()} == {"audit_users", "orders_guard"}

    def test_render_report_drifted_includes_diff(self, definition, make_live):
        result = classify("audit_users", _row(definition), make_live(function_definition="SELECT 1;\n"))
        text = render_report(result)
        assert text.startswith("=" * 80)
        assert "Drift Report: audit_users" in text
        assert "State: DRIFTED" in text
        assert "Registry Information:" in text
        assert "Database Information:" in text
        assert "--- registry/audit_users" in text
        assert "+++ database/audit_users" in text

    def test_render_report_dropped(self, definition):
        text = render_report(classify("audit_users", _row(definition), None))
        assert "State: DROPPED" in text
        assert "Database Information:" not in text

    def test_render_diff_without_drift(self, definition, make_live):
        assert render_diff(classify("audit_users", _row(definition), make_live())) == "No drift detected"

    def test_render_diff_condition_only(self, make_definition, make_live):
        definition = make_definition(condition="NEW.active")
        result = classify("audit_users", _row(definition), make_live())
        diff = render_diff(result)
        assert "Function definitions are identical" in diff
        assert "registry: NEW.active" in diff
        assert "database: none" in diff
