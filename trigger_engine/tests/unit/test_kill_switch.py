"""Tests for the environment kill switch."""

from __future__ import annotations

import logging

import pytest

from trigger_engine.errors import KillSwitchError
from trigger_engine.safety.context import Actor, OperationContext
from trigger_engine.safety.kill_switch import KillSwitch, KillSwitchConfig


def _ctx(environment: str = "production", confirmation: str | None = None) -> OperationContext:
    return OperationContext(environment=environment, actor=Actor(type="user", id="alice"), confirmation=confirmation)


@pytest.fixture
def switch() -> KillSwitch:
    return KillSwitch(KillSwitchConfig())


class TestActive:
    def test_protected_environments(self, switch):
        assert switch.active("production")
        assert switch.active("Staging")
        assert not switch.active("development")
        assert not switch.active(None)

    def test_disabled_switch_is_never_active(self):
        assert not KillSwitch(KillSwitchConfig(enabled=False)).active("production")

    def test_expected_confirmation(self, switch):
        assert switch.expected_confirmation("trigger_drop") == "EXECUTE TRIGGER_DROP"


class TestCheck:
    def test_unprotected_environment_allowed(self, switch, caplog):
        with caplog.at_level(logging.INFO):
            assert switch.check("trigger_enable", _ctx("development"))
        assert "[KILL_SWITCH] ALLOWED" in caplog.text

    def test_missing_confirmation_blocked(self, switch, caplog):
        with caplog.at_level(logging.INFO), pytest.raises(KillSwitchError) as exc_info:
            switch.check("trigger_drop", _ctx())
        assert "blocked" in exc_info.value.message
        assert exc_info.value.context["expected_confirmation"] == "EXECUTE TRIGGER_DROP"
        assert "EXECUTE TRIGGER_DROP" in exc_info.value.recovery_suggestion
        assert "[KILL_SWITCH] BLOCKED" in caplog.text

    def test_wrong_confirmation_blocked(self, switch):
        with pytest.raises(KillSwitchError) as exc_info:
            switch.check("trigger_drop", _ctx(confirmation="EXECUTE TRIGGER_ENABLE"))
        assert "Invalid confirmation text" in exc_info.value.message
        assert "EXECUTE TRIGGER_ENABLE" in exc_info.value.message

    def test_exact_confirmation_allowed(self, switch, caplog):
        with caplog.at_level(logging.INFO):
            assert switch.check("trigger_drop", _ctx(confirmation="EXECUTE TRIGGER_DROP"))
        assert "[KILL_SWITCH] OVERRIDDEN" in caplog.text

    def test_confirmation_is_case_sensitive(self, switch):
        with pytest.raises(KillSwitchError):
            switch.check("trigger_drop", _ctx(confirmation="execute trigger_drop"))

    def test_soft_mode_allows_with_warning(self, caplog):
        switch = KillSwitch(KillSwitchConfig(confirmation_required=False))
        with caplog.at_level(logging.WARNING):
            assert switch.check("trigger_drop", _ctx())
        assert "confirmation not required" in caplog.text

    def test_custom_pattern(self):
        switch = KillSwitch(KillSwitchConfig(confirmation_pattern="I MEAN IT {operation}"))
        assert switch.check("migration_up", _ctx(confirmation="I MEAN IT MIGRATION_UP"))


class TestOverride:
    def test_override_allows_and_restores(self, switch):
        ctx = _ctx()
        with switch.override(ctx):
            assert switch.check("trigger_drop", ctx)
        assert ctx.kill_switch_override is False
        with pytest.raises(KillSwitchError):
            switch.check("trigger_drop", ctx)

    def test_override_restored_when_block_raises(self, switch):
        ctx = _ctx()
        with pytest.raises(RuntimeError), switch.override(ctx):
            raise RuntimeError("boom")
        assert ctx.kill_switch_override is False

    def test_nested_override_restores_previous_value(self, switch):
        ctx = _ctx()
        with switch.override(ctx):
            with switch.override(ctx):
                pass
            assert ctx.kill_switch_override is True
        assert ctx.kill_switch_override is False

    def test_override_is_scoped_to_its_context(self, switch):
        mine, theirs = _ctx(), _ctx()
        with switch.override(mine), pytest.raises(KillSwitchError):
            switch.check("trigger_drop", theirs)
