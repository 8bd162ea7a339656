"""Tests for logging setup."""

from __future__ import annotations

import json
import logging
import sys

import pytest

from trigger_engine.logging_config import JSONFormatter, configure_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="trigger_engine.safety.kill_switch",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="[KILL_SWITCH] %s: %s",
        args=("OVERRIDDEN", "trigger_drop"),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_payload(self):
        payload = json.loads(JSONFormatter().format(_record()))
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "trigger_engine.safety.kill_switch"
        assert payload["message"] == "[KILL_SWITCH] OVERRIDDEN: trigger_drop"
        assert payload["timestamp"].endswith("+00:00")
        assert "exc_info" not in payload

    def test_extra_fields(self):
        payload = json.loads(JSONFormatter().format(_record(operation="trigger_drop", environment="production")))
        assert payload["operation"] == "trigger_drop"
        assert payload["environment"] == "production"
        assert "trigger_name" not in payload

    def test_exception_is_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        payload = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in payload["exc_info"]


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_single_handler(self):
        configure_logging("debug")
        configure_logging("info")
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.INFO

    def test_structured(self):
        configure_logging(logging.WARNING, structured=True)
        root = logging.getLogger()
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.WARNING
