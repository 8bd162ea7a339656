"""Logging setup for the trigger engine and its CLI.

Two output modes are supported:

* plain text lines (default) for interactive use;
* single-line JSON objects for log aggregators, enabled with
  ``TRIGGER_STRUCTURED_LOGGING=true``.

Output schema per JSON line::

    {
        "timestamp": "2026-01-01T12:34:56.789012+00:00",
        "level": "WARNING",
        "logger": "trigger_engine.safety.kill_switch",
        "message": "[KILL_SWITCH] OVERRIDDEN: ...",
        "operation": "trigger_drop",    // present when passed via extra=
        "exc_info": "Traceback ..."     // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Attributes passed through ``extra=`` that are copied into the JSON payload.
_EXTRA_FIELDS = ("operation", "trigger_name", "environment", "actor")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(level: str | int = "INFO", *, structured: bool = False) -> None:
    """Replace the root handlers with a single stderr handler.

    Parameters
    ----------
    level:
        Root log level name or number.
    structured:
        Emit JSON lines via :class:`JSONFormatter` instead of plain text.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if structured else logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
