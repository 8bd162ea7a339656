"""Error taxonomy for trigger management operations.

Every error carries a human-readable message, a stable ``error_code``, an
optional ``recovery_suggestion`` and a ``context`` dict of structured
details.  Surfaces (the CLI, host applications) are expected to display
both the message and the recovery suggestion.
"""

from __future__ import annotations

import re
from typing import Any


def _default_code(cls_name: str) -> str:
    base = cls_name[: -len("Error")] if cls_name.endswith("Error") else cls_name
    return re.sub(r"(?<!^)(?=[A-Z])", "_", base).upper() or "ERROR"


class TriggerEngineError(Exception):
    """Base class for all trigger engine errors."""

    default_code: str | None = None
    default_suggestion: str | None = None

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        recovery_suggestion: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code or _default_code(type(self).__name__)
        self.recovery_suggestion = recovery_suggestion or self.default_suggestion
        self.context: dict[str, Any] = dict(context or {})

    @property
    def user_message(self) -> str:
        """Message with the recovery suggestion appended, when one exists."""
        if self.recovery_suggestion:
            return f"{self.message}\n\nRecovery: {self.recovery_suggestion}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_class": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "recovery_suggestion": self.recovery_suggestion,
            "context": self.context,
        }


class PermissionError(TriggerEngineError):  # noqa: A001
    """Actor lacks the role required for an action in an environment."""

    default_code = "PERMISSION_DENIED"
    default_suggestion = "Contact your administrator to request the required role."


class KillSwitchError(TriggerEngineError):
    """Operation blocked because the environment is protected."""

    default_code = "KILL_SWITCH_ACTIVE"


class ValidationError(TriggerEngineError, ValueError):
    """Malformed input: missing reason, bad definition shape, etc."""

    default_code = "VALIDATION_FAILED"
    default_suggestion = "Review the input and correct the reported problems."


class NotFoundError(TriggerEngineError):
    """Named trigger or capsule is absent from the registry."""

    default_code = "NOT_FOUND"
    default_suggestion = "Check the name and make sure the trigger is registered."


class ExecutionError(TriggerEngineError):
    """The database rejected a DDL or DML statement."""

    default_code = "EXECUTION_FAILED"
    default_suggestion = "Inspect the database error and the SQL that was executed."


class DriftError(TriggerEngineError):
    """Informational: a trigger differs from its registered definition."""

    default_code = "DRIFT_DETECTED"
    default_suggestion = "Re-execute the trigger or update its registered definition."


class UnsafeMigrationError(TriggerEngineError):
    """A migration contains operations disallowed by the safety policy."""

    default_code = "UNSAFE_MIGRATION"
    default_suggestion = (
        "Use CREATE OR REPLACE FUNCTION instead of DROP + CREATE, or set "
        "TRIGGER_ALLOW_UNSAFE_MIGRATIONS=true if the drop is intended."
    )

    def __init__(self, message: str, *, violations: list[dict[str, Any]] | None = None, **kwargs: Any) -> None:
        self.violations = list(violations or [])
        context = dict(kwargs.pop("context", None) or {})
        context.setdefault("violations", self.violations)
        super().__init__(message, context=context, **kwargs)


class MigrationError(ExecutionError):
    """A migration unit failed while running up or down."""

    default_code = "MIGRATION_FAILED"
    default_suggestion = "Fix the failing migration and run it again; earlier units stay applied."
