"""Input accepted by the trigger generator.

Like :class:`~trigger_engine.models.trigger.TriggerDefinition` the form is
lenient at construction time and reports every problem from
:meth:`GeneratorForm.validation_errors`, so a front end can show all of them at
once.  Generated triggers are enabled by default and get a function stub
when no body is supplied.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field, field_validator

from trigger_engine.models.trigger import TriggerDefinition, TriggerTiming
from trigger_engine.testing.syntax_validator import SyntaxValidator

_NAME_RE = re.compile(r"^[a-z0-9_]+$")
_NAME_MESSAGE = "must contain only lowercase letters, numbers, and underscores"


def function_stub(function_name: str | None) -> str:
    """Placeholder function DDL used when the form carries no body."""
    name = function_name or "function_name"
    return (
        f"CREATE OR REPLACE FUNCTION {name}()\n"
        "RETURNS TRIGGER AS $$\n"
        "BEGIN\n"
        "  -- Your trigger logic here\n"
        "  RETURN NEW;\n"
        "END;\n"
        "$$ LANGUAGE plpgsql;"
    )


def defines_function(function_body: str, function_name: str) -> bool:
    """Return ``True`` when *function_body* creates *function_name* (optionally schema-qualified)."""
    pattern = re.compile(
        rf"CREATE\s+(?:OR\s+REPLACE\s+)?FUNCTION\s+(?:[^(\s]+\.)?{re.escape(function_name)}\s*\(",
        re.IGNORECASE,
    )
    return bool(pattern.search(function_body))


class GeneratorForm(BaseModel):
    """What the operator asked the generator to produce."""

    trigger_name: str = ""
    table_name: str = ""
    function_name: str = ""
    events: list[str] = Field(default_factory=list)
    version: int = 1
    enabled: bool = True
    timing: str = TriggerTiming.BEFORE.value
    condition: str | None = None
    environments: list[str] = Field(default_factory=list)
    function_body: str | None = None
    generate_function_stub: bool = True

    @field_validator("trigger_name", "table_name", "function_name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("events", "environments", mode="before")
    @classmethod
    def _normalise_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip().lower() for item in value if str(item).strip()]

    @field_validator("timing", mode="before")
    @classmethod
    def _normalise_timing(cls, value: Any) -> str:
        if value is None:
            return TriggerTiming.BEFORE.value
        if isinstance(value, TriggerTiming):
            return value.value
        return str(value).strip().lower()

    @field_validator("condition", "function_body", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def resolved_function_body(self) -> str | None:
        """The supplied body, or the stub when stubs are enabled."""
        if self.function_body is not None:
            return self.function_body
        if self.generate_function_stub:
            return function_stub(self.function_name or None)
        return None

    def to_definition(self) -> TriggerDefinition:
        return TriggerDefinition(
            name=self.trigger_name,
            table_name=self.table_name,
            function_name=self.function_name or None,
            events=self.events,
            version=self.version,
            enabled=self.enabled,
            environments=self.environments,
            condition=self.condition,
            timing=self.timing,
            function_body=self.resolved_function_body,
        )

    def validation_errors(self) -> list[str]:
        """Every problem with the form; empty when it can be generated."""
        errors: list[str] = []
        for label, value in (("Trigger name", self.trigger_name), ("Function name", self.function_name)):
            if value and not _NAME_RE.match(value):
                errors.append(f"{label} {_NAME_MESSAGE}")

        errors.extend(SyntaxValidator(self.to_definition()).validate_definition().errors)

        body = self.resolved_function_body
        if body is None:
            errors.append("Function body is required when no function stub is generated")
        elif self.function_name and not defines_function(body, self.function_name):
            errors.append(
                f"Function body should define function '{self.function_name}' "
                f"(expected: CREATE [OR REPLACE] FUNCTION {self.function_name}(...))"
            )
        return errors
