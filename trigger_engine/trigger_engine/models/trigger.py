"""Trigger definition, registry snapshot and live catalog models.

``TriggerDefinition`` is the desired state handed to the registry by a
definition front end.  It is intentionally lenient at construction time:
structural problems (blank names, no events, non-positive version) are
reported by :class:`~trigger_engine.testing.syntax_validator.SyntaxValidator`
rather than raised by the model, so callers get every problem at once.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from trigger_engine.state.tables import TriggerRegistryTable

# pg_get_triggerdef renders the condition as ``WHEN (<expr>) EXECUTE ...``.
_WHEN_CLAUSE_RE = re.compile(r"WHEN\s+\((.+?)\)\s+EXECUTE", re.IGNORECASE | re.DOTALL)


class TriggerSource(str, Enum):
    """Origin of a registry entry."""

    DSL = "dsl"
    GENERATED = "generated"
    MANUAL_SQL = "manual_sql"


class TriggerTiming(str, Enum):
    BEFORE = "before"
    AFTER = "after"


VALID_EVENTS = frozenset({"insert", "update", "delete", "truncate"})


class TriggerDefinition(BaseModel):
    """Desired configuration of one managed trigger."""

    name: str = Field(..., description="Trigger name, unique across the registry.")
    table_name: str = Field(..., description="Table the trigger is attached to.")
    function_name: str | None = Field(default=None, description="Trigger function invoked by the trigger.")
    events: list[str] = Field(default_factory=list, description="Row events: insert, update, delete, truncate.")
    version: int = Field(default=1, description="Definition version; must be positive.")
    enabled: bool = Field(default=False, description="Whether the trigger should be enabled after apply.")
    environments: list[str] = Field(default_factory=list, description="Environments the trigger applies to.")
    condition: str | None = Field(default=None, description="WHEN clause expression, without parentheses.")
    timing: str = Field(default=TriggerTiming.BEFORE.value, description="BEFORE or AFTER.")
    function_body: str | None = Field(default=None, description="Function (and trigger) DDL text.")

    @field_validator("events", mode="before")
    @classmethod
    def _normalise_events(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(event).strip().lower() for event in value if str(event).strip()]

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

    def to_metadata(self) -> dict[str, Any]:
        """Structured metadata stored in the registry ``definition`` column."""
        return self.model_dump(exclude={"function_body"})

    @classmethod
    def from_registry_row(cls, row: TriggerRegistryTable) -> TriggerDefinition:
        """Rebuild a definition from a registry row and its stored metadata."""
        meta = dict(row.definition or {})
        return cls(
            name=row.trigger_name,
            table_name=row.table_name,
            function_name=meta.get("function_name"),
            events=meta.get("events") or [],
            version=row.version,
            enabled=row.enabled,
            environments=meta.get("environments") or [],
            condition=row.condition,
            timing=row.timing or meta.get("timing"),
            function_body=row.function_body,
        )


class RegistrySnapshot(BaseModel):
    """Point-in-time copy of a registry row, recorded in audit entries."""

    trigger_name: str
    enabled: bool
    version: int
    checksum: str
    table_name: str
    source: str
    environment: str | None = None
    installed_at: str | None = None

    @classmethod
    def from_row(cls, row: TriggerRegistryTable) -> RegistrySnapshot:
        installed: datetime | None = row.installed_at
        return cls(
            trigger_name=row.trigger_name,
            enabled=bool(row.enabled),
            version=row.version,
            checksum=row.checksum,
            table_name=row.table_name,
            source=row.source,
            environment=row.environment,
            installed_at=installed.isoformat() if installed else None,
        )


class LiveTrigger(BaseModel):
    """A trigger as reported by the PostgreSQL catalog."""

    trigger_name: str
    table_name: str
    schema_name: str = "public"
    function_name: str | None = None
    trigger_definition: str | None = Field(default=None, description="pg_get_triggerdef output.")
    function_definition: str | None = Field(default=None, description="pg_get_functiondef output.")
    enabled: bool = True

    @property
    def condition(self) -> str | None:
        """``WHEN`` expression parsed from the trigger definition, if any."""
        if not self.trigger_definition:
            return None
        match = _WHEN_CLAUSE_RE.search(self.trigger_definition)
        return match.group(1).strip() if match else None
