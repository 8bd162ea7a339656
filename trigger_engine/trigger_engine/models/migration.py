"""Trigger migration status models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class MigrationState(str, Enum):
    UP = "up"
    DOWN = "down"


class MigrationStatus(BaseModel):
    """Applied/pending state of one migration file."""

    version: int = Field(..., description="Timestamp-derived version, e.g. 20260105120000.")
    name: str = Field(..., description="Snake-case name taken from the filename.")
    status: MigrationState
    filename: str


class ObjectStatus(str, Enum):
    """How a function or trigger in a migration compares with the database."""

    NEW = "new"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"
    UNKNOWN = "unknown"


class ObjectDiff(BaseModel):
    """One function or trigger a migration unit would create."""

    object_type: str = Field(..., description="function or trigger.")
    name: str
    status: ObjectStatus
    message: str
    expected: str | None = Field(default=None, description="SQL the migration would run.")
    actual: str | None = Field(default=None, description="Definition currently in the database.")
    differences: list[str] = Field(default_factory=list)


class DropPlan(BaseModel):
    """A DROP statement in a migration unit."""

    object_type: str
    name: str
    table_name: str | None = None


class PreApplyDiff(BaseModel):
    """What applying one migration unit would change."""

    version: int
    filename: str
    direction: str
    functions: list[ObjectDiff] = Field(default_factory=list)
    triggers: list[ObjectDiff] = Field(default_factory=list)
    drops: list[DropPlan] = Field(default_factory=list)

    @property
    def has_differences(self) -> bool:
        """True unless every object is unchanged and nothing is dropped."""
        changed = (ObjectStatus.NEW, ObjectStatus.MODIFIED, ObjectStatus.UNKNOWN)
        return bool(self.drops) or any(d.status in changed for d in [*self.functions, *self.triggers])
