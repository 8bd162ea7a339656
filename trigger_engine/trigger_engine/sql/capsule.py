"""Manual SQL capsules.

A capsule is a named, purpose-tagged block of SQL run by hand against one
environment (a hotfix, a backfill trigger, a one-off repair).  Executions
are recorded in the trigger registry with ``source = manual_sql`` so drift
reports show them as manual overrides rather than unknown objects.
"""

from __future__ import annotations

import hashlib
import re

from pydantic import BaseModel, Field, ValidationInfo, field_validator

_CAPSULE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")

CAPSULE_TRIGGER_PREFIX = "sql_capsule_"
CAPSULE_TABLE_NAME = "manual_sql_execution"


class SQLCapsule(BaseModel):
    """A validated manual SQL block."""

    name: str = Field(..., description="Capsule name: letters, digits, underscores and hyphens.")
    environment: str = Field(..., description="Environment the capsule targets.")
    purpose: str = Field(..., description="Why this SQL is being run.")
    sql: str = Field(..., description="SQL to execute verbatim.")

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Capsule name cannot be empty")
        if not _CAPSULE_NAME_RE.match(value):
            raise ValueError("Capsule name must contain only letters, digits, underscores and hyphens")
        return value

    @field_validator("environment", "purpose", "sql")
    @classmethod
    def _not_blank(cls, value: str, info: ValidationInfo) -> str:
        if not value or not value.strip():
            raise ValueError(f"Capsule {info.field_name} cannot be empty")
        return value.strip()

    @property
    def checksum(self) -> str:
        """SHA-256 of the SQL text."""
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()

    @property
    def registry_trigger_name(self) -> str:
        return f"{CAPSULE_TRIGGER_PREFIX}{self.name}"
