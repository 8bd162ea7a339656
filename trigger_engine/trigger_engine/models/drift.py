"""Drift classification models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from trigger_engine.models.trigger import LiveTrigger, RegistrySnapshot


class DriftState(str, Enum):
    """Outcome of comparing one registry entry with the live catalog."""

    IN_SYNC = "in_sync"
    DRIFTED = "drifted"
    DISABLED = "disabled"
    DROPPED = "dropped"
    UNKNOWN = "unknown"
    MANUAL_OVERRIDE = "manual_override"


PROBLEM_STATES = frozenset({DriftState.DRIFTED, DriftState.DROPPED, DriftState.UNKNOWN})


class DriftResult(BaseModel):
    """Comparison outcome for a single trigger.  Never persisted."""

    trigger_name: str
    state: DriftState
    details: str = Field(default="", description="Human-readable explanation of the state.")
    expected_sql: str | None = Field(default=None, description="Function body held by the registry.")
    actual_sql: str | None = Field(default=None, description="Function definition found in the database.")
    expected_condition: str | None = Field(default=None, description="WHEN condition held by the registry.")
    registry: RegistrySnapshot | None = None
    live: LiveTrigger | None = None

    @property
    def is_problem(self) -> bool:
        return self.state in PROBLEM_STATES


class DriftSummary(BaseModel):
    """Counts of drift states across the registry."""

    total: int = 0
    in_sync: int = 0
    drifted: int = 0
    disabled: int = 0
    dropped: int = 0
    unknown: int = 0
    manual_override: int = 0

    @classmethod
    def from_results(cls, results: list[DriftResult]) -> DriftSummary:
        counts = {state.value: 0 for state in DriftState}
        for result in results:
            counts[result.state.value] += 1
        return cls(total=len(results), **counts)
