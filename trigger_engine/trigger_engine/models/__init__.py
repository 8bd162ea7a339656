"""Pydantic domain models shared across the trigger engine."""

from trigger_engine.models.drift import DriftResult, DriftState, DriftSummary
from trigger_engine.models.migration import (
    DropPlan,
    MigrationState,
    MigrationStatus,
    ObjectDiff,
    ObjectStatus,
    PreApplyDiff,
)
from trigger_engine.models.trigger import (
    LiveTrigger,
    RegistrySnapshot,
    TriggerDefinition,
    TriggerSource,
    TriggerTiming,
)

__all__ = [
    "DriftResult",
    "DriftState",
    "DriftSummary",
    "DropPlan",
    "LiveTrigger",
    "MigrationState",
    "MigrationStatus",
    "ObjectDiff",
    "ObjectStatus",
    "PreApplyDiff",
    "RegistrySnapshot",
    "TriggerDefinition",
    "TriggerSource",
    "TriggerTiming",
]
