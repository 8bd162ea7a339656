"""State persistence layer: registry, audit log and migration versions."""

from trigger_engine.state.database import get_engine, get_session
from trigger_engine.state.repository import (
    AuditRepository,
    MigrationVersionRepository,
    TriggerRegistryRepository,
)

__all__ = [
    "AuditRepository",
    "MigrationVersionRepository",
    "TriggerRegistryRepository",
    "get_engine",
    "get_session",
]
