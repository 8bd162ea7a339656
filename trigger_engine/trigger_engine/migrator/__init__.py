"""Versioned trigger migrations."""

from trigger_engine.migrator.loader import MigrationUnit, TriggerMigration, capture_sql, load_migrations
from trigger_engine.migrator.pre_apply import PreApplyComparator, render_pre_apply_report, render_pre_apply_summary
from trigger_engine.migrator.runner import MigrationRunner
from trigger_engine.migrator.safety_validator import SafetyValidator

__all__ = [
    "MigrationRunner",
    "MigrationUnit",
    "PreApplyComparator",
    "SafetyValidator",
    "TriggerMigration",
    "capture_sql",
    "load_migrations",
    "render_pre_apply_report",
    "render_pre_apply_summary",
]
