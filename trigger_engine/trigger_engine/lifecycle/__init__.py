"""Guarded lifecycle operations on registered triggers."""

from trigger_engine.lifecycle.best_effort import StepOutcome, run_best_effort
from trigger_engine.lifecycle.service import TriggerLifecycle, require_reason

__all__ = ["StepOutcome", "TriggerLifecycle", "require_reason", "run_best_effort"]
