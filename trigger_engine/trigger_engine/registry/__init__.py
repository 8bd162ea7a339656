"""Trigger registry facade."""

from trigger_engine.registry.manager import TriggerRegistry

__all__ = ["TriggerRegistry"]
