"""Drift detection and reporting."""

from trigger_engine.drift.detector import DriftDetector, classify
from trigger_engine.drift.reporter import DriftReporter, render_diff, render_report

__all__ = [
    "DriftDetector",
    "DriftReporter",
    "classify",
    "render_diff",
    "render_report",
]
