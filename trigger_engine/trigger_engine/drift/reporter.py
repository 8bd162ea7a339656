"""Human-readable drift summaries, reports and diffs."""

from __future__ import annotations

import difflib

from trigger_engine.drift.detector import DriftDetector
from trigger_engine.models.drift import DriftResult, DriftState, DriftSummary

_RULE = "=" * 80
_THIN_RULE = "-" * 80


class DriftReporter:
    """Aggregates :class:`DriftDetector` results for display."""

    def __init__(self, detector: DriftDetector) -> None:
        self._detector = detector

    async def summary(self) -> DriftSummary:
        """Counts per state across the registry, including unmanaged live triggers."""
        results = await self._detector.detect_all(include_unmanaged=True)
        return DriftSummary.from_results(results)

    async def drifted_list(self) -> list[DriftResult]:
        results = await self._detector.detect_all()
        return [r for r in results if r.state == DriftState.DRIFTED]

    async def problematic(self) -> list[DriftResult]:
        """Drifted, dropped and unknown triggers, unmanaged ones included."""
        results = await self._detector.detect_all(include_unmanaged=True)
        return [r for r in results if r.is_problem]

    async def report(self, trigger_name: str) -> str:
        result = await self._detector.detect(trigger_name)
        return render_report(result)

    async def diff(self, trigger_name: str) -> str:
        result = await self._detector.detect(trigger_name)
        return render_diff(result)


def render_report(result: DriftResult) -> str:
    """Render a multi-line report for one drift result."""
    lines = [
        _RULE,
        f"Drift Report: {result.trigger_name}",
        _RULE,
        "",
        f"State: {result.state.value.upper()}",
        f"Details: {result.details}",
        "",
    ]

    if result.registry is not None:
        reg = result.registry
        lines += [
            "Registry Information:",
            f"  Table: {reg.table_name}",
            f"  Version: {reg.version}",
            f"  Enabled: {reg.enabled}",
            f"  Source: {reg.source}",
            f"  Environment: {reg.environment or 'all'}",
            f"  Installed At: {reg.installed_at or 'never'}",
            f"  Checksum: {reg.checksum}",
            "",
        ]

    if result.live is not None:
        live = result.live
        lines += [
            "Database Information:",
            f"  Table: {live.schema_name}.{live.table_name}",
            f"  Function: {live.function_name or 'unknown'}",
            f"  Enabled: {live.enabled}",
            f"  Condition: {live.condition or 'none'}",
            "",
        ]

    if result.state == DriftState.DRIFTED:
        lines += [_THIN_RULE, render_diff(result), ""]

    lines.append(_RULE)
    return "\n".join(lines)


def render_diff(result: DriftResult) -> str:
    """Unified diff of registered vs live function text plus condition comparison."""
    if result.state != DriftState.DRIFTED:
        return "No drift detected"

    expected = (result.expected_sql or "").splitlines(keepends=True)
    actual = (result.actual_sql or "").splitlines(keepends=True)
    body = "".join(
        difflib.unified_diff(
            expected,
            actual,
            fromfile=f"registry/{result.trigger_name}",
            tofile=f"database/{result.trigger_name}",
        )
    )
    parts = [body.rstrip("\n") if body else "Function definitions are identical"]

    registered_condition = result.expected_condition
    live_condition = result.live.condition if result.live is not None else None
    if registered_condition != live_condition:
        parts.append(
            f"Condition differs:\n  registry: {registered_condition or 'none'}\n  database: {live_condition or 'none'}"
        )
    return "\n".join(parts)
