"""Compare what a migration unit would create with what the database holds.

The unit runs in capture mode, so nothing is executed.  Functions and
triggers it creates are looked up in the catalog and classified as new,
modified or unchanged.  Comparison goes through the canonical forms in
:mod:`trigger_engine.sql.normalizer`, so catalog reformatting is not
reported as a change.  Catalog lookups are best-effort: a failed lookup
yields status ``unknown`` for that object.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.introspection.catalog import DatabaseIntrospector
from trigger_engine.lifecycle.best_effort import run_best_effort
from trigger_engine.migrator.loader import MigrationUnit, capture_sql
from trigger_engine.models.migration import DropPlan, ObjectDiff, ObjectStatus, PreApplyDiff
from trigger_engine.models.trigger import LiveTrigger
from trigger_engine.sql.normalizer import same_condition, same_function

logger = logging.getLogger(__name__)

_IDENT = r'(?:"[^"]+"|[A-Za-z_][\w$]*)'
_QUALIFIED = rf"({_IDENT}(?:\s*\.\s*{_IDENT})*)"

_CREATE_FUNCTION_RE = re.compile(rf"CREATE\s+(?:OR\s+REPLACE\s+)?FUNCTION\s+{_QUALIFIED}\s*\(", re.IGNORECASE)
_CREATE_TRIGGER_RE = re.compile(
    rf"CREATE\s+(?:OR\s+REPLACE\s+)?TRIGGER\s+{_QUALIFIED}\s+(BEFORE|AFTER|INSTEAD\s+OF)\s+(.+?)\s+ON\s+{_QUALIFIED}",
    re.IGNORECASE | re.DOTALL,
)
_WHEN_RE = re.compile(r"WHEN\s+\((.+?)\)\s+EXECUTE", re.IGNORECASE | re.DOTALL)
_EXECUTE_RE = re.compile(rf"EXECUTE\s+(?:FUNCTION|PROCEDURE)\s+{_QUALIFIED}\s*\(", re.IGNORECASE)
_DROP_TRIGGER_RE = re.compile(
    rf"DROP\s+TRIGGER\s+(?:IF\s+EXISTS\s+)?{_QUALIFIED}\s+ON\s+{_QUALIFIED}", re.IGNORECASE
)
_DROP_FUNCTION_RE = re.compile(rf"DROP\s+FUNCTION\s+(?:IF\s+EXISTS\s+)?{_QUALIFIED}", re.IGNORECASE)
_EVENT_SPLIT_RE = re.compile(r"\s+OR\s+", re.IGNORECASE)
_LIVE_EVENTS_RE = re.compile(r"\b(?:BEFORE|AFTER|INSTEAD\s+OF)\s+(.+?)\s+ON\s", re.IGNORECASE | re.DOTALL)


def _bare(name: str) -> str:
    """Last part of a possibly qualified name, unquoted; unquoted names are lower-cased."""
    last = re.split(r"\s*\.\s*(?=(?:[^\"]*\"[^\"]*\")*[^\"]*$)", name)[-1]
    if last.startswith('"') and last.endswith('"'):
        return last[1:-1]
    return last.lower()


def _events(raw: str) -> list[str]:
    # "UPDATE OF email" is still an update event.
    return sorted({part.split()[0].lower() for part in _EVENT_SPLIT_RE.split(raw.strip()) if part.strip()})


@dataclass
class ExpectedTrigger:
    name: str
    table_name: str
    timing: str
    events: list[str]
    condition: str | None
    function_name: str | None
    sql: str


@dataclass
class ExpectedState:
    functions: dict[str, str] = field(default_factory=dict)
    triggers: dict[str, ExpectedTrigger] = field(default_factory=dict)
    drops: list[DropPlan] = field(default_factory=list)


def parse_statements(statements: list[str]) -> ExpectedState:
    """Functions and triggers created, and objects dropped, by *statements*."""
    state = ExpectedState()
    for sql in statements:
        for match in _CREATE_FUNCTION_RE.finditer(sql):
            state.functions[_bare(match.group(1))] = sql
        for match in _CREATE_TRIGGER_RE.finditer(sql):
            when = _WHEN_RE.search(sql, match.end())
            execute = _EXECUTE_RE.search(sql, match.end())
            name = _bare(match.group(1))
            state.triggers[name] = ExpectedTrigger(
                name=name,
                table_name=_bare(match.group(4)),
                timing=" ".join(match.group(2).split()).lower(),
                events=_events(match.group(3)),
                condition=when.group(1).strip() if when else None,
                function_name=_bare(execute.group(1)) if execute else None,
                sql=sql,
            )
        for match in _DROP_TRIGGER_RE.finditer(sql):
            state.drops.append(
                DropPlan(object_type="trigger", name=_bare(match.group(1)), table_name=_bare(match.group(2)))
            )
        for match in _DROP_FUNCTION_RE.finditer(sql):
            state.drops.append(DropPlan(object_type="function", name=_bare(match.group(1))))
    return state


def trigger_differences(expected: ExpectedTrigger, live: LiveTrigger) -> list[str]:
    """Human-readable differences between an expected and a live trigger."""
    definition = live.trigger_definition or ""
    events_match = _LIVE_EVENTS_RE.search(definition)
    live_events = _events(events_match.group(1)) if events_match else []
    live_timing = events_match.group(0).split()[0].lower() if events_match else None

    differences: list[str] = []
    if expected.table_name != live.table_name.lower():
        differences.append(f"Table name: expected '{expected.table_name}', actual '{live.table_name}'")
    if live_timing is not None and expected.timing.split()[0] != live_timing:
        differences.append(f"Timing: expected '{expected.timing.upper()}', actual '{live_timing.upper()}'")
    if expected.events != live_events:
        differences.append(f"Events: expected {expected.events}, actual {live_events}")
    if not same_condition(expected.condition, live.condition):
        differences.append(f"Condition: expected '{expected.condition}', actual '{live.condition}'")
    if expected.function_name and live.function_name and expected.function_name != live.function_name.lower():
        differences.append(f"Function: expected '{expected.function_name}', actual '{live.function_name}'")
    return differences


class PreApplyComparator:
    """Preview migration units against the live catalog.

    Parameters
    ----------
    introspector:
        Catalog reader used for function and trigger lookups.
    session:
        Session the lookups' savepoints are nested in.
    """

    def __init__(self, introspector: DatabaseIntrospector, session: AsyncSession) -> None:
        self._introspector = introspector
        self._session = session

    async def compare(self, unit: MigrationUnit, direction: str = "up") -> PreApplyDiff:
        state = parse_statements(await capture_sql(unit.load(), direction))
        diff = PreApplyDiff(version=unit.version, filename=unit.filename, direction=direction, drops=state.drops)

        for name, sql in state.functions.items():
            diff.functions.append(await self._compare_function(name, sql))
        for expected in state.triggers.values():
            diff.triggers.append(await self._compare_trigger(expected))

        logger.debug(
            "Pre-apply %s (%s): %d function(s), %d trigger(s), %d drop(s)",
            unit.filename,
            direction,
            len(diff.functions),
            len(diff.triggers),
            len(diff.drops),
        )
        return diff

    async def _compare_function(self, name: str, sql: str) -> ObjectDiff:
        lookup = await run_best_effort(self._session, "find_function", lambda: self._introspector.find_function(name))
        if not lookup.ok:
            return ObjectDiff(
                object_type="function",
                name=name,
                status=ObjectStatus.UNKNOWN,
                message=f"Could not read function from the database: {lookup.error}",
                expected=sql,
            )
        if lookup.value is None:
            return ObjectDiff(
                object_type="function",
                name=name,
                status=ObjectStatus.NEW,
                message="Function will be created",
                expected=sql,
            )

        actual = lookup.value.get("function_definition")
        if same_function(sql, actual):
            return ObjectDiff(
                object_type="function",
                name=name,
                status=ObjectStatus.UNCHANGED,
                message="Function matches expected state",
            )
        return ObjectDiff(
            object_type="function",
            name=name,
            status=ObjectStatus.MODIFIED,
            message="Function body differs from expected",
            expected=sql,
            actual=actual,
        )

    async def _compare_trigger(self, expected: ExpectedTrigger) -> ObjectDiff:
        lookup = await run_best_effort(
            self._session, "find_trigger", lambda: self._introspector.find_trigger(expected.name)
        )
        if not lookup.ok:
            return ObjectDiff(
                object_type="trigger",
                name=expected.name,
                status=ObjectStatus.UNKNOWN,
                message=f"Could not read trigger from the database: {lookup.error}",
                expected=expected.sql,
            )
        live: LiveTrigger | None = lookup.value
        if live is None:
            return ObjectDiff(
                object_type="trigger",
                name=expected.name,
                status=ObjectStatus.NEW,
                message="Trigger will be created",
                expected=expected.sql,
            )

        differences = trigger_differences(expected, live)
        if not differences:
            return ObjectDiff(
                object_type="trigger",
                name=expected.name,
                status=ObjectStatus.UNCHANGED,
                message="Trigger matches expected state",
            )
        return ObjectDiff(
            object_type="trigger",
            name=expected.name,
            status=ObjectStatus.MODIFIED,
            message="Trigger definition differs from expected",
            expected=expected.sql,
            actual=live.trigger_definition,
            differences=differences,
        )


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

_STATUS_LABELS = {
    ObjectStatus.NEW: "NEW (will be created)",
    ObjectStatus.MODIFIED: "MODIFIED (will overwrite existing {object_type})",
    ObjectStatus.UNCHANGED: "UNCHANGED",
    ObjectStatus.UNKNOWN: "UNKNOWN (database lookup failed)",
}


def _indent(text: str, spaces: int) -> list[str]:
    return [" " * spaces + line for line in text.splitlines()]


def _object_lines(item: ObjectDiff) -> list[str]:
    lines = [f"  {item.name}: {_STATUS_LABELS[item.status].format(object_type=item.object_type)}"]
    if item.status == ObjectStatus.MODIFIED:
        lines.extend(f"    - {difference}" for difference in item.differences)
        lines.append("    Expected:")
        lines.extend(_indent(item.expected or "", 6))
        lines.append("    Current:")
        lines.extend(_indent(item.actual or "", 6))
    elif item.status == ObjectStatus.UNKNOWN:
        lines.append(f"    {item.message}")
    return lines


def render_pre_apply_report(diff: PreApplyDiff) -> str:
    """Plain-text report for one unit."""
    if not diff.has_differences:
        return "No differences detected. Migration is safe to apply."

    lines = [
        "=" * 80,
        "Pre-Apply Comparison Report",
        f"Migration: {diff.filename} ({diff.direction})",
        "=" * 80,
    ]
    for title, items in (("Functions:", diff.functions), ("Triggers:", diff.triggers)):
        if items:
            lines.extend(["", title])
            for item in items:
                lines.extend(_object_lines(item))
    if diff.drops:
        lines.extend(["", "Drops:"])
        for drop in diff.drops:
            target = f" ON {drop.table_name}" if drop.table_name else ""
            lines.append(f"  {drop.object_type} {drop.name}{target}")

    modified = [i for i in [*diff.functions, *diff.triggers] if i.status == ObjectStatus.MODIFIED]
    if modified or diff.drops:
        lines.extend(
            [
                "",
                "WARNING: This migration will modify or remove existing database objects.",
                "Review the changes above before applying.",
            ]
        )
    lines.append("=" * 80)
    return "\n".join(lines)


def render_pre_apply_summary(diff: PreApplyDiff) -> str:
    """One-line summary for one unit."""
    if not diff.has_differences:
        return f"{diff.filename}: no differences"
    items = [*diff.functions, *diff.triggers]
    new = sum(1 for i in items if i.status == ObjectStatus.NEW)
    modified = sum(1 for i in items if i.status == ObjectStatus.MODIFIED)
    parts = [f"{new} new", f"{modified} modified"]
    if diff.drops:
        parts.append(f"{len(diff.drops)} dropped")
    return f"{diff.filename}: {', '.join(parts)}"
