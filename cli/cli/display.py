"""Rich output formatting for the TriggerLayer CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

if TYPE_CHECKING:
    from trigger_engine.generator.service import GeneratorPreview
    from trigger_engine.models.drift import DriftResult, DriftSummary
    from trigger_engine.models.migration import MigrationStatus
    from trigger_engine.testing.dry_run import DryRunResult, EstimatedImpact
    from trigger_engine.testing.safe_executor import ExecutionTestResult, FunctionTestResult
    from trigger_engine.testing.syntax_validator import ValidationReport


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "in_sync": "green",
    "drifted": "red",
    "dropped": "red",
    "unknown": "yellow",
    "manual_override": "magenta",
    "disabled": "dim",
    "success": "green",
    "failure": "red",
    "up": "green",
    "down": "dim",
}


def _coloured_status(status: str) -> str:
    """Return a Rich markup string with the status colour-coded."""
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


def _enabled_label(enabled: bool) -> str:
    return "[green]yes[/green]" if enabled else "[dim]no[/dim]"


# ---------------------------------------------------------------------------
# Registry entries
# ---------------------------------------------------------------------------


def display_trigger_list(console: Console, entries: list[dict[str, Any]]) -> None:
    """Render registry entries as a table.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    entries:
        Entry dicts as produced by the CLI's serialisation helper.
    """
    if not entries:
        console.print("[dim]No triggers registered.[/dim]")
        return

    table = Table(
        title=f"Registered Triggers ({len(entries)})",
        show_lines=False,
        pad_edge=True,
        expand=False,
    )
    table.add_column("Trigger", style="bold")
    table.add_column("Table")
    table.add_column("Version", justify="right")
    table.add_column("Enabled", justify="center")
    table.add_column("Source")
    table.add_column("Environment")
    table.add_column("Last Verified")

    for entry in entries:
        table.add_row(
            escape(entry["trigger_name"]),
            escape(entry["table_name"]),
            str(entry["version"]),
            _enabled_label(entry["enabled"]),
            entry["source"],
            entry.get("environment") or "-",
            entry.get("last_verified_at") or "-",
        )

    console.print(table)


def display_trigger_detail(console: Console, entry: dict[str, Any]) -> None:
    """Render one registry entry with its stored function body."""
    lines = [
        f"[bold]Table:[/bold]        {escape(entry['table_name'])}",
        f"[bold]Version:[/bold]      {entry['version']}",
        f"[bold]Enabled:[/bold]      {_enabled_label(entry['enabled'])}",
        f"[bold]Timing:[/bold]       {entry.get('timing') or '-'}",
        f"[bold]Source:[/bold]       {entry['source']}",
        f"[bold]Environment:[/bold]  {entry.get('environment') or '-'}",
        f"[bold]Condition:[/bold]    {escape(entry.get('condition') or '-')}",
        f"[bold]Checksum:[/bold]     {entry['checksum'][:16]}...",
        f"[bold]Installed:[/bold]    {entry.get('installed_at') or '-'}",
        f"[bold]Verified:[/bold]     {entry.get('last_verified_at') or '-'}",
        f"[bold]Executed:[/bold]     {entry.get('last_executed_at') or '-'}",
    ]
    console.print(Panel("\n".join(lines), title=escape(entry["trigger_name"]), border_style="blue"))

    body = entry.get("function_body")
    if body:
        console.print(Syntax(body, "sql", line_numbers=False, word_wrap=True))
    else:
        console.print("[dim]No function body stored.[/dim]")


# ---------------------------------------------------------------------------
# Drift
# ---------------------------------------------------------------------------


def display_drift_results(console: Console, results: list[DriftResult], summary: DriftSummary | None = None) -> None:
    """Render drift classifications, followed by per-state counts."""
    if not results:
        console.print("[dim]No triggers to check.[/dim]")
        return

    table = Table(title="Trigger Drift", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Trigger", style="bold")
    table.add_column("State")
    table.add_column("Details")

    for result in results:
        table.add_row(
            escape(result.trigger_name),
            _coloured_status(result.state.value),
            escape(result.details),
        )

    console.print(table)

    if summary is not None:
        parts = [
            f"[bold]{summary.total}[/bold] checked",
            f"[green]{summary.in_sync} in sync[/green]",
            f"[red]{summary.drifted} drifted[/red]",
            f"[red]{summary.dropped} dropped[/red]",
            f"[yellow]{summary.unknown} unknown[/yellow]",
            f"[magenta]{summary.manual_override} manual[/magenta]",
            f"[dim]{summary.disabled} disabled[/dim]",
        ]
        console.print(" | ".join(parts))


def display_report_text(console: Console, text: str) -> None:
    """Print a preformatted report without markup interpretation."""
    console.print(text, markup=False, highlight=False)


# ---------------------------------------------------------------------------
# Validation and testing
# ---------------------------------------------------------------------------


def display_validation_report(console: Console, trigger_name: str, report: ValidationReport) -> None:
    """Render the three validation stages for one trigger."""
    table = Table(title=f"Validation: {escape(trigger_name)}", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Check", style="bold")
    table.add_column("Result")
    table.add_column("Messages")

    for label, result in (
        ("definition", report.definition),
        ("function", report.function),
        ("condition", report.condition),
    ):
        messages = [*result.errors, *result.notes]
        table.add_row(
            label,
            "[green]valid[/green]" if result.valid else "[red]invalid[/red]",
            escape("; ".join(messages)) if messages else "-",
        )

    console.print(table)


def display_dry_run(console: Console, result: DryRunResult, impact: EstimatedImpact) -> None:
    """Render the SQL a trigger would execute and the objects it touches."""
    for part in result.sql_parts:
        console.print(f"[bold]-- {escape(part.description)}[/bold]")
        console.print(Syntax(part.sql, "sql", line_numbers=False, word_wrap=True))

    lines = [
        f"[bold]Tables:[/bold]     {', '.join(impact.tables_affected) or '-'}",
        f"[bold]Functions:[/bold]  {', '.join(impact.functions_created) or '-'}",
        f"[bold]Triggers:[/bold]   {', '.join(impact.triggers_created) or '-'}",
    ]
    console.print(Panel("\n".join(lines), title="Estimated Impact", border_style="blue"))


def display_generator_preview(console: Console, preview: GeneratorPreview) -> None:
    """Render the files the generator would write."""
    console.print(f"[bold]Migration:[/bold]  {escape(preview.migration_path)}")
    console.print(Syntax(preview.migration_code, "python", line_numbers=False, word_wrap=True))
    console.print(f"[bold]Definition:[/bold] {escape(preview.definition_path)}")
    console.print(Syntax(preview.definition_json, "json", line_numbers=False, word_wrap=True))


def display_test_result(console: Console, trigger_name: str, result: ExecutionTestResult | FunctionTestResult) -> None:
    """Render the outcome of a rolled-back test execution."""
    status = "[green]PASSED[/green]" if result.success else "[red]FAILED[/red]"
    console.print(f"[bold]Test {escape(trigger_name)}:[/bold] {status} [dim](all changes rolled back)[/dim]")
    for line in result.output:
        console.print(f"  [dim]{escape(line)}[/dim]")
    for error in result.errors:
        console.print(f"  [red]{escape(error)}[/red]")


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


def display_audit_entries(console: Console, entries: list[dict[str, Any]]) -> None:
    """Render audit log entries, most recent first."""
    if not entries:
        console.print("[dim]No audit entries found.[/dim]")
        return

    table = Table(title=f"Audit Log ({len(entries)})", show_lines=False, pad_edge=True, expand=False)
    table.add_column("When", style="dim")
    table.add_column("Operation", style="bold")
    table.add_column("Trigger")
    table.add_column("Status")
    table.add_column("Actor")
    table.add_column("Environment")
    table.add_column("Reason / Error")

    for entry in entries:
        actor = entry.get("actor") or {}
        detail = entry.get("error_message") or entry.get("reason") or "-"
        table.add_row(
            entry.get("created_at") or "-",
            entry["operation"],
            escape(entry.get("trigger_name") or "-"),
            _coloured_status(entry["status"]),
            escape(f"{actor.get('type', '?')}:{actor.get('id', '?')}"),
            entry.get("environment") or "-",
            escape(detail),
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


def display_migration_status(console: Console, statuses: list[MigrationStatus], current_version: int) -> None:
    """Render applied/pending state for every migration file."""
    if not statuses:
        console.print("[dim]No trigger migrations found.[/dim]")
        return

    table = Table(title="Trigger Migrations", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Status")
    table.add_column("Version", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("File", style="dim")

    for status in statuses:
        table.add_row(
            _coloured_status(status.status.value),
            str(status.version),
            status.name,
            status.filename,
        )

    console.print(table)
    pending = sum(1 for s in statuses if s.status.value == "down")
    console.print(f"[bold]Current version:[/bold] {current_version} | [yellow]{pending} pending[/yellow]")
