"""TriggerLayer CLI application -- Typer-based operator interface.

Provides commands for listing registered triggers, checking drift, running
guarded lifecycle operations (enable, disable, drop, re-execute), validating
and test-running trigger definitions, reading the audit log, generating,
previewing and applying trigger migrations and running manual SQL
capsules.  Human-readable output goes to *stderr* via Rich; ``--json``
writes machine-readable output to *stdout* so that pipelines can compose
cleanly.

Every failure surfaced by the engine is printed with its recovery
suggestion and exits with code 1.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import pydantic
import typer
from rich.console import Console
from rich.markup import escape
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cli.display import (
    display_audit_entries,
    display_drift_results,
    display_dry_run,
    display_generator_preview,
    display_migration_status,
    display_report_text,
    display_test_result,
    display_trigger_detail,
    display_trigger_list,
    display_validation_report,
)
from trigger_engine.config import Settings, load_settings
from trigger_engine.errors import TriggerEngineError, ValidationError
from trigger_engine.generator import GeneratorForm, TriggerGenerator
from trigger_engine.introspection.catalog import DatabaseIntrospector
from trigger_engine.logging_config import configure_logging
from trigger_engine.migrator.pre_apply import render_pre_apply_report, render_pre_apply_summary
from trigger_engine.migrator.runner import MigrationRunner
from trigger_engine.models.drift import DriftSummary
from trigger_engine.models.trigger import TriggerDefinition, TriggerSource
from trigger_engine.registry.manager import TriggerRegistry
from trigger_engine.safety.context import Actor, OperationContext
from trigger_engine.safety.kill_switch import CONFIRMATION_ENV_VAR, KillSwitch
from trigger_engine.safety.permissions import Action, PermissionChecker, role_policy
from trigger_engine.sql.capsule import SQLCapsule
from trigger_engine.sql.executor import CapsuleExecutor
from trigger_engine.state.database import get_engine, get_session
from trigger_engine.state.repository import AuditRepository
from trigger_engine.state.sqlite_adapter import create_local_tables
from trigger_engine.state.tables import TriggerAuditLogTable, TriggerRegistryTable
from trigger_engine.testing.dry_run import DryRun
from trigger_engine.testing.safe_executor import FunctionTester, SafeExecutor
from trigger_engine.testing.syntax_validator import SyntaxValidator

T = TypeVar("T")

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="triggerlayer",
    help="TriggerLayer - PostgreSQL trigger registry, drift detection and lifecycle control",
    no_args_is_help=True,
)
console = Console(stderr=True)

migrate_app = typer.Typer(
    name="migrate",
    help="Apply and roll back versioned trigger migrations.",
    no_args_is_help=True,
)
app.add_typer(migrate_app, name="migrate")

capsule_app = typer.Typer(
    name="capsule",
    help="Run manual SQL capsules behind the kill switch.",
    no_args_is_help=True,
)
app.add_typer(capsule_app, name="capsule")

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_env: str | None = None
_database_url: str | None = None
_actor_id: str = "console"
_role: str | None = None
_verbose: bool = False


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    env: str | None = typer.Option(
        None,
        "--env",
        help="Environment the command runs against (overrides TRIGGER_ENVIRONMENT).",
    ),
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        help="Database URL (overrides TRIGGER_DATABASE_URL).",
    ),
    actor: str = typer.Option(
        "console",
        "--actor",
        help="Identity recorded in the audit log.",
        envvar="TRIGGER_ACTOR",
    ),
    role: str | None = typer.Option(
        None,
        "--role",
        help="Enforce role-based permissions as this role (viewer | operator | admin).",
        envvar="TRIGGER_ROLE",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Global options applied to every command."""
    global _json_output, _env, _database_url, _actor_id, _role, _verbose  # noqa: PLW0603
    _json_output = json_mode
    _env = env
    _database_url = database_url
    _actor_id = actor
    _role = role
    _verbose = verbose


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


@dataclass
class _Services:
    """Engine objects bound to one session for the duration of a command."""

    settings: Settings
    session: AsyncSession
    kill_switch: KillSwitch
    permissions: PermissionChecker
    introspector: DatabaseIntrospector
    registry: TriggerRegistry

    def context(self, confirmation: str | None = None) -> OperationContext:
        return OperationContext(
            environment=self.settings.environment,
            actor=Actor(type="console", id=_actor_id, role=_role),
            confirmation=confirmation,
        )

    def require(self, action: Action) -> None:
        ctx = self.context()
        self.permissions.check(ctx.actor, action, ctx.environment)


def _settings() -> Settings:
    overrides: dict[str, Any] = {}
    if _env is not None:
        overrides["environment"] = _env
    if _database_url is not None:
        overrides["database_url"] = _database_url
    return load_settings(**overrides)


@asynccontextmanager
async def _service_scope() -> AsyncIterator[_Services]:
    """Build the engine, one session and the services that share it."""
    settings = _settings()
    configure_logging(
        "DEBUG" if _verbose or settings.debug else "WARNING",
        structured=settings.structured_logging,
    )
    engine = get_engine(settings.database_url, settings.database_pool_size, settings.database_max_overflow)
    try:
        if settings.database_url.startswith("sqlite"):
            await create_local_tables(engine)
        async with get_session(engine) as session:
            kill_switch = KillSwitch(settings.kill_switch_config())
            permissions = PermissionChecker(role_policy if _role else None)
            introspector = DatabaseIntrospector(session, excluded_tables=settings.excluded_tables)
            yield _Services(
                settings=settings,
                session=session,
                kill_switch=kill_switch,
                permissions=permissions,
                introspector=introspector,
                registry=TriggerRegistry(
                    session,
                    kill_switch=kill_switch,
                    permissions=permissions,
                    introspector=introspector,
                ),
            )
    finally:
        await engine.dispose()


def _fail(message: str, recovery: str | None = None, payload: dict[str, Any] | None = None) -> NoReturn:
    if _json_output:
        sys.stdout.write(json.dumps(payload or {"message": message}, indent=2, default=str) + "\n")
    console.print(f"[red]Error:[/red] {escape(message)}")
    if recovery:
        console.print(f"[yellow]Recovery:[/yellow] {escape(recovery)}")
    raise typer.Exit(code=1)


def _run(func: Callable[[_Services], Awaitable[T]]) -> T:
    """Run *func* against a fresh service scope, mapping failures to exit code 1."""

    async def _main() -> T:
        async with _service_scope() as services:
            return await func(services)

    try:
        return asyncio.run(_main())
    except TriggerEngineError as exc:
        _fail(exc.message, exc.recovery_suggestion, exc.to_dict())
    except pydantic.ValidationError as exc:
        _fail(f"Invalid configuration or input: {exc}", "Check TRIGGER_* environment variables and command arguments.")
    except (SQLAlchemyError, OSError) as exc:
        _fail(f"Database error: {exc}", "Check that the database is reachable and TRIGGER_DATABASE_URL is correct.")


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _entry_dict(row: TriggerRegistryTable, *, include_body: bool = False) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "trigger_name": row.trigger_name,
        "table_name": row.table_name,
        "version": row.version,
        "enabled": row.enabled,
        "source": row.source,
        "checksum": row.checksum,
        "timing": row.timing,
        "condition": row.condition,
        "environment": row.environment,
        "installed_at": _iso(row.installed_at),
        "last_verified_at": _iso(row.last_verified_at),
        "last_executed_at": _iso(row.last_executed_at),
        "updated_at": _iso(row.updated_at),
    }
    if include_body:
        entry["function_body"] = row.function_body
        entry["definition"] = row.definition
    return entry


def _audit_dict(row: TriggerAuditLogTable) -> dict[str, Any]:
    return {
        "id": row.id,
        "trigger_name": row.trigger_name,
        "operation": row.operation,
        "status": row.status,
        "actor": row.actor,
        "environment": row.environment,
        "reason": row.reason,
        "confirmation_text": row.confirmation_text,
        "before_state": row.before_state,
        "after_state": row.after_state,
        "diff": row.diff,
        "error_message": row.error_message,
        "entry_hash": row.entry_hash,
        "created_at": _iso(row.created_at),
    }


async def _definition(services: _Services, trigger_name: str) -> TriggerDefinition:
    return TriggerDefinition.from_registry_row(await services.registry.get(trigger_name))


_CONFIRM_OPTION_HELP = f"Confirmation text for protected environments (or set {CONFIRMATION_ENV_VAR})."
_PATH_OPTION_HELP = "Migrations directory (overrides TRIGGER_MIGRATIONS_PATH)."


# ---------------------------------------------------------------------------
# register / list / show
# ---------------------------------------------------------------------------


@app.command()
def register(
    definition_file: Path = typer.Argument(
        ...,
        help="JSON file holding a trigger definition.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    function_file: Path | None = typer.Option(
        None,
        "--function-sql",
        help="SQL file with the function (and trigger) DDL; overrides function_body in the definition.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
    source: TriggerSource = typer.Option(TriggerSource.DSL, "--source", help="Origin recorded for the entry."),
) -> None:
    """Register (or update) a trigger definition in the registry."""
    try:
        definition = TriggerDefinition.model_validate_json(definition_file.read_text(encoding="utf-8"))
    except pydantic.ValidationError as exc:
        _fail(f"Invalid trigger definition in {definition_file.name}: {exc}")
    if function_file is not None:
        definition = definition.model_copy(update={"function_body": function_file.read_text(encoding="utf-8")})

    async def _register(svc: _Services) -> dict[str, Any]:
        row = await svc.registry.register(definition, source=source, context=svc.context())
        return _entry_dict(row)

    entry = _run(_register)
    if _json_output:
        _emit(entry)
    else:
        console.print(
            f"[green]Registered[/green] [bold]{escape(entry['trigger_name'])}[/bold] "
            f"v{entry['version']} on {escape(entry['table_name'])}"
        )


@app.command("list")
def list_triggers(
    table: str | None = typer.Option(None, "--table", help="Only triggers attached to this table."),
    enabled: bool | None = typer.Option(None, "--enabled/--disabled", help="Filter by registry enabled flag."),
    source: TriggerSource | None = typer.Option(None, "--source", help="Filter by entry origin."),
) -> None:
    """List registered triggers."""

    async def _list(svc: _Services) -> list[dict[str, Any]]:
        svc.require(Action.VIEW_TRIGGERS)
        rows = await svc.registry.for_table(table) if table else await svc.registry.entries()
        if enabled is not None:
            rows = [row for row in rows if row.enabled is enabled]
        if source is not None:
            rows = [row for row in rows if row.source == source.value]
        return [_entry_dict(row) for row in rows]

    entries = _run(_list)
    if _json_output:
        _emit(entries)
    else:
        display_trigger_list(console, entries)


@app.command()
def show(trigger_name: str = typer.Argument(..., help="Registered trigger name.")) -> None:
    """Show one registry entry, including its stored function body."""

    async def _show(svc: _Services) -> dict[str, Any]:
        svc.require(Action.VIEW_TRIGGERS)
        return _entry_dict(await svc.registry.get(trigger_name), include_body=True)

    entry = _run(_show)
    if _json_output:
        _emit(entry)
    else:
        display_trigger_detail(console, entry)


# ---------------------------------------------------------------------------
# drift
# ---------------------------------------------------------------------------


@app.command()
def drift(
    trigger_name: str | None = typer.Argument(None, help="Check only this trigger."),
    include_unmanaged: bool = typer.Option(
        False,
        "--include-unmanaged",
        help="Also report live triggers the registry does not manage.",
    ),
    check: bool = typer.Option(False, "--check", help="Exit with code 1 when any trigger is drifted, dropped or unknown."),
) -> None:
    """Compare registry entries against the live database."""

    async def _drift(svc: _Services) -> list[Any]:
        svc.require(Action.VIEW_DIFFS)
        if trigger_name is not None:
            return [await svc.registry.verify(trigger_name)]
        return await svc.registry.detector.detect_all(include_unmanaged=include_unmanaged)

    results = _run(_drift)
    summary = DriftSummary.from_results(results)

    if _json_output:
        _emit(
            {
                "summary": summary.model_dump(mode="json"),
                "results": [r.model_dump(mode="json", exclude={"registry", "live"}) for r in results],
            }
        )
    else:
        display_drift_results(console, results, summary)

    if check and any(r.is_problem for r in results):
        raise typer.Exit(code=1)


@app.command("drift-report")
def drift_report(
    trigger_name: str = typer.Argument(..., help="Registered trigger name."),
    diff: bool = typer.Option(True, "--diff/--no-diff", help="Append a unified diff of the function definitions."),
) -> None:
    """Print a detailed drift report for one trigger."""

    async def _report(svc: _Services) -> dict[str, Any]:
        svc.require(Action.VIEW_DIFFS)
        result = await svc.registry.detector.detect(trigger_name)
        report = await svc.registry.reporter.report(trigger_name)
        unified = await svc.registry.reporter.diff(trigger_name) if diff else None
        return {"result": result, "report": report, "diff": unified}

    outcome = _run(_report)
    if _json_output:
        _emit(
            {
                "trigger_name": trigger_name,
                "state": outcome["result"].state.value,
                "details": outcome["result"].details,
                "report": outcome["report"],
                "diff": outcome["diff"],
            }
        )
        return

    display_report_text(console, outcome["report"])
    if outcome["diff"]:
        console.print()
        display_report_text(console, outcome["diff"])


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _lifecycle(
    operation: str,
    trigger_name: str,
    confirm: str | None,
    call: Callable[[_Services, OperationContext], Awaitable[bool]],
) -> None:
    async def _apply(svc: _Services) -> bool:
        return await call(svc, svc.context(confirm))

    _run(_apply)
    if _json_output:
        _emit({"trigger_name": trigger_name, "operation": operation, "success": True})
    else:
        console.print(f"[green]Trigger {escape(trigger_name)} {operation}[/green]")


@app.command()
def enable(
    trigger_name: str = typer.Argument(..., help="Registered trigger name."),
    confirm: str | None = typer.Option(None, "--confirm", help=_CONFIRM_OPTION_HELP, envvar=CONFIRMATION_ENV_VAR),
) -> None:
    """Enable a trigger in the database and the registry."""
    _lifecycle("enabled", trigger_name, confirm, lambda svc, ctx: svc.registry.enable(trigger_name, ctx))


@app.command()
def disable(
    trigger_name: str = typer.Argument(..., help="Registered trigger name."),
    confirm: str | None = typer.Option(None, "--confirm", help=_CONFIRM_OPTION_HELP, envvar=CONFIRMATION_ENV_VAR),
) -> None:
    """Disable a trigger in the database and the registry."""
    _lifecycle("disabled", trigger_name, confirm, lambda svc, ctx: svc.registry.disable(trigger_name, ctx))


@app.command()
def drop(
    trigger_name: str = typer.Argument(..., help="Registered trigger name."),
    reason: str | None = typer.Option(None, "--reason", help="Why the trigger is being dropped (required)."),
    confirm: str | None = typer.Option(None, "--confirm", help=_CONFIRM_OPTION_HELP, envvar=CONFIRMATION_ENV_VAR),
) -> None:
    """Drop a trigger from the database and delete its registry entry."""
    _lifecycle("dropped", trigger_name, confirm, lambda svc, ctx: svc.registry.drop(trigger_name, ctx, reason))


@app.command("re-execute")
def re_execute(
    trigger_name: str = typer.Argument(..., help="Registered trigger name."),
    reason: str | None = typer.Option(None, "--reason", help="Why the trigger is being recreated (required)."),
    confirm: str | None = typer.Option(None, "--confirm", help=_CONFIRM_OPTION_HELP, envvar=CONFIRMATION_ENV_VAR),
) -> None:
    """Recreate a trigger from the function body stored in the registry."""
    _lifecycle(
        "re-executed",
        trigger_name,
        confirm,
        lambda svc, ctx: svc.registry.re_execute(trigger_name, ctx, reason),
    )


# ---------------------------------------------------------------------------
# validate / dry-run / test
# ---------------------------------------------------------------------------


@app.command()
def validate(
    trigger_name: str | None = typer.Argument(None, help="Validate one trigger; omit to check every entry."),
) -> None:
    """Validate trigger definitions, function syntax and WHEN conditions."""
    if trigger_name is None:

        async def _validate_all(svc: _Services) -> int:
            svc.require(Action.VIEW_TRIGGERS)
            await svc.registry.validate()
            return len(await svc.registry.entries())

        count = _run(_validate_all)
        if _json_output:
            _emit({"valid": True, "entries_checked": count})
        else:
            console.print(f"[green]All {count} registry entries are valid.[/green]")
        return

    async def _validate_one(svc: _Services) -> Any:
        svc.require(Action.TEST_TRIGGER)
        definition = await _definition(svc, trigger_name)
        return await SyntaxValidator(definition, svc.session).validate_all()

    report = _run(_validate_one)
    if _json_output:
        _emit({"trigger_name": trigger_name, "valid": report.valid, **report.model_dump(mode="json")})
    else:
        display_validation_report(console, trigger_name, report)

    if not report.valid:
        raise typer.Exit(code=1)


@app.command("dry-run")
def dry_run(trigger_name: str = typer.Argument(..., help="Registered trigger name.")) -> None:
    """Show the SQL a trigger would execute without executing it."""

    async def _dry_run(svc: _Services) -> Any:
        svc.require(Action.DRY_RUN_SQL)
        return DryRun(await _definition(svc, trigger_name)).generate_sql()

    result = _run(_dry_run)
    if _json_output:
        _emit({**result.model_dump(mode="json"), "sql": result.sql})
    else:
        display_dry_run(console, result, result.estimated_impact)


@app.command()
def test(
    trigger_name: str = typer.Argument(..., help="Registered trigger name."),
    data: str | None = typer.Option(None, "--data", help="JSON object inserted as a sample row."),
    function_only: bool = typer.Option(False, "--function-only", help="Only create the function, not the trigger."),
) -> None:
    """Create the trigger in a rolled-back transaction and report what happened."""
    test_data: dict[str, Any] | None = None
    if data is not None:
        try:
            test_data = json.loads(data)
        except json.JSONDecodeError as exc:
            _fail(f"--data is not valid JSON: {exc}")
        if not isinstance(test_data, dict):
            _fail("--data must be a JSON object mapping column names to values")

    async def _test(svc: _Services) -> Any:
        svc.require(Action.TEST_TRIGGER)
        definition = await _definition(svc, trigger_name)
        if function_only:
            return await FunctionTester(definition, svc.session, svc.introspector).test_function_only()
        return await SafeExecutor(definition, svc.session).test_execute(test_data)

    result = _run(_test)
    if _json_output:
        _emit({"trigger_name": trigger_name, **result.model_dump(mode="json")})
    else:
        display_test_result(console, trigger_name, result)

    if not result.success:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# audit
# ---------------------------------------------------------------------------


@app.command()
def audit(
    trigger_name: str | None = typer.Option(None, "--trigger", help="Only entries for this trigger."),
    operation: str | None = typer.Option(None, "--operation", help="Only entries for this operation."),
    status: str | None = typer.Option(None, "--status", help="success or failure."),
    limit: int = typer.Option(50, "--limit", min=1, help="Maximum entries to show."),
    verify: bool = typer.Option(False, "--verify", help="Verify the audit hash chain instead of listing entries."),
) -> None:
    """Read the audit log."""

    async def _audit(svc: _Services) -> Any:
        svc.require(Action.VIEW_TRIGGERS)
        repo = AuditRepository(svc.session)
        if verify:
            return await repo.verify_chain()
        rows = await repo.query(trigger_name=trigger_name, operation=operation, status=status, limit=limit)
        return [_audit_dict(row) for row in rows]

    outcome = _run(_audit)
    if verify:
        valid, checked = outcome
        if _json_output:
            _emit({"valid": valid, "entries_checked": checked})
        elif valid:
            console.print(f"[green]Audit chain intact[/green] ({checked} entries checked)")
        else:
            console.print(f"[red]Audit chain broken[/red] after {checked} valid entries")
        if not valid:
            raise typer.Exit(code=1)
        return

    if _json_output:
        _emit(outcome)
    else:
        display_audit_entries(console, outcome)


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


@app.command()
def generate(
    trigger_name: str = typer.Argument(..., help="Name of the trigger to generate."),
    table: str = typer.Option(..., "--table", help="Table the trigger is attached to."),
    function_name: str = typer.Option(..., "--function", help="Trigger function name."),
    events: list[str] | None = typer.Option(None, "--event", help="Row event (insert, update, ...); repeatable."),
    timing: str = typer.Option("before", "--timing", help="before or after."),
    condition: str | None = typer.Option(None, "--condition", help="WHEN expression, without parentheses."),
    version: int = typer.Option(1, "--version", help="Definition version."),
    environments: list[str] | None = typer.Option(None, "--environment", help="Environment; repeat for several."),
    function_file: Path | None = typer.Option(
        None,
        "--function-sql",
        help="SQL file with the function DDL; omit to generate a stub.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
    no_stub: bool = typer.Option(False, "--no-stub", help="Fail instead of generating a function stub."),
    disabled: bool = typer.Option(False, "--disabled", help="Register the trigger as disabled."),
    dry_run_mode: bool = typer.Option(False, "--dry-run", help="Show the files without writing or registering."),
    migrations_path: Path | None = typer.Option(None, "--path", help=_PATH_OPTION_HELP),
    definitions_path: Path | None = typer.Option(
        None, "--definitions-path", help="Definitions directory (overrides TRIGGER_DEFINITIONS_PATH)."
    ),
    confirm: str | None = typer.Option(None, "--confirm", help=_CONFIRM_OPTION_HELP, envvar=CONFIRMATION_ENV_VAR),
) -> None:
    """Generate a trigger migration and definition file, and register the trigger."""
    form = GeneratorForm(
        trigger_name=trigger_name,
        table_name=table,
        function_name=function_name,
        events=events or [],
        timing=timing,
        condition=condition,
        version=version,
        environments=environments or [],
        enabled=not disabled,
        function_body=function_file.read_text(encoding="utf-8") if function_file is not None else None,
        generate_function_stub=not no_stub,
    )

    def _generator(svc: _Services) -> TriggerGenerator:
        return TriggerGenerator(
            svc.session,
            migrations_path=migrations_path or svc.settings.migrations_path,
            definitions_path=definitions_path or svc.settings.definitions_path,
            kill_switch=svc.kill_switch,
            permissions=svc.permissions,
            registry=svc.registry,
        )

    if dry_run_mode:

        async def _preview(svc: _Services) -> Any:
            svc.require(Action.GENERATE_TRIGGER)
            return _generator(svc).preview(form)

        preview = _run(_preview)
        if not preview.valid:
            _fail(
                f"Invalid trigger '{trigger_name}': {'; '.join(preview.errors)}",
                payload={"message": "Invalid trigger definition", "errors": preview.errors},
            )
        if _json_output:
            _emit(preview.model_dump(mode="json"))
        else:
            display_generator_preview(console, preview)
        return

    async def _create(svc: _Services) -> Any:
        return await _generator(svc).create(form, svc.context(confirm))

    result = _run(_create)
    if _json_output:
        _emit(result.model_dump(mode="json"))
    else:
        console.print(
            f"[green]Generated[/green] [bold]{escape(result.trigger_name)}[/bold] "
            f"(migration {escape(result.migration_path)})"
        )


# ---------------------------------------------------------------------------
# migrate
# ---------------------------------------------------------------------------


def _runner(svc: _Services, path: Path | None, allow_unsafe: bool = False) -> MigrationRunner:
    return MigrationRunner(
        svc.session,
        path or svc.settings.migrations_path,
        kill_switch=svc.kill_switch,
        introspector=svc.introspector,
        allow_unsafe=allow_unsafe or svc.settings.allow_unsafe_migrations,
    )


def _report_versions(verb: str, versions: list[int]) -> None:
    if _json_output:
        _emit({"operation": verb, "versions": versions})
    elif versions:
        console.print(f"[green]{verb.capitalize()}:[/green] {', '.join(str(v) for v in versions)}")
    else:
        console.print(f"[dim]Nothing {verb}.[/dim]")


@migrate_app.command("status")
def migrate_status(path: Path | None = typer.Option(None, "--path", help=_PATH_OPTION_HELP)) -> None:
    """Show applied and pending trigger migrations."""

    async def _status(svc: _Services) -> tuple[list[Any], int]:
        runner = _runner(svc, path)
        return await runner.status(), await runner.current_version()

    statuses, current = _run(_status)
    if _json_output:
        _emit({"current_version": current, "migrations": [s.model_dump(mode="json") for s in statuses]})
    else:
        display_migration_status(console, statuses, current)


@migrate_app.command("version")
def migrate_version(path: Path | None = typer.Option(None, "--path", help=_PATH_OPTION_HELP)) -> None:
    """Print the current trigger migration version."""

    async def _version(svc: _Services) -> int:
        return await _runner(svc, path).current_version()

    current = _run(_version)
    if _json_output:
        _emit({"current_version": current})
    else:
        console.print(f"[bold]Current version:[/bold] {current}")


@migrate_app.command("diff")
def migrate_diff(
    version: int | None = typer.Option(None, "--version", help="Compare only this version."),
    direction: str = typer.Option("up", "--direction", help="up (pending units) or down (the next rollback)."),
    path: Path | None = typer.Option(None, "--path", help=_PATH_OPTION_HELP),
) -> None:
    """Compare what migrations would create with the database, without running them."""

    async def _diff(svc: _Services) -> list[Any]:
        svc.require(Action.VIEW_DIFFS)
        return await _runner(svc, path).preview(version, direction)

    diffs = _run(_diff)
    if _json_output:
        _emit([{**d.model_dump(mode="json"), "has_differences": d.has_differences} for d in diffs])
        return
    if not diffs:
        console.print("[dim]No migrations to compare.[/dim]")
        return
    for diff in diffs:
        display_report_text(console, render_pre_apply_report(diff))
        console.print(f"[bold]{escape(render_pre_apply_summary(diff))}[/bold]")


@migrate_app.command("up")
def migrate_up(
    version: int | None = typer.Option(None, "--version", help="Apply only this version."),
    path: Path | None = typer.Option(None, "--path", help=_PATH_OPTION_HELP),
    allow_unsafe: bool = typer.Option(False, "--allow-unsafe", help="Skip the DROP + CREATE safety check."),
    confirm: str | None = typer.Option(None, "--confirm", help=_CONFIRM_OPTION_HELP, envvar=CONFIRMATION_ENV_VAR),
) -> None:
    """Apply pending trigger migrations."""

    async def _up(svc: _Services) -> list[int]:
        return await _runner(svc, path, allow_unsafe).run_up(svc.context(confirm), version)

    _report_versions("applied", _run(_up))


@migrate_app.command("down")
def migrate_down(
    version: int | None = typer.Option(None, "--version", help="Roll back every migration above this version."),
    path: Path | None = typer.Option(None, "--path", help=_PATH_OPTION_HELP),
    allow_unsafe: bool = typer.Option(False, "--allow-unsafe", help="Skip the DROP + CREATE safety check."),
    confirm: str | None = typer.Option(None, "--confirm", help=_CONFIRM_OPTION_HELP, envvar=CONFIRMATION_ENV_VAR),
) -> None:
    """Roll back the latest trigger migration (or down to a version)."""

    async def _down(svc: _Services) -> list[int]:
        return await _runner(svc, path, allow_unsafe).run_down(svc.context(confirm), version)

    _report_versions("reverted", _run(_down))


@migrate_app.command("redo")
def migrate_redo(
    version: int | None = typer.Option(None, "--version", help="Version to redo (default: current)."),
    path: Path | None = typer.Option(None, "--path", help=_PATH_OPTION_HELP),
    allow_unsafe: bool = typer.Option(False, "--allow-unsafe", help="Skip the DROP + CREATE safety check."),
    confirm: str | None = typer.Option(None, "--confirm", help=_CONFIRM_OPTION_HELP, envvar=CONFIRMATION_ENV_VAR),
) -> None:
    """Roll back and reapply a trigger migration."""

    async def _redo(svc: _Services) -> list[int]:
        return await _runner(svc, path, allow_unsafe).redo(svc.context(confirm), version)

    _report_versions("reapplied", _run(_redo))


# ---------------------------------------------------------------------------
# capsule
# ---------------------------------------------------------------------------


@capsule_app.command("run")
def capsule_run(
    name: str = typer.Argument(..., help="Capsule name."),
    sql_file: Path | None = typer.Option(
        None,
        "--file",
        help="SQL file to run; omit to re-run the recorded capsule of this name.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
    purpose: str | None = typer.Option(None, "--purpose", help="Why this SQL is being run (required with --file)."),
    dry_run_mode: bool = typer.Option(False, "--dry-run", help="Check permissions and kill switch only."),
    confirm: str | None = typer.Option(None, "--confirm", help=_CONFIRM_OPTION_HELP, envvar=CONFIRMATION_ENV_VAR),
) -> None:
    """Execute a manual SQL capsule."""

    async def _capsule(svc: _Services) -> bool:
        executor = CapsuleExecutor(svc.session, kill_switch=svc.kill_switch, permissions=svc.permissions)
        ctx = svc.context(confirm)
        if sql_file is None:
            return await executor.execute_by_name(name, ctx, dry_run=dry_run_mode)
        if not purpose:
            raise ValidationError(
                "A purpose is required when running a capsule from a file",
                recovery_suggestion="Pass --purpose describing why the SQL is being run.",
            )
        capsule = SQLCapsule(
            name=name,
            environment=svc.settings.environment,
            purpose=purpose,
            sql=sql_file.read_text(encoding="utf-8"),
        )
        return await executor.execute(capsule, ctx, dry_run=dry_run_mode)

    _run(_capsule)
    verb = "checked (dry run)" if dry_run_mode else "executed"
    if _json_output:
        _emit({"capsule": name, "dry_run": dry_run_mode, "success": True})
    else:
        console.print(f"[green]Capsule {escape(name)} {verb}[/green]")
