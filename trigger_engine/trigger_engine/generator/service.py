"""Generate a trigger migration and definition file from a :class:`GeneratorForm`.

``create`` is a guarded operation like the lifecycle ones:

1. Permission check (``generate_trigger``, operator).
2. Kill switch check (``trigger_generate``).
3. Form validation; every problem is reported in one :class:`ValidationError`.
4. Register the definition with source ``generated``.
5. Write ``<migrations_path>/<version>_<trigger>.py`` and
   ``<definitions_path>/<trigger>.json``.
6. Commit, then write an audit success entry.

Steps 1-3 raise before anything is written.  A failure in step 4, 5 or the
commit rolls the session back, removes files this call created, records
an audit failure entry and re-raises.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.audit.logger import AuditLogger, AuditSink
from trigger_engine.errors import ExecutionError, ValidationError
from trigger_engine.generator.form import GeneratorForm
from trigger_engine.models.trigger import RegistrySnapshot, TriggerSource
from trigger_engine.registry.manager import TriggerRegistry
from trigger_engine.safety.context import OperationContext
from trigger_engine.safety.kill_switch import KillSwitch
from trigger_engine.safety.permissions import Action, PermissionChecker
from trigger_engine.sql.quoting import quote_ident, quote_qualified
from trigger_engine.testing.dry_run import body_creates_trigger, render_create_trigger

logger = logging.getLogger(__name__)

OP_GENERATE = "trigger_generate"

_VERSION_FORMAT = "%Y%m%d%H%M%S"
_MIGRATION_FILE_RE = re.compile(r"^(\d{14})_[a-z0-9_]+\.py$")


def next_version(migrations_path: Path | str, now: datetime | None = None) -> int:
    """UTC timestamp version, bumped past the highest existing migration when needed."""
    version = int((now or datetime.now(UTC)).astimezone(UTC).strftime(_VERSION_FORMAT))
    directory = Path(migrations_path)
    if not directory.is_dir():
        return version
    existing = [int(m.group(1)) for f in directory.iterdir() if (m := _MIGRATION_FILE_RE.match(f.name))]
    if existing and max(existing) >= version:
        return max(existing) + 1
    return version


def _camelize(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_") if part)


def render_migration(form: GeneratorForm) -> str:
    """Python source of the migration unit for *form*."""
    definition = form.to_definition()
    body = definition.function_body or ""
    up_lines = ["        await self.execute(FUNCTION_SQL)"]
    constants = [f"FUNCTION_SQL = {body!r}"]
    if not body_creates_trigger(body):
        constants.append(f"TRIGGER_SQL = {render_create_trigger(definition)!r}")
        up_lines.append("        await self.execute(TRIGGER_SQL)")

    drop_trigger = f"DROP TRIGGER IF EXISTS {quote_ident(form.trigger_name)} ON {quote_qualified(form.table_name)}"
    drop_function = f"DROP FUNCTION IF EXISTS {quote_qualified(form.function_name)}()"
    lines = [
        f'"""Trigger migration for {form.trigger_name} on {form.table_name} (generated)."""',
        "",
        "from trigger_engine.migrator import TriggerMigration",
        "",
        *constants,
        "",
        "",
        f"class Add{_camelize(form.trigger_name)}(TriggerMigration):",
        "    async def up(self) -> None:",
        *up_lines,
        "",
        "    async def down(self) -> None:",
        f"        await self.execute({drop_trigger!r})",
        f"        await self.execute({drop_function!r})",
        "",
    ]
    return "\n".join(lines)


def render_definition(form: GeneratorForm) -> str:
    """JSON definition file, readable by ``triggerlayer register``."""
    return form.to_definition().model_dump_json(indent=2) + "\n"


class GeneratorPreview(BaseModel):
    trigger_name: str
    version: int
    migration_path: str
    definition_path: str
    migration_code: str
    definition_json: str
    errors: list[str] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class GeneratorResult(BaseModel):
    trigger_name: str
    version: int
    checksum: str
    migration_path: str
    definition_path: str


class TriggerGenerator:
    """Turn generator forms into migration files and registry entries.

    Parameters
    ----------
    session:
        Session used for the registry entry and the audit log.
    migrations_path:
        Directory migration units are written to.
    definitions_path:
        Directory JSON definition files are written to.
    kill_switch, permissions, audit:
        Same collaborators as :class:`~trigger_engine.lifecycle.service.TriggerLifecycle`.
    registry:
        Registry used to record the generated definition.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        migrations_path: Path | str,
        definitions_path: Path | str,
        kill_switch: KillSwitch | None = None,
        permissions: PermissionChecker | None = None,
        registry: TriggerRegistry | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._session = session
        self._migrations_path = Path(migrations_path)
        self._definitions_path = Path(definitions_path)
        self._kill_switch = kill_switch or KillSwitch()
        self._permissions = permissions or PermissionChecker()
        self._registry = registry or TriggerRegistry(
            session, kill_switch=self._kill_switch, permissions=self._permissions
        )
        self._audit = audit or AuditLogger(session)

    def file_paths(self, form: GeneratorForm, version: int) -> tuple[Path, Path]:
        return (
            self._migrations_path / f"{version}_{form.trigger_name}.py",
            self._definitions_path / f"{form.trigger_name}.json",
        )

    def preview(self, form: GeneratorForm, now: datetime | None = None) -> GeneratorPreview:
        """Render what :meth:`create` would write, without writing or registering anything."""
        version = next_version(self._migrations_path, now)
        migration_path, definition_path = self.file_paths(form, version)
        errors = form.validation_errors()
        return GeneratorPreview(
            trigger_name=form.trigger_name,
            version=version,
            migration_path=str(migration_path),
            definition_path=str(definition_path),
            migration_code="" if errors else render_migration(form),
            definition_json=render_definition(form),
            errors=errors,
        )

    async def create(
        self,
        form: GeneratorForm,
        context: OperationContext,
        now: datetime | None = None,
    ) -> GeneratorResult:
        self._permissions.check(context.actor, Action.GENERATE_TRIGGER, context.environment)
        self._kill_switch.check(OP_GENERATE, context)

        errors = form.validation_errors()
        if errors:
            raise ValidationError(
                f"Invalid trigger '{form.trigger_name}': {'; '.join(errors)}",
                context={"trigger_name": form.trigger_name, "errors": errors},
            )

        version = next_version(self._migrations_path, now)
        migration_path, definition_path = self.file_paths(form, version)
        written: list[Path] = []

        try:
            row = await self._registry.register(form.to_definition(), source=TriggerSource.GENERATED)
            after = RegistrySnapshot.from_row(row).model_dump()
            for path, content in (
                (migration_path, render_migration(form)),
                (definition_path, render_definition(form)),
            ):
                existed = path.exists()
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
                if not existed:
                    written.append(path)
            await self._session.commit()
        except Exception as exc:
            logger.error("[TRIGGER_GENERATE] Failed for %s: %s", form.trigger_name, exc)
            await self._session.rollback()
            for path in written:
                path.unlink(missing_ok=True)
            await self._audit.log_failure(
                operation=OP_GENERATE,
                trigger_name=form.trigger_name,
                actor=context.actor,
                environment=context.environment,
                confirmation_text=context.confirmation,
                error_message=str(exc),
            )
            await self._commit_audit(form.trigger_name)
            if isinstance(exc, OSError):
                raise ExecutionError(
                    f"Could not write generated files for '{form.trigger_name}': {exc}",
                    recovery_suggestion="Check that the migrations and definitions directories are writable.",
                    context={"trigger_name": form.trigger_name},
                ) from exc
            raise

        logger.info(
            "[TRIGGER_GENERATE] Generated %s v%d (migration %s)",
            form.trigger_name,
            form.version,
            migration_path.name,
        )
        await self._audit.log_success(
            operation=OP_GENERATE,
            trigger_name=form.trigger_name,
            actor=context.actor,
            environment=context.environment,
            confirmation_text=context.confirmation,
            after_state=after,
        )
        await self._commit_audit(form.trigger_name)
        return GeneratorResult(
            trigger_name=form.trigger_name,
            version=version,
            checksum=after["checksum"],
            migration_path=str(migration_path),
            definition_path=str(definition_path),
        )

    async def _commit_audit(self, trigger_name: str) -> None:
        try:
            await self._session.commit()
        except SQLAlchemyError:
            logger.exception("Could not commit audit entry for %s", trigger_name)
            await self._session.rollback()
