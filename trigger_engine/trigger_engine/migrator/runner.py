"""Ordered trigger migration runner.

Applies and rolls back migration units against the ``trigger_migrations``
version table.  Each unit runs and commits on its own: a failing unit is
rolled back, the run stops and :class:`MigrationError` is raised, leaving
earlier units applied.  Every mutating entry point consults the kill switch
first (``migration_up``, ``migration_down``, ``migration_redo``).
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.errors import MigrationError, UnsafeMigrationError
from trigger_engine.introspection.catalog import DatabaseIntrospector
from trigger_engine.lifecycle.best_effort import run_best_effort
from trigger_engine.migrator.loader import MigrationUnit, load_migrations
from trigger_engine.migrator.pre_apply import PreApplyComparator
from trigger_engine.migrator.safety_validator import SafetyValidator
from trigger_engine.models.migration import MigrationState, MigrationStatus, PreApplyDiff
from trigger_engine.safety.context import OperationContext
from trigger_engine.safety.kill_switch import KillSwitch
from trigger_engine.state.repository import MigrationVersionRepository, TriggerRegistryRepository

logger = logging.getLogger(__name__)

OP_MIGRATION_UP = "migration_up"
OP_MIGRATION_DOWN = "migration_down"
OP_MIGRATION_REDO = "migration_redo"


class MigrationRunner:
    """Run trigger migrations found under *migrations_path*.

    Parameters
    ----------
    session:
        Session used for DDL, the version table and registry cleanup.
    migrations_path:
        Directory holding ``<YYYYMMDDHHMMSS>_<name>.py`` files.
    kill_switch:
        Kill switch consulted before mutating.
    introspector:
        Catalog reader for the safety validator and registry cleanup.
    allow_unsafe:
        Skip the DROP + CREATE safety check.
    """

    def __init__(
        self,
        session: AsyncSession,
        migrations_path: Path | str,
        *,
        kill_switch: KillSwitch | None = None,
        introspector: DatabaseIntrospector | None = None,
        allow_unsafe: bool = False,
    ) -> None:
        self._session = session
        self._path = Path(migrations_path)
        self._kill_switch = kill_switch or KillSwitch()
        self._introspector = introspector or DatabaseIntrospector(session)
        self._versions = MigrationVersionRepository(session)
        self._safety = SafetyValidator(self._introspector, session)
        self._allow_unsafe = allow_unsafe

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def migrations(self) -> list[MigrationUnit]:
        return load_migrations(self._path)

    async def ensure_version_table(self) -> None:
        await self._versions.ensure_table()

    async def applied_versions(self) -> list[int]:
        await self.ensure_version_table()
        return await self._versions.applied_versions()

    async def current_version(self) -> int:
        """Highest applied version, or 0 when nothing is applied."""
        versions = await self.applied_versions()
        return versions[-1] if versions else 0

    async def pending_migrations(self) -> list[MigrationUnit]:
        applied = set(await self.applied_versions())
        return [unit for unit in self.migrations() if unit.version not in applied]

    async def status(self) -> list[MigrationStatus]:
        applied = set(await self.applied_versions())
        return [
            MigrationStatus(
                version=unit.version,
                name=unit.name,
                status=MigrationState.UP if unit.version in applied else MigrationState.DOWN,
                filename=unit.filename,
            )
            for unit in self.migrations()
        ]

    async def preview(self, version: int | None = None, direction: str = "up") -> list[PreApplyDiff]:
        """Compare units with the database without running them.

        ``up`` previews every pending unit (or only *version*); ``down``
        previews the unit a rollback would revert (or *version*).
        """
        if direction not in ("up", "down"):
            raise MigrationError(f"Unknown migration direction '{direction}'", context={"direction": direction})
        if version is not None:
            units = [self._find(version)]
        elif direction == "up":
            units = await self.pending_migrations()
        else:
            current = await self.current_version()
            units = [self._find(current)] if current else []

        comparator = PreApplyComparator(self._introspector, self._session)
        return [await comparator.compare(unit, direction) for unit in units]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def run_up(self, context: OperationContext, version: int | None = None) -> list[int]:
        """Apply every pending unit, or only *version*.  Returns applied versions."""
        self._kill_switch.check(OP_MIGRATION_UP, context)
        return await self._up(version)

    async def run_down(self, context: OperationContext, version: int | None = None) -> list[int]:
        """Roll back the latest unit, or every unit above *version*.  Returns reverted versions."""
        self._kill_switch.check(OP_MIGRATION_DOWN, context)
        return await self._down(version)

    async def redo(self, context: OperationContext, version: int | None = None) -> list[int]:
        """Roll back and reapply *version* (default: the current version).

        * target is current: roll back that unit and reapply it;
        * target below current: roll back every unit from current down to
          and including target, then apply pending units through target;
        * target not applied yet: apply it.
        """
        self._kill_switch.check(OP_MIGRATION_REDO, context)

        current = await self.current_version()
        target = version if version is not None else current
        if target == 0:
            logger.info("[MIGRATION_REDO] Nothing applied; nothing to redo")
            return []

        unit = self._find(target)
        applied = set(await self._versions.applied_versions())

        if target not in applied:
            return await self._up(target)

        for applied_unit in sorted(
            (u for u in self.migrations() if u.version in applied and u.version >= target),
            key=lambda u: u.version,
            reverse=True,
        ):
            await self._run_unit(applied_unit, "down")

        reapplied: list[int] = []
        for pending in await self.pending_migrations():
            if pending.version <= unit.version:
                await self._run_unit(pending, "up")
                reapplied.append(pending.version)
        return reapplied

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find(self, version: int) -> MigrationUnit:
        for unit in self.migrations():
            if unit.version == version:
                return unit
        raise MigrationError(f"Migration version {version} not found", context={"version": version})

    async def _up(self, version: int | None) -> list[int]:
        if version is not None:
            unit = self._find(version)
            if unit.version in set(await self.applied_versions()):
                raise MigrationError(
                    f"Migration version {version} is already applied",
                    recovery_suggestion="Use redo to roll back and reapply an applied migration.",
                    context={"version": version},
                )
            await self._run_unit(unit, "up")
            return [unit.version]

        applied: list[int] = []
        for unit in await self.pending_migrations():
            await self._run_unit(unit, "up")
            applied.append(unit.version)
        return applied

    async def _down(self, version: int | None) -> list[int]:
        current = await self.current_version()
        if current == 0:
            logger.info("[MIGRATION_DOWN] No applied migrations")
            return []

        if version is None:
            targets = [self._find(current)]
        else:
            self._find(version)
            if current <= version:
                raise MigrationError(
                    f"Migration version {version} is not below the current version {current}",
                    context={"version": version, "current_version": current},
                )
            applied = set(await self._versions.applied_versions())
            targets = sorted(
                (u for u in self.migrations() if u.version in applied and version < u.version <= current),
                key=lambda u: u.version,
                reverse=True,
            )

        reverted: list[int] = []
        for unit in targets:
            await self._run_unit(unit, "down")
            reverted.append(unit.version)
        return reverted

    async def _run_unit(self, unit: MigrationUnit, direction: str) -> None:
        tag = f"[MIGRATION_{direction.upper()}]"
        migration_class = unit.load()

        logger.info("%s Running %s", tag, unit.filename)
        try:
            await self._safety.validate(migration_class, direction, allow_unsafe=self._allow_unsafe)
            await getattr(migration_class(self._session), direction)()
            if direction == "up":
                await self._versions.mark_applied(unit.version)
            else:
                await self._versions.mark_reverted(unit.version)
                await self.cleanup_orphaned_registry_entries()
            await self._session.commit()
        except UnsafeMigrationError:
            await self._session.rollback()
            raise
        except Exception as exc:
            await self._session.rollback()
            logger.error("%s %s failed: %s", tag, unit.filename, exc)
            raise MigrationError(
                f"Error running trigger migration {unit.filename} ({direction}): {exc}",
                context={"version": unit.version, "direction": direction},
            ) from exc
        logger.info("%s Completed %s", tag, unit.filename)

    async def cleanup_orphaned_registry_entries(self) -> list[str]:
        """Delete registry rows whose triggers no longer exist in the database.

        Rows whose existence cannot be determined are kept.
        """
        registry = TriggerRegistryRepository(self._session)
        orphaned: list[str] = []
        for row in await registry.list_all():
            name = row.trigger_name
            lookup = await run_best_effort(
                self._session,
                "trigger_exists",
                lambda name=name: self._introspector.trigger_exists(name),
                default=True,
            )
            if lookup.ok and not lookup.value:
                orphaned.append(name)

        if orphaned:
            await registry.delete_by_names(orphaned)
            logger.info("Removed orphaned registry entries: %s", ", ".join(orphaned))
        return orphaned
