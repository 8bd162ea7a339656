"""Discovery and loading of trigger migration files.

Migration files live in one directory and are named
``<YYYYMMDDHHMMSS>_<snake_name>.py``.  Each defines one subclass of
:class:`TriggerMigration`, conventionally named after the file
(``20260105120000_audit_users.py`` -> ``AuditUsers``)::

    from trigger_engine.migrator import TriggerMigration


    class AuditUsers(TriggerMigration):
        async def up(self) -> None:
            await self.execute("CREATE OR REPLACE FUNCTION audit_users_fn() ...")
            await self.execute("CREATE TRIGGER audit_users ...")

        async def down(self) -> None:
            await self.execute("DROP TRIGGER IF EXISTS audit_users ON users")
"""

from __future__ import annotations

import importlib.util
import inspect
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.errors import MigrationError
from trigger_engine.sql.execution import execute_script

logger = logging.getLogger(__name__)

_FILENAME_RE = re.compile(r"^(\d{14})_([a-z0-9_]+)\.py$")


class TriggerMigration:
    """Base class for migration units.

    In capture mode ``execute`` only records statements; the safety
    validator uses this to inspect a unit's SQL without running it.
    """

    def __init__(self, session: AsyncSession | None = None, *, capture: bool = False) -> None:
        self._session = session
        self.capture = capture
        self.executed_sql: list[str] = []

    async def up(self) -> None:
        raise NotImplementedError

    async def down(self) -> None:
        raise NotImplementedError

    async def execute(self, sql: str) -> None:
        self.executed_sql.append(sql.strip())
        if self.capture:
            return
        if self._session is None:
            raise MigrationError("Migration has no database session to execute against")
        await execute_script(self._session, sql)


def _camelize(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_") if part)


@dataclass(frozen=True)
class MigrationUnit:
    """One migration file: ordering metadata plus a lazy class loader."""

    version: int
    name: str
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name

    def load(self) -> type[TriggerMigration]:
        """Import the file and return its :class:`TriggerMigration` subclass."""
        module_name = f"trigger_migration_{self.version}_{self.name}"
        spec = importlib.util.spec_from_file_location(module_name, self.path)
        if spec is None or spec.loader is None:
            raise MigrationError(f"Error loading trigger migration {self.filename}: not importable")
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            raise MigrationError(f"Error loading trigger migration {self.filename}: {exc}") from exc

        candidates = [
            obj
            for _, obj in inspect.getmembers(module, inspect.isclass)
            if issubclass(obj, TriggerMigration) and obj is not TriggerMigration and obj.__module__ == module_name
        ]
        if len(candidates) == 1:
            return candidates[0]

        expected = _camelize(self.name)
        for cls in candidates:
            if cls.__name__ in (expected, f"Add{expected}"):
                return cls
        raise MigrationError(
            f"Error loading trigger migration {self.filename}: expected one TriggerMigration "
            f"subclass (e.g. {expected}), found {len(candidates)}"
        )


async def capture_sql(migration_class: type[TriggerMigration], direction: str) -> list[str]:
    """Run *direction* of *migration_class* in capture mode and return its statements."""
    instance = migration_class(None, capture=True)
    try:
        await getattr(instance, direction)()
    except Exception as exc:
        raise MigrationError(f"Could not capture SQL for {migration_class.__name__}.{direction}: {exc}") from exc
    return instance.executed_sql


def load_migrations(path: Path | str) -> list[MigrationUnit]:
    """Return the migration units under *path*, ordered by version.

    Files not matching the naming pattern are ignored.  A missing directory
    yields an empty list.
    """
    directory = Path(path)
    if not directory.is_dir():
        logger.debug("Migrations directory %s does not exist", directory)
        return []

    units: dict[int, MigrationUnit] = {}
    for file in sorted(directory.iterdir()):
        match = _FILENAME_RE.match(file.name)
        if not match:
            continue
        version = int(match.group(1))
        if version in units:
            raise MigrationError(
                f"Duplicate trigger migration version {version}: {units[version].filename} and {file.name}"
            )
        units[version] = MigrationUnit(version=version, name=match.group(2), path=file)

    return [units[v] for v in sorted(units)]
