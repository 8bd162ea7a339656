"""Registry facade: register definitions, query entries, run lifecycle by name."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.audit.logger import AuditSink
from trigger_engine.checksum import compute_checksum
from trigger_engine.drift.detector import DriftDetector
from trigger_engine.drift.reporter import DriftReporter
from trigger_engine.errors import NotFoundError, ValidationError
from trigger_engine.introspection.catalog import DatabaseIntrospector
from trigger_engine.lifecycle.service import TriggerLifecycle
from trigger_engine.models.drift import DriftResult, DriftState
from trigger_engine.models.trigger import TriggerDefinition, TriggerSource
from trigger_engine.safety.context import OperationContext
from trigger_engine.safety.kill_switch import KillSwitch
from trigger_engine.safety.permissions import Action, PermissionChecker
from trigger_engine.state.repository import TriggerRegistryRepository
from trigger_engine.state.tables import TriggerRegistryTable
from trigger_engine.testing.syntax_validator import SyntaxValidator

logger = logging.getLogger(__name__)


class TriggerRegistry:
    """Entry point for host code working with registered triggers.

    Read queries are not permission-checked here; surfaces that expose them
    check ``view_triggers`` / ``view_diffs`` through their own
    :class:`PermissionChecker`.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        kill_switch: KillSwitch | None = None,
        permissions: PermissionChecker | None = None,
        introspector: DatabaseIntrospector | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._session = session
        self._repo = TriggerRegistryRepository(session)
        self._permissions = permissions or PermissionChecker()
        self._introspector = introspector or DatabaseIntrospector(session)
        self.lifecycle = TriggerLifecycle(
            session,
            kill_switch=kill_switch,
            permissions=self._permissions,
            introspector=self._introspector,
            audit=audit,
        )
        self.detector = DriftDetector(session, self._introspector)
        self.reporter = DriftReporter(self.detector)

    # -- registration ---------------------------------------------------------

    async def register(
        self,
        definition: TriggerDefinition,
        *,
        source: TriggerSource = TriggerSource.DSL,
        context: OperationContext | None = None,
    ) -> TriggerRegistryTable:
        """Create or update the entry for *definition* and recompute its checksum.

        Raises
        ------
        ValidationError
            If the definition is structurally invalid.
        """
        if context is not None:
            self._permissions.check(context.actor, Action.APPLY_TRIGGER, context.environment)

        result = SyntaxValidator(definition).validate_definition()
        if not result.valid:
            raise ValidationError(
                f"Invalid trigger definition '{definition.name}': {'; '.join(result.errors)}",
                context={"trigger_name": definition.name, "errors": result.errors},
            )

        environment = definition.environments[0] if len(definition.environments) == 1 else None
        row = await self._repo.upsert(
            trigger_name=definition.name,
            table_name=definition.table_name,
            version=definition.version,
            enabled=definition.enabled,
            source=TriggerSource(source).value,
            checksum=compute_checksum(
                definition.name,
                definition.table_name,
                definition.version,
                definition.function_body,
                definition.condition,
            ),
            definition=definition.to_metadata(),
            function_body=definition.function_body,
            condition=definition.condition,
            timing=definition.timing,
            environment=environment,
        )
        logger.info("Registered trigger %s v%d on %s", definition.name, definition.version, definition.table_name)
        return row

    # -- queries --------------------------------------------------------------

    async def get(self, trigger_name: str) -> TriggerRegistryTable:
        row = await self._repo.get(trigger_name)
        if row is None:
            raise NotFoundError(f"Trigger '{trigger_name}' not found in registry", context={"trigger_name": trigger_name})
        return row

    async def entries(self) -> list[TriggerRegistryTable]:
        return await self._repo.list_all()

    async def enabled(self) -> list[TriggerRegistryTable]:
        return await self._repo.list_enabled(True)

    async def disabled(self) -> list[TriggerRegistryTable]:
        return await self._repo.list_enabled(False)

    async def for_table(self, table_name: str) -> list[TriggerRegistryTable]:
        return await self._repo.list_for_table(table_name)

    async def for_environment(self, environment: str) -> list[TriggerRegistryTable]:
        return await self._repo.list_for_environment(environment)

    async def by_source(self, source: TriggerSource | str) -> list[TriggerRegistryTable]:
        return await self._repo.list_by_source(TriggerSource(source).value)

    # -- drift ----------------------------------------------------------------

    async def diff(self, trigger_name: str | None = None) -> list[DriftResult]:
        if trigger_name is not None:
            return [await self.detector.detect(trigger_name)]
        return await self.detector.detect_all()

    async def _in_state(self, state: DriftState) -> list[DriftResult]:
        return [r for r in await self.detector.detect_all() if r.state == state]

    async def drifted(self) -> list[DriftResult]:
        return await self._in_state(DriftState.DRIFTED)

    async def in_sync(self) -> list[DriftResult]:
        return await self._in_state(DriftState.IN_SYNC)

    async def dropped(self) -> list[DriftResult]:
        return await self._in_state(DriftState.DROPPED)

    async def unknown_triggers(self) -> list[DriftResult]:
        """Live triggers the registry does not manage."""
        results = await self.detector.detect_all(include_unmanaged=True)
        return [r for r in results if r.state == DriftState.UNKNOWN and r.registry is None]

    async def verify(self, trigger_name: str) -> DriftResult:
        """Detect drift for one trigger and stamp ``last_verified_at`` when in sync."""
        result = await self.detector.detect(trigger_name)
        if result.state == DriftState.IN_SYNC:
            row = await self.get(trigger_name)
            await self._repo.touch(row, last_verified_at=datetime.now(UTC))
        return result

    async def validate(self) -> None:
        """Structurally validate every entry.  Raises :class:`ValidationError` listing failures."""
        failures: dict[str, list[str]] = {}
        for row in await self._repo.list_all():
            result = SyntaxValidator(TriggerDefinition.from_registry_row(row)).validate_definition()
            if not result.valid:
                failures[row.trigger_name] = result.errors
        if failures:
            summary = "; ".join(f"{name}: {', '.join(errs)}" for name, errs in sorted(failures.items()))
            raise ValidationError(f"Invalid registry entries: {summary}", context={"failures": failures})

    # -- lifecycle by name ----------------------------------------------------

    async def enable(self, trigger_name: str, context: OperationContext) -> bool:
        return await self.lifecycle.enable(trigger_name, context)

    async def disable(self, trigger_name: str, context: OperationContext) -> bool:
        return await self.lifecycle.disable(trigger_name, context)

    async def drop(self, trigger_name: str, context: OperationContext, reason: str | None) -> bool:
        return await self.lifecycle.drop(trigger_name, context, reason)

    async def re_execute(self, trigger_name: str, context: OperationContext, reason: str | None) -> bool:
        return await self.lifecycle.re_execute(trigger_name, context, reason)
