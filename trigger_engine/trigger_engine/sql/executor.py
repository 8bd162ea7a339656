"""Guarded execution of manual SQL capsules."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.audit.logger import AuditLogger, AuditSink
from trigger_engine.errors import ExecutionError, NotFoundError
from trigger_engine.lifecycle.best_effort import run_best_effort
from trigger_engine.models.trigger import TriggerSource
from trigger_engine.safety.context import OperationContext
from trigger_engine.safety.kill_switch import KillSwitch
from trigger_engine.safety.permissions import Action, PermissionChecker
from trigger_engine.sql.capsule import CAPSULE_TABLE_NAME, CAPSULE_TRIGGER_PREFIX, SQLCapsule
from trigger_engine.sql.execution import execute_script
from trigger_engine.state.repository import TriggerRegistryRepository

logger = logging.getLogger(__name__)

OP_EXECUTE_CAPSULE = "execute_sql_capsule"


class CapsuleExecutor:
    """Run :class:`SQLCapsule` blocks behind the permission and kill switch gates.

    The capsule SQL runs in a savepoint.  On success the capsule is recorded
    as a ``manual_sql`` registry entry (best effort) and the session is
    committed; on failure the savepoint is rolled back, a failure audit
    entry is written and :class:`ExecutionError` is raised.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        kill_switch: KillSwitch | None = None,
        permissions: PermissionChecker | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._session = session
        self._registry = TriggerRegistryRepository(session)
        self._kill_switch = kill_switch or KillSwitch()
        self._permissions = permissions or PermissionChecker()
        self._audit = audit or AuditLogger(session)

    async def execute(self, capsule: SQLCapsule, context: OperationContext, *, dry_run: bool = False) -> bool:
        """Execute *capsule*.  Returns ``True`` on success.

        With ``dry_run`` the gates are still checked but nothing is executed
        or recorded.
        """
        self._permissions.check(context.actor, Action.EXECUTE_SQL, context.environment)
        self._kill_switch.check(OP_EXECUTE_CAPSULE, context)

        if dry_run:
            logger.info("[SQL_CAPSULE] Dry run of %s: %d chars of SQL not executed", capsule.name, len(capsule.sql))
            return True

        trigger_name = capsule.registry_trigger_name
        logger.info("[SQL_CAPSULE] Executing %s in %s (checksum=%s)", capsule.name, capsule.environment, capsule.checksum)
        try:
            async with self._session.begin_nested():
                await execute_script(self._session, capsule.sql)
        except SQLAlchemyError as exc:
            logger.error("[SQL_CAPSULE] %s failed: %s", capsule.name, exc)
            await self._audit.log_failure(
                operation=OP_EXECUTE_CAPSULE,
                trigger_name=trigger_name,
                actor=context.actor,
                environment=context.environment,
                reason=capsule.purpose,
                confirmation_text=context.confirmation,
                error_message=str(exc),
            )
            await self._session.commit()
            raise ExecutionError(
                f"SQL capsule '{capsule.name}' failed: {exc}",
                recovery_suggestion="Fix the capsule SQL and run it again; nothing from this run was kept.",
                context={"capsule": capsule.name, "environment": capsule.environment},
            ) from exc

        recorded = await run_best_effort(
            self._session,
            "record_capsule",
            lambda: self._registry.upsert(
                trigger_name=trigger_name,
                table_name=CAPSULE_TABLE_NAME,
                version=1,
                enabled=True,
                source=TriggerSource.MANUAL_SQL.value,
                checksum=capsule.checksum,
                definition={"name": capsule.name, "purpose": capsule.purpose},
                function_body=capsule.sql,
                condition=capsule.purpose,
                environment=capsule.environment,
            ),
        )
        if not recorded.ok:
            logger.warning("[SQL_CAPSULE] Could not record %s in registry: %s", capsule.name, recorded.error)

        await self._audit.log_success(
            operation=OP_EXECUTE_CAPSULE,
            trigger_name=trigger_name,
            actor=context.actor,
            environment=context.environment,
            reason=capsule.purpose,
            confirmation_text=context.confirmation,
            after_state={"checksum": capsule.checksum, "environment": capsule.environment},
        )
        await self._session.commit()
        logger.info("[SQL_CAPSULE] %s executed successfully", capsule.name)
        return True

    async def load(self, name: str) -> SQLCapsule:
        """Rebuild a previously recorded capsule from its registry entry."""
        row = await self._registry.get(f"{CAPSULE_TRIGGER_PREFIX}{name}")
        if row is None or row.source != TriggerSource.MANUAL_SQL.value or not row.function_body:
            raise NotFoundError(
                f"SQL capsule '{name}' not found in registry",
                recovery_suggestion="Run the capsule from a file first so it is recorded.",
                context={"capsule": name},
            )
        return SQLCapsule(
            name=name,
            environment=row.environment or "unspecified",
            purpose=row.condition or "re-run of recorded capsule",
            sql=row.function_body,
        )

    async def execute_by_name(self, name: str, context: OperationContext, *, dry_run: bool = False) -> bool:
        """Re-run a recorded capsule."""
        capsule = await self.load(name)
        return await self.execute(capsule, context, dry_run=dry_run)
