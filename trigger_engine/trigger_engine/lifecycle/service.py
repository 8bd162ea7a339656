"""Lifecycle operations on registered triggers: enable, disable, drop, re-execute.

Every operation follows the same sequence:

1. ``drop`` and ``re_execute`` require a non-blank reason.
2. Permission check (operator for enable/disable, admin for drop/re-execute).
3. Resolve the registry entry.
4. Kill switch check.
5. Re-read the entry with a row lock (PostgreSQL only).
6. Mutate: best-effort existence check, DDL with quoted identifiers,
   registry update.
7. Commit, then write an audit success entry.

Steps 1-4 raise before anything is written or locked; a blocked kill switch
never produces an audit entry and leaves no transaction open.  A failure in
step 6 or in the commit rolls the session back, records an audit failure
entry, commits it and re-raises the original exception.

Note that each operation commits the session it was given.
"""

from __future__ import annotations

import difflib
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.audit.logger import AuditLogger, AuditSink
from trigger_engine.errors import NotFoundError, TriggerEngineError, ValidationError
from trigger_engine.introspection.catalog import DatabaseIntrospector
from trigger_engine.lifecycle.best_effort import StepOutcome, run_best_effort
from trigger_engine.models.trigger import LiveTrigger, RegistrySnapshot
from trigger_engine.safety.context import OperationContext
from trigger_engine.safety.kill_switch import KillSwitch
from trigger_engine.safety.permissions import Action, PermissionChecker
from trigger_engine.sql.execution import execute_script
from trigger_engine.sql.quoting import quote_ident, quote_qualified
from trigger_engine.state.repository import TriggerRegistryRepository
from trigger_engine.state.tables import TriggerRegistryTable

logger = logging.getLogger(__name__)

OP_ENABLE = "trigger_enable"
OP_DISABLE = "trigger_disable"
OP_DROP = "trigger_drop"
OP_RE_EXECUTE = "trigger_re_execute"


def require_reason(reason: str | None, operation: str) -> str:
    """Return the stripped reason or raise :class:`ValidationError`."""
    if reason is None or not str(reason).strip():
        raise ValidationError(
            f"Reason is required for {operation}",
            recovery_suggestion="Provide a short explanation of why the operation is needed.",
            context={"operation": operation},
        )
    return str(reason).strip()


def _not_found(trigger_name: str, operation: str) -> NotFoundError:
    return NotFoundError(
        f"Trigger '{trigger_name}' not found in registry",
        context={"trigger_name": trigger_name, "operation": operation},
    )


class TriggerLifecycle:
    """Guarded lifecycle operations bound to one session.

    Parameters
    ----------
    session:
        Session used for registry writes, catalog lookups and DDL.
    kill_switch:
        Kill switch consulted before mutating; defaults to a switch with
        the default configuration.
    permissions:
        Permission checker; defaults to allow-all.
    introspector:
        Catalog reader used for existence checks.
    audit:
        Audit sink; defaults to :class:`AuditLogger` on *session*.
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
        self._registry = TriggerRegistryRepository(session)
        self._kill_switch = kill_switch or KillSwitch()
        self._permissions = permissions or PermissionChecker()
        self._introspector = introspector or DatabaseIntrospector(session)
        self._audit = audit or AuditLogger(session)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def enable(self, trigger_name: str, context: OperationContext) -> bool:
        return await self._set_enabled(trigger_name, context, enabled=True)

    async def disable(self, trigger_name: str, context: OperationContext) -> bool:
        return await self._set_enabled(trigger_name, context, enabled=False)

    async def drop(self, trigger_name: str, context: OperationContext, reason: str | None) -> bool:
        """Drop the live trigger (if present) and delete the registry entry."""
        reason = require_reason(reason, OP_DROP)
        row = await self._preflight(OP_DROP, Action.DROP_TRIGGER, trigger_name, context)

        async def mutate(entry: TriggerRegistryTable) -> str | None:
            lookup = await self._check_exists(entry.trigger_name)
            if lookup.value:
                await self._execute_ddl(
                    f"DROP TRIGGER IF EXISTS {quote_ident(entry.trigger_name)} ON {quote_qualified(entry.table_name)}"
                )
            else:
                logger.info("[TRIGGER_DROP] %s not present in database; removing registry entry only", trigger_name)
            await self._registry.delete(entry)
            return None

        return await self._run(OP_DROP, row, context, mutate, reason=reason, removes_entry=True)

    async def re_execute(self, trigger_name: str, context: OperationContext, reason: str | None) -> bool:
        """Recreate the trigger from its stored function body."""
        reason = require_reason(reason, OP_RE_EXECUTE)
        row = await self._preflight(OP_RE_EXECUTE, Action.DROP_TRIGGER, trigger_name, context)

        function_body = row.function_body
        if not function_body or not function_body.strip():
            raise TriggerEngineError(
                f"Trigger '{trigger_name}' has no function body to re-execute",
                recovery_suggestion="Register the trigger with its function DDL before re-executing it.",
                context={"trigger_name": trigger_name},
            )

        async def mutate(entry: TriggerRegistryTable) -> str | None:
            lookup = await run_best_effort(
                self._session,
                "find_trigger",
                lambda: self._introspector.find_trigger(entry.trigger_name),
            )
            live: LiveTrigger | None = lookup.value
            diff = _function_diff(live.function_definition if live else None, function_body, entry.trigger_name)

            if live is not None:
                drop_sql = (
                    f"DROP TRIGGER IF EXISTS {quote_ident(entry.trigger_name)} ON {quote_qualified(entry.table_name)}"
                )
                dropped = await run_best_effort(self._session, "drop_existing", lambda: self._execute_ddl(drop_sql))
                if not dropped.ok:
                    logger.warning(
                        "[TRIGGER_RE_EXECUTE] Could not drop existing trigger %s, recreating anyway: %s",
                        entry.trigger_name,
                        dropped.error,
                    )

            await self._execute_script(entry.function_body or function_body)
            now = datetime.now(UTC)
            await self._registry.touch(
                entry,
                enabled=True,
                last_executed_at=now,
                installed_at=entry.installed_at or now,
            )
            return diff

        return await self._run(OP_RE_EXECUTE, row, context, mutate, reason=reason)

    # ------------------------------------------------------------------
    # Shared skeleton
    # ------------------------------------------------------------------

    async def _set_enabled(self, trigger_name: str, context: OperationContext, *, enabled: bool) -> bool:
        operation = OP_ENABLE if enabled else OP_DISABLE
        action = Action.ENABLE_TRIGGER if enabled else Action.DISABLE_TRIGGER
        keyword = "ENABLE" if enabled else "DISABLE"
        row = await self._preflight(operation, action, trigger_name, context)

        async def mutate(entry: TriggerRegistryTable) -> str | None:
            lookup = await self._check_exists(entry.trigger_name)
            if lookup.value:
                await self._execute_ddl(
                    f"ALTER TABLE {quote_qualified(entry.table_name)} {keyword} TRIGGER {quote_ident(entry.trigger_name)}"
                )
            else:
                logger.info(
                    "[TRIGGER_%s] %s not present in database; updating registry only",
                    keyword,
                    trigger_name,
                )
            await self._registry.touch(entry, enabled=enabled)
            return None

        return await self._run(operation, row, context, mutate)

    async def _preflight(
        self,
        operation: str,
        action: Action,
        trigger_name: str,
        context: OperationContext,
    ) -> TriggerRegistryTable:
        self._permissions.check(context.actor, action, context.environment)

        try:
            row = await self._registry.get(trigger_name)
            if row is None:
                raise _not_found(trigger_name, operation)
            self._kill_switch.check(operation, context)
        except TriggerEngineError:
            if self._session.in_transaction():
                await self._session.rollback()
            raise
        return row

    async def _lock(self, operation: str, trigger_name: str) -> TriggerRegistryTable:
        row = await self._registry.get(trigger_name, for_update=True)
        if row is None:
            raise _not_found(trigger_name, operation)
        return row

    async def _run(
        self,
        operation: str,
        row: TriggerRegistryTable,
        context: OperationContext,
        mutate: Callable[[TriggerRegistryTable], Awaitable[str | None]],
        *,
        reason: str | None = None,
        removes_entry: bool = False,
    ) -> bool:
        tag = operation.upper()
        trigger_name = row.trigger_name
        row = await self._lock(operation, trigger_name)
        before = RegistrySnapshot.from_row(row).model_dump()

        try:
            diff = await mutate(row)
            after = None if removes_entry else RegistrySnapshot.from_row(row).model_dump()
            await self._session.commit()
        except Exception as exc:
            logger.error("[%s] Failed for %s: %s", tag, trigger_name, exc)
            await self._session.rollback()
            await self._audit.log_failure(
                operation=operation,
                trigger_name=trigger_name,
                actor=context.actor,
                environment=context.environment,
                reason=reason,
                confirmation_text=context.confirmation,
                before_state=before,
                error_message=str(exc),
            )
            await self._commit_audit(trigger_name)
            raise

        logger.info("[%s] Succeeded for %s (actor=%s)", tag, trigger_name, context.actor.label)
        await self._audit.log_success(
            operation=operation,
            trigger_name=trigger_name,
            actor=context.actor,
            environment=context.environment,
            reason=reason,
            confirmation_text=context.confirmation,
            before_state=before,
            after_state=after,
            diff=diff,
        )
        await self._commit_audit(trigger_name)
        return True

    async def _commit_audit(self, trigger_name: str) -> None:
        try:
            await self._session.commit()
        except SQLAlchemyError:
            logger.exception("Could not commit audit entry for %s", trigger_name)
            await self._session.rollback()

    # ------------------------------------------------------------------
    # Database helpers
    # ------------------------------------------------------------------

    async def _check_exists(self, trigger_name: str) -> StepOutcome[bool]:
        outcome = await run_best_effort(
            self._session,
            "trigger_exists",
            lambda: self._introspector.trigger_exists(trigger_name),
            default=False,
        )
        return outcome

    async def _execute_ddl(self, sql: str) -> None:
        """Execute one generated DDL statement."""
        conn = await self._session.connection()
        await conn.exec_driver_sql(sql)

    async def _execute_script(self, sql: str) -> None:
        """Execute stored, possibly multi-statement, DDL verbatim."""
        await execute_script(self._session, sql)


def _function_diff(old: str | None, new: str, trigger_name: str) -> str | None:
    if old is None:
        return None
    lines = difflib.unified_diff(
        old.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=f"database/{trigger_name}",
        tofile=f"registry/{trigger_name}",
    )
    return "".join(lines) or None
