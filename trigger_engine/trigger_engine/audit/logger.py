"""Audit sink for trigger operations.

Lifecycle operations, migrations and capsules report outcomes through the
:class:`AuditSink` protocol.  :class:`AuditLogger` is the default sink: it
appends to the hash-chained ``trigger_audit_log`` table inside its own
savepoint.  Writing an audit entry never aborts the operation being
audited; write failures are logged and swallowed.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.safety.context import Actor
from trigger_engine.state.repository import AuditRepository

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


@runtime_checkable
class AuditSink(Protocol):
    """Contract for recording operation outcomes."""

    async def log_success(
        self,
        *,
        operation: str,
        trigger_name: str | None,
        actor: Actor,
        environment: str | None = None,
        reason: str | None = None,
        confirmation_text: str | None = None,
        before_state: dict[str, Any] | None = None,
        after_state: dict[str, Any] | None = None,
        diff: str | None = None,
    ) -> str | None: ...

    async def log_failure(
        self,
        *,
        operation: str,
        trigger_name: str | None,
        actor: Actor,
        error_message: str,
        environment: str | None = None,
        reason: str | None = None,
        confirmation_text: str | None = None,
        before_state: dict[str, Any] | None = None,
    ) -> str | None: ...


class AuditLogger:
    """Persist audit entries through :class:`AuditRepository`."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def log_success(
        self,
        *,
        operation: str,
        trigger_name: str | None,
        actor: Actor,
        environment: str | None = None,
        reason: str | None = None,
        confirmation_text: str | None = None,
        before_state: dict[str, Any] | None = None,
        after_state: dict[str, Any] | None = None,
        diff: str | None = None,
    ) -> str | None:
        return await self._write(
            operation=operation,
            status=STATUS_SUCCESS,
            trigger_name=trigger_name,
            actor=actor.to_audit(),
            environment=environment,
            reason=reason,
            confirmation_text=confirmation_text,
            before_state=before_state,
            after_state=after_state,
            diff=diff,
        )

    async def log_failure(
        self,
        *,
        operation: str,
        trigger_name: str | None,
        actor: Actor,
        error_message: str,
        environment: str | None = None,
        reason: str | None = None,
        confirmation_text: str | None = None,
        before_state: dict[str, Any] | None = None,
    ) -> str | None:
        return await self._write(
            operation=operation,
            status=STATUS_FAILURE,
            trigger_name=trigger_name,
            actor=actor.to_audit(),
            environment=environment,
            reason=reason,
            confirmation_text=confirmation_text,
            before_state=before_state,
            error_message=error_message,
        )

    async def _write(self, **fields: Any) -> str | None:
        try:
            async with self._session.begin_nested():
                return await AuditRepository(self._session).log(**fields)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to write audit entry: operation=%s trigger=%s status=%s",
                fields.get("operation"),
                fields.get("trigger_name"),
                fields.get("status"),
            )
            return None
