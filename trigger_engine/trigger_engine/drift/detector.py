"""Drift detection between the trigger registry and the live catalog.

Classification is a pure function of (registry row, live trigger) and is
recomputed on every call.  :meth:`DriftDetector.detect_all` loads the live
catalog once per call and reuses it for every entry; nothing is cached
across calls.

Evaluation order for one trigger:

1. catalog query failed                           -> ``unknown``
2. neither registered nor live                    -> ``unknown``
3. live but not registered                        -> ``unknown``
4. registered with ``source = manual_sql``        -> ``manual_override``
5. registry disabled, live absent or disabled     -> ``disabled``
   registry disabled, live enabled                -> ``drifted``
6. registry enabled, live absent                  -> ``dropped``
7. live checksum equal to stored checksum         -> ``in_sync``
8. canonical function and condition equal         -> ``in_sync``
   otherwise                                      -> ``drifted``

Step 8 covers the usual case where the catalog reformats the DDL it was
given (see :mod:`trigger_engine.sql.normalizer`): the checksums differ even
though the installed function and ``WHEN`` expression are the registered
ones.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trigger_engine.checksum import compute_checksum
from trigger_engine.introspection.catalog import DatabaseIntrospector
from trigger_engine.models.drift import DriftResult, DriftState
from trigger_engine.models.trigger import LiveTrigger, RegistrySnapshot, TriggerSource
from trigger_engine.sql.normalizer import same_condition, same_function
from trigger_engine.state.repository import TriggerRegistryRepository
from trigger_engine.state.tables import TriggerRegistryTable

logger = logging.getLogger(__name__)


def live_checksum(row: TriggerRegistryTable, live: LiveTrigger) -> str:
    """Checksum derived from the catalog, keyed by the registry's identity fields."""
    return compute_checksum(
        row.trigger_name,
        row.table_name,
        row.version,
        live.function_definition,
        live.condition,
    )


def classify(trigger_name: str, row: TriggerRegistryTable | None, live: LiveTrigger | None) -> DriftResult:
    """Classify one trigger given its registry row and live catalog entry."""
    snapshot = RegistrySnapshot.from_row(row) if row is not None else None
    base = {
        "trigger_name": trigger_name,
        "registry": snapshot,
        "live": live,
        "expected_sql": row.function_body if row is not None else None,
        "actual_sql": live.function_definition if live is not None else None,
        "expected_condition": row.condition if row is not None else None,
    }

    if row is None and live is None:
        return DriftResult(state=DriftState.UNKNOWN, details="Trigger not found in registry or database", **base)

    if row is None:
        return DriftResult(
            state=DriftState.UNKNOWN,
            details=f"Trigger exists on '{live.table_name}' but is not managed by the registry",  # type: ignore[union-attr]
            **base,
        )

    if row.source == TriggerSource.MANUAL_SQL.value:
        return DriftResult(
            state=DriftState.MANUAL_OVERRIDE,
            details="Registry entry was created by manual SQL execution",
            **base,
        )

    if not row.enabled:
        if live is None or not live.enabled:
            return DriftResult(state=DriftState.DISABLED, details="Trigger is disabled", **base)
        return DriftResult(
            state=DriftState.DRIFTED,
            details="Trigger is enabled in database but disabled in registry",
            **base,
        )

    if live is None:
        return DriftResult(
            state=DriftState.DROPPED,
            details="Trigger exists in registry but not in database",
            **base,
        )

    if live.table_name != row.table_name:
        return DriftResult(
            state=DriftState.DRIFTED,
            details=f"Trigger is attached to '{live.table_name}' but registered on '{row.table_name}'",
            **base,
        )

    if not live.enabled:
        return DriftResult(
            state=DriftState.DRIFTED,
            details="Trigger is disabled in database but enabled in registry",
            **base,
        )

    if live_checksum(row, live) == row.checksum:
        return DriftResult(state=DriftState.IN_SYNC, details="Trigger matches registry definition", **base)

    if same_function(row.function_body, live.function_definition) and same_condition(row.condition, live.condition):
        return DriftResult(
            state=DriftState.IN_SYNC,
            details="Trigger matches registry definition (catalog formatting differs)",
            **base,
        )

    return DriftResult(
        state=DriftState.DRIFTED,
        details="Trigger definition differs from registry (checksum mismatch)",
        **base,
    )


class DriftDetector:
    """Compare registry entries with live triggers.

    Parameters
    ----------
    session:
        Session used for registry reads and catalog queries.
    introspector:
        Catalog reader; built from *session* when omitted.
    """

    def __init__(self, session: AsyncSession, introspector: DatabaseIntrospector | None = None) -> None:
        self._session = session
        self._registry = TriggerRegistryRepository(session)
        self._introspector = introspector or DatabaseIntrospector(session)

    async def _unknown_for_error(self, trigger_name: str, exc: Exception) -> DriftResult:
        row = await self._registry.get(trigger_name)
        return DriftResult(
            trigger_name=trigger_name,
            state=DriftState.UNKNOWN,
            details=f"Introspection failed: {exc}",
            registry=RegistrySnapshot.from_row(row) if row is not None else None,
            expected_sql=row.function_body if row is not None else None,
        )

    async def detect(self, trigger_name: str) -> DriftResult:
        """Classify a single trigger by name."""
        try:
            async with self._session.begin_nested():
                live = await self._introspector.find_trigger(trigger_name)
        except SQLAlchemyError as exc:
            logger.warning("Drift introspection failed for %s: %s", trigger_name, exc)
            return await self._unknown_for_error(trigger_name, exc)

        row = await self._registry.get(trigger_name)
        return classify(trigger_name, row, live)

    async def detect_all(self, *, include_unmanaged: bool = False) -> list[DriftResult]:
        """One result per registry entry, plus unmanaged live triggers on request."""
        rows = await self._registry.list_all()
        try:
            async with self._session.begin_nested():
                live_triggers = await self._introspector.all_triggers()
        except SQLAlchemyError as exc:
            logger.warning("Drift introspection failed: %s", exc)
            return [
                DriftResult(
                    trigger_name=row.trigger_name,
                    state=DriftState.UNKNOWN,
                    details=f"Introspection failed: {exc}",
                    registry=RegistrySnapshot.from_row(row),
                    expected_sql=row.function_body,
                )
                for row in rows
            ]

        return self._classify_many(rows, live_triggers, include_unmanaged)

    async def detect_for_table(self, table_name: str, *, include_unmanaged: bool = False) -> list[DriftResult]:
        rows = await self._registry.list_for_table(table_name)
        try:
            async with self._session.begin_nested():
                live_triggers = await self._introspector.triggers_for_table(table_name)
        except SQLAlchemyError as exc:
            logger.warning("Drift introspection failed for table %s: %s", table_name, exc)
            return [
                DriftResult(
                    trigger_name=row.trigger_name,
                    state=DriftState.UNKNOWN,
                    details=f"Introspection failed: {exc}",
                    registry=RegistrySnapshot.from_row(row),
                )
                for row in rows
            ]
        return self._classify_many(rows, live_triggers, include_unmanaged)

    @staticmethod
    def _classify_many(
        rows: list[TriggerRegistryTable],
        live_triggers: list[LiveTrigger],
        include_unmanaged: bool,
    ) -> list[DriftResult]:
        live_by_name = {live.trigger_name: live for live in live_triggers}
        results = [classify(row.trigger_name, row, live_by_name.get(row.trigger_name)) for row in rows]
        if include_unmanaged:
            registered = {row.trigger_name for row in rows}
            for live in live_triggers:
                if live.trigger_name not in registered:
                    results.append(classify(live.trigger_name, None, live))
        return results
