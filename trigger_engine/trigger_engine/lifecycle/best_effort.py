"""Best-effort sub-steps with typed outcomes.

Some steps inside a lifecycle operation are not required for the final
state to be correct: probing whether the live trigger exists before
``ALTER TABLE``, or dropping the old trigger before re-executing its DDL.
:func:`run_best_effort` runs such a step in its own savepoint so a failed
catalog query does not abort the enclosing transaction, and reports the
result as a :class:`StepOutcome` instead of raising.

Connectivity failures are not best-effort: an invalidated connection
means nothing that follows can succeed, so those errors propagate.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy.exc import DBAPIError, DisconnectionError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StepOutcome(Generic[T]):
    """Result of a best-effort step."""

    step: str
    ok: bool
    value: T | None = None
    error: str | None = None


def is_connection_error(exc: BaseException) -> bool:
    """Return ``True`` for errors that mean the database connection is gone."""
    if isinstance(exc, DisconnectionError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


async def run_best_effort(
    session: AsyncSession,
    step: str,
    func: Callable[[], Awaitable[T]],
    *,
    default: T | None = None,
) -> StepOutcome[T]:
    """Run *func* inside a savepoint, converting database errors to an outcome.

    Parameters
    ----------
    session:
        Session whose transaction the savepoint is nested in.
    step:
        Short name used in log lines and the outcome.
    func:
        Zero-argument coroutine factory performing the step.
    default:
        Value reported when the step fails.
    """
    try:
        async with session.begin_nested():
            value = await func()
    except SQLAlchemyError as exc:
        if is_connection_error(exc):
            logger.error("Best-effort step %s lost the database connection: %s", step, exc)
            raise
        logger.warning("Best-effort step %s failed, continuing: %s", step, exc)
        return StepOutcome(step=step, ok=False, value=default, error=str(exc))
    return StepOutcome(step=step, ok=True, value=value)
