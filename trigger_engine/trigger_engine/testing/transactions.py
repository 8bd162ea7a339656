"""Savepoints whose only exit is a rollback."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@asynccontextmanager
async def rollback_only(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run the block inside a savepoint that is always rolled back.

    Exceptions raised in the block still propagate; the savepoint is
    rolled back first.  Nothing executed inside the block is ever
    committed.
    """
    savepoint = await session.begin_nested()
    try:
        yield session
    finally:
        if savepoint.is_active:
            await savepoint.rollback()
        logger.debug("Rolled back test savepoint")
