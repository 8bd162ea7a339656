"""Raw DDL execution on the session's connection.

Trigger function bodies usually hold several statements (``CREATE
FUNCTION ...; CREATE TRIGGER ...``).  asyncpg prepares every statement sent
through SQLAlchemy, and prepared statements cannot contain more than one
command, so on PostgreSQL scripts go through the driver connection's simple
query protocol instead.  The statement still runs on the session's
connection and inside its current transaction or savepoint.

Errors raised by the driver on that path are re-raised as SQLAlchemy
``DBAPIError`` so callers handle one exception hierarchy on every backend.
"""

from __future__ import annotations

import logging

import asyncpg
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from trigger_engine.state.database import is_postgres

logger = logging.getLogger(__name__)


async def execute_script(session: AsyncSession, sql: str) -> None:
    """Execute *sql* verbatim (no bind parameter parsing)."""
    conn = await session.connection()
    if is_postgres(session):
        try:
            await run_simple_query(conn, sql)
        except asyncpg.PostgresError as exc:
            raise DBAPIError.instance(sql, None, exc, asyncpg.PostgresError) from exc
        except asyncpg.InterfaceError as exc:
            raise DBAPIError.instance(
                sql,
                None,
                exc,
                asyncpg.InterfaceError,
                connection_invalidated=isinstance(exc, asyncpg.exceptions.ConnectionDoesNotExistError),
            ) from exc
    else:
        await conn.exec_driver_sql(sql)
    logger.debug("Executed SQL (%d chars)", len(sql))


async def run_simple_query(conn: AsyncConnection, sql: str) -> None:
    """Send *sql* through asyncpg's simple query protocol."""
    raw = await conn.get_raw_connection()
    await raw.driver_connection.execute(sql)  # type: ignore[union-attr]
