"""SQLite adapter for running the registry state store locally.

Provides an async SQLAlchemy engine backed by ``aiosqlite`` that uses the
same ORM table definitions as the PostgreSQL backend.  Used by the unit
tests and for trying the registry without a database server.

Key differences from the PostgreSQL backend:

* No connection pooling (SQLite is single-writer).
* No catalog introspection: ``pg_trigger`` and friends do not exist, so
  drift detection against SQLite always reports triggers as absent.
* JSONB columns fall back to SQLite's TEXT (JSON stored as strings).

The driver's own transaction handling is disabled and ``BEGIN`` is emitted
by SQLAlchemy instead; without that, ``SAVEPOINT`` (``begin_nested``) does
not behave transactionally under pysqlite/aiosqlite.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)


def get_local_engine(db_path: Path | str = ".triggerlayer/state.db") -> AsyncEngine:
    """Create an async SQLAlchemy engine backed by SQLite via aiosqlite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Parent directories are created
        automatically.  Use ``:memory:`` for an ephemeral database.
    """
    db_path = Path(db_path) if db_path != ":memory:" else db_path

    if isinstance(db_path, Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{db_path}"
    else:
        url = "sqlite+aiosqlite://"

    engine = create_async_engine(url, echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn: object, _: object) -> None:
        dbapi_conn.isolation_level = None  # type: ignore[attr-defined]
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: object) -> None:
        conn.exec_driver_sql("BEGIN")  # type: ignore[attr-defined]

    logger.info("Created SQLite engine: %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create all state tables.  Idempotent."""
    from trigger_engine.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("SQLite tables created/verified")
