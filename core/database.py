"""
core/database.py -- Engine factory, shared schema metadata, transaction helper.

SQLAlchemy Core (not ORM). auth/store.py and market/store.py both declare
their tables on the shared `metadata` below so the refresh_tokens and
book_posts foreign keys can reference the principal tables, and so that a
single engine (one connection string) serves every repository.

SQLite specifics (applied per connection, PRAGMAs are not inherited):
  - foreign_keys=ON: SQLite ignores FK constraints unless asked.
  - journal_mode=WAL for file databases so readers do not block on writers.
  - BEGIN IMMEDIATE for every transaction. pysqlite's own implicit BEGIN is
    disabled and replaced by the "begin" event, so the write lock is taken
    when the transaction opens. Two rotations of the same refresh token, or
    two admins approving the same owner, are therefore serialized: the
    second one only sees the first one's committed result.

Layer rule: core/ may not import from api/, auth/, or market/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import BookSwapError, PersistenceFailure

logger = logging.getLogger("bookswap.db")

metadata = MetaData()


def _is_memory_url(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in db_url


def create_db_engine(db_url: str) -> Engine:
    """Create an Engine and create all tables registered on `metadata`.

    Repositories import their table modules before calling this, so every
    table they declare exists once the engine is returned.
    """
    connect_args: dict = {}
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)

    if is_sqlite:
        use_wal = not _is_memory_url(db_url)

        def _on_connect(dbapi_conn, connection_record) -> None:
            dbapi_conn.isolation_level = None
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if use_wal:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        def _on_begin(conn: Connection) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        event.listen(engine, "connect", _on_connect)
        event.listen(engine, "begin", _on_begin)

    metadata.create_all(engine)
    return engine


@contextmanager
def transaction(engine: Engine, operation: str) -> Iterator[Connection]:
    """Run a block in one transaction; all of it commits or none of it does.

    Domain errors raised inside the block (AlreadyProcessed, NotAvailable...)
    roll back and propagate unchanged. Driver errors roll back and surface
    as a single PersistenceFailure.
    """
    try:
        with engine.begin() as conn:
            yield conn
    except BookSwapError:
        raise
    except SQLAlchemyError as exc:
        logger.exception("Rolled back %s", operation)
        raise PersistenceFailure(f"Error during {operation}; no changes were saved.") from exc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Store timestamps as ISO 8601 UTC strings (sortable, driver independent)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
