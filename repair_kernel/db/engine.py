"""
Module: repair_kernel.db.engine
Responsibility: Owns the process-wide SQLAlchemy engine and session factory
    for the job-sheet store, plus table creation and a commit-or-rollback
    ``session_scope``.
Architecture position: Kernel > DB.  Imports db/base.py; create_tables and
    drop_tables pull in the models lazily so the model modules can depend
    on db/ without a cycle.

Invariants enforced:
    - PostgreSQL (production) runs READ COMMITTED with a pre-pinged
      QueuePool.  Optimistic version checks on job_sheets, not isolation
      level, are what serialise competing transitions.
    - SQLite (tests, local runs) enforces foreign keys on every connection,
      so audit rows can never point at a missing job sheet there either.
    - Sessions do not expire objects on commit; repositories convert rows
      to frozen DTOs after committing.

Failure modes:
    - RuntimeError when the engine is used before init_engine_from_url().
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from repair_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALISED = "Database not initialised; call init_engine_from_url() first."


def _engine_options(dialect: str, pool_size: int, max_overflow: int) -> dict[str, Any]:
    if dialect == "sqlite":
        # Worker threads (sweeper, concurrency tests) share the file database.
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "isolation_level": "READ COMMITTED",
    }


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """
    Point the kernel at a database.  Calling it again replaces the engine.

    Args:
        database_url: ``postgresql://...`` (psycopg2) or ``sqlite:///path.db``.
        echo: Log every SQL statement.
        pool_size / max_overflow: Connection pool bounds (PostgreSQL only).
    """
    global _engine, _SessionFactory

    dialect = make_url(database_url).get_backend_name()
    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(
        database_url, echo=echo, **_engine_options(dialect, pool_size, max_overflow)
    )
    if dialect == "sqlite":
        event.listen(_engine, "connect", _enable_sqlite_foreign_keys)

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": dialect, "echo": echo})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALISED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory the repositories open their per-call sessions from."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALISED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Commit on normal exit, roll back and re-raise on any exception, always close.

    Usage:
        with session_scope() as session:
            session.add(model)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from repair_kernel.db.base import Base
    from repair_kernel.models import import_all_models

    import_all_models()
    return Base.metadata


def create_tables() -> None:
    _metadata().create_all(get_engine())


def drop_tables() -> None:
    """Drop every kernel table.  Tests and local resets only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)
