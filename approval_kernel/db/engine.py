"""
Engine and session management for the approval store.

Tier decisions depend on how the backend treats a conditional UPDATE that
races another writer, so each dialect is configured for that:

    - PostgreSQL runs at READ COMMITTED.  A second ``UPDATE ... WHERE
      status = 'pending'`` blocks on the first writer's row lock, then
      re-evaluates its WHERE clause after commit and matches zero rows.
    - SQLite opens every transaction with ``BEGIN IMMEDIATE``.  Writers
      queue on the database lock instead of deadlocking on a lock upgrade,
      and SAVEPOINT behaves as documented.  A writer that waits longer than
      ``sqlite_timeout`` seconds gets OperationalError ("database is locked").

get_engine/get_session/get_session_factory raise RuntimeError until
init_engine_from_url() has run.  Tests build private engines with
build_engine() instead.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from approval_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

# Module-level engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """Take over pysqlite's implicit BEGIN so SAVEPOINT and locking behave."""

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_timeout: float = 30.0,
) -> Engine:
    """
    Create an engine configured for the URL's dialect.

    Does not touch the module-level engine; used directly by tests that need
    an isolated database.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": sqlite_timeout},
        )
        _install_sqlite_transaction_hooks(engine)
        return engine

    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, echo: bool = False, **kwargs) -> Engine:
    """
    Install the process-wide engine and session factory.

    A second call replaces the first; the old engine is not disposed.
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, **kwargs)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that open their own sessions, one per thread."""
    return _require_factory()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One unit of work: commit on success, roll back and re-raise on error.

    Services never commit; the caller decides where a decision's
    transaction ends::

        with session_scope() as session:
            processor = DecisionProcessor(session, authority)
            processor.approve(owner, actor_id, actor_name)

    ``factory`` lets tests and worker threads use a private engine.
    """
    session = (factory or _require_factory())()
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
    from approval_kernel.db.base import Base
    import approval_kernel.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables(engine: Engine | None = None) -> None:
    _metadata().create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every approval table.  Tests and local tooling only."""
    _metadata().drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose and forget the process-wide engine."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"
