"""
Module: payroll_kernel.db.engine
Responsibility: Build the SQLAlchemy engine for PostgreSQL or SQLite, hand out
    sessions, and create or drop the schema.
Architecture position: Kernel > DB.  Only create_tables/drop_tables reach
    outward, to import the ORM modules whose tables live on Base.metadata.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED behind a pre-pinged QueuePool.
    - SQLite issues its own BEGIN so SAVEPOINTs work; every paycheck a run
      persists sits in ``session.begin_nested()``.
    - In-memory SQLite is a single shared connection, visible to every
      session and every worker thread.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from payroll_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_IN_MEMORY_URLS = frozenset({"sqlite://", "sqlite:///:memory:"})
_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def create_sqlite_engine(database_url: str = "sqlite://", echo: bool = False) -> Engine:
    """SQLite engine whose transactions and savepoints are driven by SQLAlchemy."""
    options: dict = {"echo": echo}
    if database_url in _IN_MEMORY_URLS:
        options.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    engine = create_engine(database_url, **options)

    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        # pysqlite otherwise starts and ends transactions on its own
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _create_postgres_engine(database_url: str, echo: bool, **pool_options) -> Engine:
    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_pre_ping=True,
        isolation_level="READ COMMITTED",
        **pool_options,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    The pool arguments only apply to server databases; SQLite ignores them.
    """
    global _engine, _session_factory

    if database_url.startswith("sqlite"):
        _engine = create_sqlite_engine(database_url, echo=echo)
    else:
        _engine = _create_postgres_engine(
            database_url,
            echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name, "echo": echo})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session() -> Session:
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory()


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    Commit on success, roll back and re-raise on error, always close.

    Uses the process-wide factory unless one is passed in::

        with session_scope() as session:
            PayrollRunExecutor(session, organization_id).run(request, actor_id, key)
    """
    session = factory() if factory is not None else get_session()
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
    from payroll_kernel.db.base import Base
    import payroll_batch.models.run  # noqa: F401
    import payroll_kernel.models  # noqa: F401

    return Base.metadata


def create_tables(engine: Engine | None = None) -> None:
    metadata = _metadata()
    metadata.create_all(engine or get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.tables)})


def drop_tables(engine: Engine | None = None) -> None:
    _metadata().drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the process-wide engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
