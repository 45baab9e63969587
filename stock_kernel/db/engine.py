"""
Module: stock_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  This is the single point of database
    connection configuration for the ledger.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers
    (except create_tables/drop_tables which import models).

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED, with explicit row-level
      locking (SELECT ... FOR UPDATE) on material and job rows wherever a
      read feeds a write.
    - SQLite sessions open every transaction with BEGIN IMMEDIATE, so
      writers are serialized at the database level and a read inside a
      write transaction can never be stale.
    - Foreign keys are enforced on SQLite (PRAGMA foreign_keys=ON).

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory called before
      init_engine_from_url().
    - OperationalError on lock timeouts; is_transient_db_error() classifies
      the ones worth retrying.

Audit relevance:
    All ledger writes flow through sessions created by this module.  The
    session_scope() context manager ensures commit-or-rollback semantics,
    which is what makes a stock transaction all-or-nothing.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stock_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

# Module-level engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

# PostgreSQL SQLSTATEs that indicate a retryable conflict
_TRANSIENT_PG_CODES = frozenset({
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
})

_TRANSIENT_SQLITE_MESSAGES = ("database is locked", "database table is locked")


def _install_sqlite_begin_immediate(engine: Engine) -> None:
    """Take over transaction control from pysqlite and BEGIN IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create a dialect-appropriate engine without touching module state.

    PostgreSQL gets a QueuePool at READ COMMITTED.  SQLite gets
    BEGIN IMMEDIATE transactions; an in-memory database is pinned to a
    single shared connection so every session sees the same data.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        kwargs: dict = {
            "echo": echo,
            "connect_args": {"check_same_thread": False, "timeout": pool_timeout},
        }
        if in_memory:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        _install_sqlite_begin_immediate(engine)
        return engine

    return create_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialize the module-level engine from a database URL.

    Preconditions: database_url is a PostgreSQL or SQLite connection string.
    Postconditions: Module-level _engine and _SessionFactory are initialized.
        All subsequent get_engine/get_session calls use this engine.
        A second call replaces the first (the old engine is disposed).

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    _engine = build_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "echo": echo,
        },
    )
    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """
    Get a new session instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Useful for multi-threaded callers where each thread needs its own session.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Usage:
        with session_scope() as session:
            ledger.apply(...)
            # Commits on successful exit, rolls back on exception
    """
    session = get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def is_transient_db_error(exc: BaseException) -> bool:
    """
    True when exc is a database conflict that a fresh attempt may not hit.

    Covers PostgreSQL deadlocks, serialization failures and lock timeouts,
    and SQLite's busy/locked errors.  Constraint violations are NOT
    transient: callers resolve those explicitly.
    """
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    pgcode = getattr(orig, "pgcode", None)
    if pgcode in _TRANSIENT_PG_CODES:
        return True
    message = str(orig).lower()
    return any(fragment in message for fragment in _TRANSIENT_SQLITE_MESSAGES)


def create_tables(engine: Engine | None = None) -> None:
    """
    Create all ledger tables.

    Preconditions: Engine must be initialized (or passed explicitly).
    Postconditions: All tables and indexes exist.  Idempotent.
    """
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401  (registers tables on Base.metadata)

    target = engine or get_engine()
    Base.metadata.create_all(target)
    logger.info(
        "tables_created",
        extra={"table_count": len(Base.metadata.tables)},
    )


def drop_tables(engine: Engine | None = None) -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """
    Reset the engine and session factory.

    Useful for test cleanup.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def is_postgres() -> bool:
    """Check if the current engine is PostgreSQL."""
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"
