"""
Module: payroll_kernel.db.engine
Responsibility: Build the process-wide SQLAlchemy engine and the session
    factory that services and the bulk orchestrator open sessions from.
Architecture position: Kernel > DB.  Reaches outward in two places, both
    deferred imports: ``init_engine_from_url`` registers the run-snapshot
    immutability listeners, and ``create_tables`` imports every ORM model
    before ``create_all``.

Dialects:
    - PostgreSQL: pooled, pre-pinged connections at READ COMMITTED.  Period
      transitions lock the period row FOR UPDATE; finalize and supersede
      take it FOR SHARE.
    - SQLite (tests, local runs): busy timeout, and every transaction opens
      with BEGIN IMMEDIATE.  Writers then queue on the database lock instead
      of failing with "database is locked" when a read upgrades to a write.

Failure modes:
    - RuntimeError from get_engine/get_session_factory before
      init_engine_from_url().
    - Pool exhaustion when more sessions are open than pool_size +
      max_overflow; ``PayrollConfig.bulk_max_workers`` stays below the pool.
"""

import atexit

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from payroll_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    busy_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Create the engine and session factory; a second call replaces both."""
    global _engine, _session_factory

    dialect = make_url(database_url).get_backend_name()
    if dialect == "postgresql":
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=busy_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
    elif dialect == "sqlite":
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": busy_timeout, "check_same_thread": False},
        )
        _begin_immediate_on(engine)
    else:
        engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

    if _engine is not None:
        _engine.dispose()
    _engine = engine
    # Snapshots built after commit must stay readable without a refresh.
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    from payroll_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "pool_size": pool_size if dialect == "postgresql" else None,
        },
    )
    return engine


def _begin_immediate_on(engine: Engine) -> None:
    """pysqlite recipe: SQLAlchemy emits BEGIN itself, taking the write lock."""

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for per-request and per-employee sessions."""
    if _session_factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _session_factory


def create_tables() -> None:
    """Create the kernel tables and every module table."""
    from payroll_kernel.db.base import Base
    from payroll_kernel.models import payroll_period, payroll_run  # noqa: F401
    from payroll_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory (test cleanup)."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
