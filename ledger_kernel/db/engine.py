"""
Module: ledger_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  The single point of database
    connection configuration for the kernel.
Architecture position: Kernel > DB.  May import from db/base.py and the
    model modules (create_tables only).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) on sequence counters and cost layers.
    - SQLite is accepted for tests and local runs.  An in-memory SQLite URL
      uses a StaticPool so every session sees the same database.
    - session_scope() gives commit-or-rollback semantics around a unit of
      work; nothing is committed partially.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory are called
      before init_engine_from_url().
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ledger_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


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
    Create an engine configured for the URL's backend.

    PostgreSQL gets a QueuePool and READ COMMITTED isolation.  SQLite gets
    a StaticPool when in-memory (one shared connection) and the default
    pool otherwise.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            return create_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool_timeout},
        )

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """Build the process-wide engine and its session factory, replacing any previous one."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(database_url, echo=echo, **pool_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name, "echo": echo})
    return _engine


def _require_initialized() -> tuple[Engine, sessionmaker[Session]]:
    if _engine is None or _SessionFactory is None:
        raise RuntimeError("Ledger engine not initialized; call init_engine_from_url() first")
    return _engine, _SessionFactory


def get_engine() -> Engine:
    return _require_initialized()[0]


def get_session_factory() -> sessionmaker[Session]:
    """Factory bound to the process-wide engine.  One session per unit of work."""
    return _require_initialized()[1]


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on clean exit, roll back and re-raise otherwise; always close.

    Kernel services only flush, so this is the boundary that makes their
    writes durable when no UnitOfWork is in play.
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_scope_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _register_tables():
    from ledger_kernel.db.base import Base

    # Model modules register their tables on Base.metadata at import time.
    import ledger_kernel.models  # noqa: F401
    import ledger_kernel.services.sequence_service  # noqa: F401

    return Base.metadata


def create_tables(engine: Engine | None = None) -> None:
    _register_tables().create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every ledger table.  Test teardown only."""
    _register_tables().drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the process-wide engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def is_postgres(engine: Engine | None = None) -> bool:
    target = engine if engine is not None else _engine
    return target is not None and target.dialect.name == "postgresql"
