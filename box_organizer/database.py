"""Database engine, session factory and transaction helpers."""
import functools
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from box_organizer.config import settings
from box_organizer.services.errors import TransactionConflict

logger = logging.getLogger(__name__)

Base = declarative_base()

# serialization_failure, deadlock_detected
CONFLICT_SQLSTATES = {"40001", "40P01"}


def _configure_sqlite_connection(dbapi_connection, connection_record):
    # BEGIN is issued by _begin_immediate, not by the driver
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_immediate(conn):
    # Take the write lock before the first read of every transaction
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str) -> Engine:
    """Create an engine.

    SQLite connections get foreign keys switched on and start every
    transaction with BEGIN IMMEDIATE, so transactions are serialized from
    their first statement rather than from their first write.
    """
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    engine = create_engine(url, echo=False, connect_args=connect_args)
    if is_sqlite:
        event.listen(engine, "connect", _configure_sqlite_connection)
        event.listen(engine, "begin", _begin_immediate)
    return engine


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autoflush=False, bind=engine)


def init_db(bind: Optional[Engine] = None) -> None:
    """Create all tables on ``bind`` (the default engine if omitted)."""
    # Register models on Base.metadata
    from box_organizer import models  # noqa: F401

    logger.info("Ensuring database tables are created")
    Base.metadata.create_all(bind=bind or engine)


def is_conflict(exc: DBAPIError) -> bool:
    """Whether a driver error means a concurrent transaction got in the way."""
    if isinstance(exc, OperationalError) and "database is locked" in str(exc.orig):
        return True
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    return code in CONFLICT_SQLSTATES


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Run a unit of work as a single transaction.

    Commits when the block finishes and rolls back on any exception, including
    cancellation, so no partial cascade is ever persisted. Lock and
    serialization failures are re-raised as ``TransactionConflict``.
    """
    try:
        yield db
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        if is_conflict(exc):
            logger.warning("Transaction aborted by a concurrent modification: %s", exc.orig)
            raise TransactionConflict() from exc
        raise
    except BaseException:
        db.rollback()
        raise


def retry_on_conflict(func):
    """Re-run an operation after ``TransactionConflict``.

    The operation gets ``settings.TRANSACTION_RETRIES`` extra attempts before
    the conflict is surfaced to the caller.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except TransactionConflict:
                if attempt >= settings.TRANSACTION_RETRIES:
                    logger.error("%s failed after %d attempts", func.__name__, attempt + 1)
                    raise
                attempt += 1
                logger.warning("Retrying %s after transaction conflict", func.__name__)
    return wrapper


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a session that is closed when the block exits."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
