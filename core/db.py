import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.errors import EngineError, StorageFailure

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

# PostgreSQL: serialization failure, deadlock detected
RETRYABLE_PGCODES = {"40001", "40P01"}
RETRYABLE_MESSAGES = ("deadlock detected", "could not serialize access", "database is locked")


class Base(DeclarativeBase):
    pass


def make_engine(database_url: str, echo: bool = False, busy_timeout: float = 30) -> Engine:
    """Create an engine for ``database_url``.

    SQLite connections enforce foreign keys and open every transaction with
    ``BEGIN IMMEDIATE`` so concurrent writers queue on the database lock
    instead of failing on lock upgrade.
    """
    if not database_url.startswith("sqlite"):
        # For PostgreSQL and other databases
        return create_engine(database_url, echo=echo, future=True)

    in_memory = database_url in ("sqlite://", "sqlite+pysqlite://") or ":memory:" in database_url
    engine = create_engine(
        database_url,
        echo=echo,
        future=True,
        connect_args={"check_same_thread": False, "timeout": busy_timeout},
        poolclass=StaticPool if in_memory else None,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def is_retryable(exc: BaseException) -> bool:
    orig = getattr(exc, "orig", None) or getattr(exc, "__cause__", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code and code in RETRYABLE_PGCODES:
        return True
    msg = str(exc).lower()
    return any(k in msg for k in RETRYABLE_MESSAGES)


@contextmanager
def transaction(session_factory: SessionFactory) -> Iterator[Session]:
    """One atomic unit against the store: commit on success, roll back otherwise.

    Engine errors propagate unchanged; anything the driver raises surfaces
    as ``StorageFailure``.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except EngineError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        retryable = is_retryable(exc)
        if not retryable:
            logger.exception("Transaction aborted by the store")
        raise StorageFailure(f"Storage failure: {exc.__class__.__name__}", retryable=retryable) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def ping(engine: Engine) -> str:
    """Run a trivial query, returning the dialect name on success."""
    with engine.connect() as conn:
        conn.exec_driver_sql("SELECT 1")
    return engine.dialect.name
