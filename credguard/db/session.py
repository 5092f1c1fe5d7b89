from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from credguard.core.config import settings
from credguard.services.errors import PolicyViolation


def create_db_engine(database_url: str) -> Engine:
    """Build an engine; SQLite connections get explicit write-locking transactions."""

    if not database_url.startswith("sqlite"):
        return create_engine(database_url, future=True, pool_pre_ping=True)

    engine = create_engine(
        database_url,
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    # pysqlite defers BEGIN and breaks SAVEPOINT; take over transaction control
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


engine = create_db_engine(settings.database_url)
SessionLocal = create_session_factory(engine)


def transactional_session(
    factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations.

    Policy violations are terminal outcomes whose accompanying side effects
    (security trail, automatic suspension of a conflicting license holder)
    must persist, so they commit; every other failure rolls back.
    """

    db = factory()
    try:
        yield db
        db.commit()
    except PolicyViolation:
        db.commit()
        raise
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""

    yield from transactional_session(SessionLocal)


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Iterator[Session]:
    """Context-manager form of ``transactional_session`` for workers and scripts."""

    yield from transactional_session(factory or SessionLocal)
