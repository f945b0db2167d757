"""Database configuration and session management."""

import threading
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from cw.core.config import settings
from cw.core.errors import StoreError

_engine = None
_session_maker = None

# sqlite allows a single writer; writes from worker threads queue here
write_lock = threading.RLock()


def _configure_sqlite(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


def get_engine():
    """Get or create the engine."""
    global _engine, _session_maker

    if _engine is None:
        database_url = settings.get_database_url()

        engine_kwargs = {}
        if settings.env == "test":
            engine_kwargs["poolclass"] = NullPool
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        try:
            _engine = create_engine(database_url, echo=False, **engine_kwargs)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed opening database {database_url}: {e}") from e

        if _engine.dialect.name == "sqlite":
            event.listen(_engine, "connect", _configure_sqlite)

        _session_maker = sessionmaker(
            bind=_engine,
            class_=Session,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    return _engine


@contextmanager
def get_session():
    """Get database session.

    The session commits when the block exits cleanly and rolls back
    otherwise. SQLAlchemy failures surface as StoreError.
    """
    get_engine()  # Ensure engine is initialized

    with _session_maker() as session:
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def create_tables() -> None:
    """Create all database tables."""
    # Registers the table models on SQLModel.metadata
    import cw.models  # noqa: F401

    engine = get_engine()
    try:
        SQLModel.metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise StoreError(f"Failed creating tables: {e}") from e


def clean_database() -> None:
    """Delete all rows from every table."""
    with write_lock, get_session() as session:
        for table in reversed(SQLModel.metadata.sorted_tables):
            session.execute(table.delete())


def sqlite_version() -> str:
    """Version string of the database engine."""
    with get_session() as session:
        return session.execute(text("SELECT sqlite_version()")).scalar_one()


def engine_name() -> str:
    """Dialect name of the configured database."""
    return get_engine().dialect.name


def close_db() -> None:
    """Close database connections."""
    global _engine, _session_maker

    if _engine:
        _engine.dispose()
        _engine = None
        _session_maker = None
