"""SQLAlchemy engine and session lifecycle helpers."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker

from draft_review.config import DatabaseSettings


def create_database_engine(config: DatabaseSettings) -> Engine:
    """Construct a configured SQLAlchemy engine."""
    engine = create_engine(
        config.url,
        echo=config.echo,
        pool_pre_ping=config.pool_pre_ping,
    )
    if engine.dialect.name == "sqlite" and config.sqlite_foreign_keys:
        _enable_sqlite_foreign_keys(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to the provided SQLAlchemy engine."""
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def transactional_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Yield a session and enforce commit/rollback semantics."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def install_schema(engine: Engine) -> None:
    """Create the draft tables when they do not exist yet."""
    from draft_review.models import Base

    Base.metadata.create_all(engine)


def ping(engine: Engine) -> bool:
    """Return ``True`` when the database answers a trivial query."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception:
        return False
    return True


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on SQLite foreign key enforcement for every new connection."""

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
