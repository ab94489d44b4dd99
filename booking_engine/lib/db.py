"""
Database engine and session management using SQLAlchemy 2.x.
Provides connection pooling and session factory for the SQL schedule store.
"""
from contextlib import contextmanager
from functools import lru_cache
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, DeclarativeBase

from booking_engine.lib.settings import settings


# Base class for all SQLAlchemy models
class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def build_engine(database_url: str, statement_timeout_ms: Optional[int] = None, **kwargs) -> Engine:
    """
    Create an engine for the given URL.

    Postgres connections get a server-side statement timeout so a stuck
    query can never hold a request open past the store's deadline.
    """
    connect_args = kwargs.pop("connect_args", {})
    if database_url.startswith("postgresql") and statement_timeout_ms:
        connect_args.setdefault("options", f"-c statement_timeout={statement_timeout_ms}")

    return create_engine(
        database_url,
        echo=settings.debug,
        pool_pre_ping=True,  # Verify connections before using
        connect_args=connect_args,
        **kwargs,
    )


@lru_cache()
def get_engine() -> Engine:
    """Application engine, created on first use."""
    return build_engine(
        settings.database_url,
        statement_timeout_ms=settings.db_statement_timeout_ms,
        pool_size=5,
        max_overflow=10,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory; objects stay readable after commit for detached use."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@lru_cache()
def get_session_factory() -> sessionmaker:
    return make_session_factory(get_engine())


@contextmanager
def session_scope(
    factory: Optional[sessionmaker] = None,
    isolation_level: Optional[str] = None,
) -> Generator[Session, None, None]:
    """
    Context manager for one unit of work.

    Commits on success, rolls back on any exception and always closes.

    Usage:
        with session_scope(factory) as db:
            db.add(booking)
    """
    db = (factory or get_session_factory())()
    try:
        if isolation_level and db.get_bind().dialect.name == "postgresql":
            db.connection(execution_options={"isolation_level": isolation_level})
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Optional[Engine] = None) -> None:
    """
    Create all tables. Should be called after all models are imported.
    """
    import booking_engine.models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def drop_db(engine: Optional[Engine] = None) -> None:
    """
    Drop all tables. Use with caution - for testing only.
    """
    Base.metadata.drop_all(bind=engine or get_engine())
