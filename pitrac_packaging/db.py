"""Build history database.

Build attempts are recorded in a small SQLAlchemy database, SQLite in the
build directory unless ``PITRAC_PKG_DB_URL`` points elsewhere. Rows are
written from build worker threads, one short session per record.
"""

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from pitrac_packaging.config import get_settings

SQLITE_PREFIX = "sqlite:///"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _sqlite_file(db_url: str) -> Path | None:
    """Return the database file behind a SQLite URL, if it has one."""
    if not db_url.startswith(SQLITE_PREFIX):
        return None
    path = db_url.removeprefix(SQLITE_PREFIX)
    if not path or path == ":memory:":
        return None
    return Path(path)


def get_engine(db_url: str | None = None) -> Engine:
    """Create an engine for the history database.

    For file-backed SQLite the parent directory is created, since the
    default database lives in a build directory that may not exist yet.

    Args:
        db_url: Database URL. If not provided, uses the configured one.

    Returns:
        SQLAlchemy Engine instance.
    """
    if db_url is None:
        db_url = get_settings().effective_db_url

    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        # Recorders write from pool threads
        connect_args["check_same_thread"] = False
        db_file = _sqlite_file(db_url)
        if db_file is not None:
            db_file.parent.mkdir(parents=True, exist_ok=True)

    return create_engine(db_url, connect_args=connect_args, echo=False)


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine``.

    Objects stay usable after commit so listed records can be rendered
    once their session is closed.
    """
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the history tables if they do not exist."""
    # Register models with the mapper before creating tables
    from pitrac_packaging.builds import models as builds_models  # noqa: F401

    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(bind=engine)


def open_history(db_url: str | None = None) -> sessionmaker[Session]:
    """Open the history database, creating its tables on first use.

    Args:
        db_url: Database URL. If not provided, uses the configured one.

    Returns:
        Session factory for the history database.
    """
    engine = get_engine(db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session_factory",
    "open_history",
]
