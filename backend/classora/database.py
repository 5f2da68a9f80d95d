"""Database engine and helpers.

The engine URL comes from `settings.DATABASE_URL` and defaults to a local
SQLite file next to the package (`backend/classora.db`).
"""

from pathlib import Path
from typing import Optional

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from .config import settings

DB_URL = settings.DATABASE_URL
_connect_args = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}
engine = create_engine(DB_URL, echo=False, connect_args=_connect_args)


if DB_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    Intended for local development and tests; models are imported here so
    every table is registered on the metadata before `create_all` runs.
    """
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def sqlite_file_path() -> Optional[Path]:
    """Return the database file for file-backed SQLite URLs, else None."""
    if not DB_URL.startswith("sqlite:///"):
        return None
    raw = DB_URL[len("sqlite:///"):]
    if not raw or raw == ":memory:":
        return None
    return Path(raw)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection."""
    with Session(engine) as session:
        yield session
