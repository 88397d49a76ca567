"""Database connection and session management using SQLModel."""

from __future__ import annotations

from sqlmodel import SQLModel, create_engine

from .config import DATA_DIR

DB_PATH = DATA_DIR / "rawscan.db"
SQLITE_URL = f"sqlite:///{DB_PATH}"

engine = create_engine(SQLITE_URL)


def init_db() -> None:
    """Create database tables."""
    # Import models to ensure they are registered with SQLModel.metadata
    from . import models  # noqa: F401

    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")

    SQLModel.metadata.create_all(engine)


def reset_database() -> None:
    """Delete the database file and recreate it."""
    if DB_PATH.exists():
        DB_PATH.unlink()
    init_db()


def get_engine():
    """Return the global engine instance."""
    return engine

