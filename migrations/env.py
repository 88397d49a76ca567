"""Alembic migration environment.

Imports the engine and metadata from the rawscan package so that migrations
use the exact same database connection the application does.
"""

from __future__ import annotations

from alembic import context
from sqlmodel import SQLModel

from rawscan.database import engine  # noqa: F401

# Register every table on SQLModel.metadata before Alembic inspects it.
from rawscan import models as _models  # noqa: F401

target_metadata = SQLModel.metadata


def run_migrations_online() -> None:
    """Run migrations with a real database connection."""
    with engine.connect() as conn:
        context.configure(
            connection=conn,
            target_metadata=target_metadata,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    raise RuntimeError(
        "Offline migration mode is not supported. "
        "Run without --sql."
    )
else:
    run_migrations_online()
