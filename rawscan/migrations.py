"""Schema migrations for the rawscan database.

Thin wrappers over alembic so the CLI never has to build an alembic config
itself. Scripts live in ``migrations/`` beside ``alembic.ini``.
"""

from __future__ import annotations

import shutil
from typing import Optional, Tuple

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect

from .config import PROJECT_ROOT
from .database import DB_PATH, get_engine
from .logging_config import get_logger

logger = get_logger(__name__)


def _alembic_cfg() -> AlembicConfig:
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    # absolute, so the CLI works from any cwd
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    return cfg


def _is_versioned() -> bool:
    if not DB_PATH.exists():
        return False
    return inspect(get_engine()).has_table("alembic_version")


def head_revision() -> str:
    return ScriptDirectory.from_config(_alembic_cfg()).get_current_head() or "unknown"


def current_revision() -> Optional[str]:
    """Revision recorded in the database, or None for a new/unversioned DB."""
    if not _is_versioned():
        return None
    with get_engine().connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def get_status() -> Tuple[Optional[str], str]:
    """Return ``(current_revision, head_revision)``."""
    return current_revision(), head_revision()


def run_migrations(backup: bool = True) -> None:
    """Upgrade the database to head, copying it to ``rawscan.db.bak`` first."""
    if backup and DB_PATH.exists():
        shutil.copy2(DB_PATH, DB_PATH.with_suffix(".db.bak"))
        logger.debug(f"Backed up {DB_PATH.name}")
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Mark a database created by ``init_db`` (no alembic_version) as at head."""
    if not DB_PATH.exists() or _is_versioned():
        return
    logger.info("Stamping unversioned database at head")
    alembic_command.stamp(_alembic_cfg(), "head")
