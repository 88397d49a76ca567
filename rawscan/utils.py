"""Utility functions for rawscan."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from .logging_config import get_logger

logger = get_logger(__name__)


def short_path(path: Path) -> str:
    """Return abbreviated path showing only parent folder + name.

    Example: /data/raw/rmr001_visit1/s03_bold -> rmr001_visit1/s03_bold
    """
    return f"{path.parent.name}/{path.name}"


def delete_thumbnails(thumbnails: Iterable[Path], thumbnails_dir: Path) -> int:
    """Delete thumbnail files that live in ``thumbnails_dir``.

    Paths outside the directory are left alone. Returns count of deleted thumbnails.
    """
    deleted = 0
    root = thumbnails_dir.resolve()
    for thumb_path in thumbnails:
        thumb_path = Path(thumb_path)
        if not thumb_path.resolve().is_relative_to(root):
            continue
        if thumb_path.exists():
            try:
                thumb_path.unlink()
                deleted += 1
            except OSError as exc:
                logger.error(f"Failed to delete thumbnail {thumb_path}: {exc}")
    return deleted
