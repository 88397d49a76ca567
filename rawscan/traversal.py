"""Directory traversal for raw scanner output.

Walks visit directories depth first and finds candidate pfiles and DICOM
slices among the direct entries of a directory.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from .classifier import is_dicom_name, is_first_dicom_name, is_pfile_name
from .config import MIN_PFILE_SIZE
from .errors import TraversalError
from .logging_config import get_logger
from .path_utils import is_hidden

logger = get_logger(__name__)


def _list_entries(directory: Path) -> List[os.DirEntry]:
    try:
        with os.scandir(directory) as it:
            return list(it)
    except OSError as exc:
        raise TraversalError(f"Unable to read directory {directory}: {exc}", directory) from exc


def walk_subdirectories(
    root: Path,
    onerror: Optional[Callable[[TraversalError], None]] = None,
) -> Iterator[Path]:
    """Yield every subdirectory under ``root``, children before their parent.

    Hidden entries and symbolic links are never followed nor yielded. ``root``
    itself is not yielded. An unreadable directory raises
    :class:`TraversalError`, unless ``onerror`` is given, in which case it is
    called with the error and the walk carries on with the siblings (as
    :func:`os.walk` does).
    """
    root = Path(root)
    try:
        entries = _list_entries(root)
    except TraversalError as exc:
        if onerror is None:
            raise
        onerror(exc)
        return

    for entry in entries:
        if is_hidden(entry.name):
            continue
        if entry.is_symlink() or not entry.is_dir(follow_symlinks=False):
            continue
        branch = root / entry.name
        yield from walk_subdirectories(branch, onerror)
        yield branch


def iter_visible_entries(directory: Path) -> Iterator[Path]:
    """Yield direct, non-hidden, non-symlink entries of ``directory``."""
    for entry in _list_entries(directory):
        if is_hidden(entry.name) or entry.is_symlink():
            continue
        yield Path(directory) / entry.name


def find_large_pfile_candidates(
    directory: Path,
    min_size: int = MIN_PFILE_SIZE,
    log: Optional[logging.Logger] = None,
) -> List[Path]:
    """Return pfiles (``P?????.7[.bz2]``) directly in ``directory`` of at least ``min_size`` bytes."""
    log = log or logger
    candidates = []
    for entry in _list_entries(directory):
        if not is_pfile_name(entry.name) or entry.is_symlink():
            continue
        size = entry.stat(follow_symlinks=False).st_size
        if size < min_size:
            log.debug(f"Skipping small pfile {entry.name} ({size} bytes)")
            continue
        candidates.append(Path(directory) / entry.name)
    return sorted(candidates)


def find_first_dicom_candidate(directory: Path) -> Optional[Path]:
    """Return the first visible direct entry that looks like a DICOM slice, or None."""
    for entry in sorted(_list_entries(directory), key=lambda e: e.name):
        if not is_hidden(entry.name) and is_first_dicom_name(entry.name):
            return Path(directory) / entry.name
    return None


def find_all_dicom_candidates(directory: Path) -> List[Path]:
    """Return every visible direct entry that looks like a DICOM slice, sorted by name.

    Hidden names (macOS ``._I.001`` resource forks included) are skipped.
    """
    return sorted(
        Path(directory) / entry.name
        for entry in _list_entries(directory)
        if not is_hidden(entry.name) and is_dicom_name(entry.name)
    )
