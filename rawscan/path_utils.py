"""Path and filename helpers.

Sanitising and relative-path conversion live here as plain functions over
strings and :class:`~pathlib.Path` values.
"""

from __future__ import annotations

import fnmatch
import os
import re
from pathlib import Path
from typing import Iterable, Optional

COMPRESSION_SUFFIX = ".bz2"

_FILENAME_SEPARATORS = re.compile(r"[\s:)(/?,]+")
_DIRNAME_SEPARATORS = re.compile(r"[\s:)(?,]+")


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def strip_compression_suffix(name: str) -> str:
    """Drop a trailing ``.bz2`` from a filename, if present."""
    if name.endswith(COMPRESSION_SUFFIX):
        return name[: -len(COMPRESSION_SUFFIX)]
    return name


def escape_filename(name: str) -> str:
    """Return a filesystem-legal version of a filename.

    Runs of whitespace, parentheses, colons, slashes, question marks and commas
    collapse to a single hyphen, ``*`` becomes ``star`` and dots are removed
    from the stem. The last extension is kept so that slice numbering survives.

    Example:
        >>> escape_filename("T1 (axial).v2.dcm")
        'T1-axial-v2.dcm'
        >>> escape_filename("I.001")
        'I.001'
    """
    stem, dot, suffix = name.rpartition(".")
    if not dot or not stem:
        stem, suffix = name, ""
    stem = _FILENAME_SEPARATORS.sub("-", stem).replace("*", "star").replace(".", "")
    suffix = _FILENAME_SEPARATORS.sub("-", suffix).replace("*", "star")
    return f"{stem}.{suffix}" if suffix else stem


def escape_dirname(name: str) -> str:
    """Return a directory-legal version of ``name`` (slashes and dots are kept)."""
    return _DIRNAME_SEPARATORS.sub("-", name).replace("*", "star")


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    """Return True if ``name`` matches any of the shell-style patterns."""
    return any(fnmatch.fnmatch(name, pattern) for pattern in patterns)


def to_relative(absolute_path: Path, base_dir: Optional[Path]) -> str:
    """Convert an absolute path to a path string relative to ``base_dir``.

    Paths outside ``base_dir`` fall back to a ``..``-style relative path, like
    :meth:`pathlib.Path.relative_to` with ``walk_up``.

    Example:
        >>> to_relative(Path("/visit/raw/P12345.7"), Path("/visit"))
        'raw/P12345.7'
    """
    if base_dir is None:
        return absolute_path.name
    try:
        return str(absolute_path.relative_to(base_dir))
    except ValueError:
        return os.path.relpath(absolute_path, base_dir)
