"""Filename heuristics for raw scanner output.

Maps a filename to a file kind (dicom, pfile, other) and a dataset's first
filename to the shell glob used by to3d to gather every slice of the series.
"""

from __future__ import annotations

import dataclasses
import enum
import re
from pathlib import Path
from typing import Optional

from .path_utils import COMPRESSION_SUFFIX

# P + exactly five characters + .7, optionally bzipped (P12345.7, P12345.7.bz2)
PFILE_PATTERN = re.compile(r"^P.{5}\.7(\.bz2)?$")

# Bare I or I., *.dcm, or a letter followed by a numeric extension (I0001.003);
# pfiles (P?????.7) are excluded from the numeric form.
FIRST_DICOM_PATTERN = re.compile(
    r"^I\.?(\.bz2)?$|\.dcm(\.bz2)?$|[A-Za-z]\.[0-9]+(\.bz2)?$"
)

# Same as above, but any trailing numeric extension counts (001.0042).
ALL_DICOM_PATTERN = re.compile(r"^I\.?(\.bz2)?$|\.dcm(\.bz2)?$|\.[0-9]+(\.bz2)?$")


class FileKind(str, enum.Enum):
    DICOM = "dicom"
    PFILE = "pfile"
    OTHER = "other"


@dataclasses.dataclass(frozen=True)
class RawFile:
    path: Path
    kind: FileKind
    compressed: bool
    size: int

    @property
    def name(self) -> str:
        return self.path.name


def is_compressed(filename: str) -> bool:
    return filename.endswith(COMPRESSION_SUFFIX)


def is_pfile_name(filename: str) -> bool:
    return PFILE_PATTERN.match(filename) is not None


def is_first_dicom_name(filename: str) -> bool:
    if is_pfile_name(filename):
        return False
    return FIRST_DICOM_PATTERN.search(filename) is not None


def is_dicom_name(filename: str) -> bool:
    return ALL_DICOM_PATTERN.search(filename) is not None


def classify(filename: str) -> FileKind:
    """Return the file kind for a bare filename (no directory part)."""
    if is_pfile_name(filename):
        return FileKind.PFILE
    if is_dicom_name(filename):
        return FileKind.DICOM
    return FileKind.OTHER


def classify_path(path: Path) -> RawFile:
    """Classify a file on disk. The path is made absolute and stat'ed once."""
    path = path.absolute()
    return RawFile(
        path=path,
        kind=classify(path.name),
        compressed=is_compressed(path.name),
        size=path.stat().st_size,
    )


# Evaluated top to bottom against the dataset's first filename; first match wins.
_GLOB_TABLE: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"^E.*dcm$"), "E*.dcm"),
    (re.compile(r"\.dcm$"), "*.dcm"),
    (re.compile(r"^I\."), "I.*"),
    (re.compile(r"^I"), "I*.dcm"),
    (re.compile(r".*\.\d{3,4}"), "*.[0-9]*"),
    (re.compile(r"\.0"), "*.0*"),
)


def glob_for(first_filename: str) -> Optional[str]:
    """Return the to3d glob matching a dataset whose first file is ``first_filename``.

    Returns None when no compatible glob exists, which is always the case for
    pfiles. For example, a dataset starting with ``I.001`` globs as ``I.*``.
    """
    for pattern, glob in _GLOB_TABLE:
        if pattern.search(first_filename):
            return glob
    return None
