"""Raw image file headers.

:class:`RawImageFile` is the per-file metadata record that datasets are built
from. :func:`read_dicom_header` fills one in from a staged DICOM slice with
pydicom. Pfile headers have no reader here; callers plug one in through the
``HeaderReader`` signature.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import pydicom
from pydicom.multival import MultiValue

from .errors import HeaderError
from .logging_config import get_logger
from .path_utils import strip_compression_suffix
from .staging import LocalCopy

logger = get_logger(__name__)

DICOM = "dicom"
PFILE = "pfile"


@dataclasses.dataclass(frozen=True)
class RawImageFile:
    """Header metadata of one raw image file.

    ``path`` and ``filename`` refer to the original file (``.bz2`` dropped
    from the filename), never to a staged copy.
    """

    path: Path
    filename: Optional[str]
    file_type: str
    source: Optional[str] = None
    series_description: Optional[str] = None
    rmr_number: Optional[str] = None
    timestamp: Optional[datetime] = None
    rep_time: Optional[float] = None
    bold_reps: Optional[int] = None
    num_slices: Optional[int] = None

    @property
    def dicom(self) -> bool:
        return self.file_type == DICOM

    @property
    def pfile(self) -> bool:
        return self.file_type == PFILE


HeaderReader = Callable[[LocalCopy], RawImageFile]


def _first(value):
    """First element of a multi-valued element, the value itself otherwise."""
    if isinstance(value, (MultiValue, list, tuple)):
        return value[0] if len(value) else None
    return value


def _text(ds: pydicom.Dataset, *keywords: str) -> Optional[str]:
    for keyword in keywords:
        value = _first(ds.get(keyword))
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _int(ds: pydicom.Dataset, keyword: str) -> Optional[int]:
    value = _first(ds.get(keyword))
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _float(ds: pydicom.Dataset, keyword: str) -> Optional[float]:
    value = _first(ds.get(keyword))
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _timestamp(ds: pydicom.Dataset) -> Optional[datetime]:
    """Acquisition date/time, falling back to series then study."""
    for date_kw, time_kw in (
        ("AcquisitionDate", "AcquisitionTime"),
        ("SeriesDate", "SeriesTime"),
        ("StudyDate", "StudyTime"),
    ):
        date = _text(ds, date_kw)
        if not date:
            continue
        time = (_text(ds, time_kw) or "000000").split(".")[0].ljust(6, "0")
        try:
            return datetime.strptime(f"{date}{time[:6]}", "%Y%m%d%H%M%S")
        except ValueError:
            logger.debug(f"Unparseable {date_kw}/{time_kw}: {date!r} {time!r}")
    return None


def read_dicom_header(copy: LocalCopy) -> RawImageFile:
    """Read the header of a staged DICOM slice.

    Raises:
        HeaderError: if the copy is not readable as DICOM.
    """
    try:
        ds = pydicom.dcmread(copy.path, stop_before_pixels=True, force=True)
    except Exception as exc:
        raise HeaderError(f"{copy.source.name} is not a readable DICOM file: {exc}") from exc

    if "SOPClassUID" not in ds and "SeriesDescription" not in ds and "PatientID" not in ds:
        raise HeaderError(f"{copy.source.name} has no DICOM header")

    try:
        rep_time = _float(ds, "RepetitionTime")
        return RawImageFile(
            path=copy.source,
            filename=strip_compression_suffix(copy.source.name),
            file_type=DICOM,
            source=_text(ds, "StationName", "InstitutionName", "Manufacturer"),
            series_description=_text(ds, "SeriesDescription", "ProtocolName"),
            rmr_number=_text(ds, "PatientID", "StudyID"),
            timestamp=_timestamp(ds),
            # seconds, like the scanner console shows
            rep_time=rep_time / 1000.0 if rep_time is not None else None,
            bold_reps=_int(ds, "NumberOfTemporalPositions"),
            num_slices=_int(ds, "ImagesInAcquisition"),
        )
    except Exception as exc:
        raise HeaderError(f"{copy.source.name} has an unreadable header: {exc}") from exc
