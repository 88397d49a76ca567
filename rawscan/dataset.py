"""Raw image datasets.

A :class:`RawImageDataset` is one 3D or 4D image: either a directory of DICOM
slices or a single pfile, described by the :class:`RawImageFile` headers that
compose it. Aggregate fields (subject, series, earliest timestamp, glob) are
derived once at construction. The only state filled in later is the
thumbnail and the cached file count.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence, Tuple, Union

from .classifier import glob_for
from .errors import ConfigurationError, EmptyDatasetError, StructuralError
from .logging_config import get_logger
from .path_utils import escape_dirname, is_hidden, to_relative
from .raw_image import RawImageFile
from .recon import DatasetType, strategy_for

if TYPE_CHECKING:
    from .thumbnails import ThumbnailRenderer

logger = get_logger(__name__)

METADATA_SUFFIX = ".yaml"


@dataclasses.dataclass(frozen=True)
class DatasetRecord:
    """Column values for the ``image_datasets`` table."""

    rmr: str
    series_description: str
    path: str
    timestamp: datetime
    glob: Optional[str]
    rep_time: Optional[float]
    bold_reps: Optional[int]
    slices_per_volume: Optional[int]
    scanned_file: str
    visit_id: Optional[int] = None
    thumbnail: Optional[str] = None


class RawImageDataset:
    """A set of raw image files that make up one series.

    Raises:
        ConfigurationError: the directory does not exist or no files were supplied.
        StructuralError: an element is not a :class:`RawImageFile`, or the series
            description, rmr number, timestamp, filename or scanner source is
            missing from the first file.

    Members are assumed to belong to the same subject and series. Divergent
    members are logged, not rejected.
    """

    def __init__(
        self,
        directory: Path,
        raw_image_files: Union[RawImageFile, Sequence[RawImageFile], None],
        dataset_type: DatasetType = DatasetType.UNKNOWN,
        log: Optional[logging.Logger] = None,
    ):
        self._log = log or logger
        self.directory = Path(directory).expanduser().absolute()
        if not self.directory.is_dir():
            raise ConfigurationError(f"{self.directory} not found.")
        if raw_image_files is None:
            raise EmptyDatasetError("No raw image files supplied.")

        if isinstance(raw_image_files, RawImageFile):
            raw_image_files = [raw_image_files]
        if not isinstance(raw_image_files, (list, tuple)):
            raise StructuralError(f"{raw_image_files!r} is not a RawImageFile")

        for im in raw_image_files:
            if not isinstance(im, RawImageFile):
                raise StructuralError(f"{im!r} is not a RawImageFile")
        if not raw_image_files:
            raise EmptyDatasetError("No raw image files supplied.")

        self.raw_image_files: Tuple[RawImageFile, ...] = tuple(raw_image_files)
        first = self.raw_image_files[0]

        self.series_description = first.series_description
        if self.series_description is None:
            raise StructuralError(f"No series description found in {first.path}")
        self.rmr_number = first.rmr_number
        if self.rmr_number is None:
            raise StructuralError(f"No rmr found in {first.path}")
        if first.timestamp is None:
            raise StructuralError(f"No timestamp found in {first.path}")
        self.timestamp = self._earliest_timestamp()
        self.dataset_key = f"{self.rmr_number}::{self.timestamp.isoformat()}"
        self.scanned_file = first.filename
        if self.scanned_file is None:
            raise StructuralError(f"No scanned file found in {first.path}")
        self.scanner_source = first.source
        if self.scanner_source is None:
            raise StructuralError(f"No scanner source found in {first.path}")

        self.dataset_type = dataset_type
        self._strategy = strategy_for(dataset_type)
        self._thumbnail: Optional[Path] = None

        self._warn_on_divergent_members()

    def __repr__(self) -> str:
        return f"<RawImageDataset {self.dataset_key} {self.series_description!r} ({len(self.raw_image_files)} files)>"

    def _earliest_timestamp(self) -> datetime:
        # sorted() is stable, so ties keep their original order
        stamped = [im for im in self.raw_image_files if im.timestamp is not None]
        return sorted(stamped, key=lambda im: im.timestamp)[0].timestamp

    def _warn_on_divergent_members(self) -> None:
        rmrs = {im.rmr_number for im in self.raw_image_files}
        series = {im.series_description for im in self.raw_image_files}
        if len(rmrs) > 1 or len(series) > 1:
            self._log.warning(
                f"{self.directory.name}: members disagree on identity "
                f"(rmr: {sorted(map(str, rmrs))}, series: {sorted(map(str, series))}); "
                f"using {self.rmr_number} / {self.series_description}"
            )

    @property
    def first_file(self) -> RawImageFile:
        return self.raw_image_files[0]

    @property
    def glob(self) -> Optional[str]:
        """Wildcard used by to3d to gather the dataset's files (None for pfiles)."""
        return glob_for(self.first_file.filename)

    @property
    def series_details(self) -> str:
        return self.series_description

    @functools.cached_property
    def file_count(self) -> int:
        first = self.first_file
        if first.dicom:
            return len(
                [
                    name
                    for name in os.listdir(self.directory)
                    if not is_hidden(name) and not name.endswith(METADATA_SUFFIX)
                ]
            )
        if first.pfile:
            return 1
        raise StructuralError(f"File {first.filename} not recognized as dicom or pfile.")

    def relative_dataset_path(self, base_dir: Optional[Path] = None) -> str:
        """Path to the dataset: the directory name for DICOM, the pfile for pfiles.

        With ``base_dir`` (usually the visit directory) a pfile is given relative
        to it, e.g. ``raw/P00000.7``; otherwise just ``P00000.7``.
        """
        first = self.first_file
        if first.dicom:
            return self.directory.name
        if first.pfile:
            return to_relative(self.directory / first.filename, base_dir)
        raise StructuralError(f"Cannot identify {first.filename}")

    @property
    def thumbnail(self) -> Optional[Path]:
        return self._thumbnail

    def create_thumbnail(self, renderer: "ThumbnailRenderer") -> Path:
        self._thumbnail = renderer.render(self)
        return self._thumbnail

    def thumbnail_path(self, renderer: "ThumbnailRenderer") -> Path:
        """Return the thumbnail, rendering it on first use."""
        if self._thumbnail is None:
            self.create_thumbnail(renderer)
        return self._thumbnail

    def to_record(
        self, visit_id: Optional[int] = None, thumbnail: Optional[Path] = None
    ) -> DatasetRecord:
        first = self.first_file
        thumb = thumbnail or self._thumbnail
        return DatasetRecord(
            rmr=self.rmr_number,
            series_description=self.series_description,
            path=str(self.directory),
            timestamp=self.timestamp,
            glob=self.glob,
            rep_time=first.rep_time,
            bold_reps=first.bold_reps,
            slices_per_volume=first.num_slices,
            scanned_file=self.scanned_file,
            visit_id=visit_id,
            thumbnail=str(thumb) if thumb else None,
        )

    def to_nifti(
        self,
        output_dir: Path,
        filename: str,
        append_modality_directory: bool = False,
        command: str = "to3d",
    ) -> Tuple[str, Path]:
        """Return ``(command, output_file)`` that reconstructs this dataset."""
        output_dir = Path(output_dir)
        if append_modality_directory:
            output_dir = output_dir / escape_dirname(self._strategy.modality_directory)
        return self._strategy.dataset_to_nifti(self, output_dir, filename, command=command)


def build(
    directory: Path,
    files: Union[RawImageFile, Sequence[RawImageFile], None],
    dataset_type: DatasetType = DatasetType.UNKNOWN,
    log: Optional[logging.Logger] = None,
) -> RawImageDataset:
    """Build a dataset from the headers of the files found in ``directory``."""
    return RawImageDataset(directory, files, dataset_type=dataset_type, log=log)
