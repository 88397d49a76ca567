"""Shared fixtures: synthetic DICOM slices and raw image headers."""

from datetime import datetime
from pathlib import Path
from typing import Optional

import numpy as np
import pytest
from pydicom.dataset import Dataset, FileMetaDataset
from pydicom.uid import ExplicitVRLittleEndian, MRImageStorage, generate_uid

from rawscan.raw_image import DICOM, RawImageFile


def write_dicom(
    path: Path,
    *,
    patient_id: str = "RMR001",
    series: str = "fMRI rest",
    date: str = "20240102",
    time: str = "101112",
    station: str = "MR750",
    pixels: Optional[np.ndarray] = None,
    **elements,
) -> Path:
    meta = FileMetaDataset()
    meta.MediaStorageSOPClassUID = MRImageStorage
    meta.MediaStorageSOPInstanceUID = generate_uid()
    meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = Dataset()
    ds.file_meta = meta
    ds.SOPClassUID = MRImageStorage
    ds.SOPInstanceUID = meta.MediaStorageSOPInstanceUID
    ds.PatientID = patient_id
    ds.SeriesDescription = series
    ds.AcquisitionDate = date
    ds.AcquisitionTime = time
    ds.StationName = station
    ds.RepetitionTime = 2000
    ds.NumberOfTemporalPositions = 120
    ds.ImagesInAcquisition = 30
    for keyword, value in elements.items():
        setattr(ds, keyword, value)

    if pixels is not None:
        ds.Rows, ds.Columns = pixels.shape
        ds.SamplesPerPixel = 1
        ds.PhotometricInterpretation = "MONOCHROME2"
        ds.BitsAllocated = 16
        ds.BitsStored = 16
        ds.HighBit = 15
        ds.PixelRepresentation = 0
        ds.PixelData = pixels.astype(np.uint16).tobytes()

    ds.save_as(path, enforce_file_format=True)
    return path


def make_raw_file(
    filename: str = "I.001",
    *,
    directory: Path = Path("/raw/s01"),
    timestamp: Optional[datetime] = datetime(2024, 1, 2, 10, 11, 12),
    rmr: Optional[str] = "RMR001",
    series: Optional[str] = "fMRI rest",
    source: Optional[str] = "MR750",
    file_type: str = DICOM,
) -> RawImageFile:
    return RawImageFile(
        path=directory / filename,
        filename=filename,
        file_type=file_type,
        source=source,
        series_description=series,
        rmr_number=rmr,
        timestamp=timestamp,
        rep_time=2.0,
        bold_reps=120,
        num_slices=30,
    )


@pytest.fixture
def dicom_series(tmp_path):
    """A directory with three DICOM slices (I.001..I.003) and a metadata yaml."""
    series_dir = tmp_path / "s03_bold"
    series_dir.mkdir()
    pixels = np.arange(64, dtype=np.uint16).reshape(8, 8)
    for idx in range(1, 4):
        write_dicom(series_dir / f"I.{idx:03d}", pixels=pixels)
    (series_dir / "s03_bold.yaml").write_text("series: fMRI rest\n")
    return series_dir
