"""Tests for the raw data tree scanner."""

import logging
from pathlib import Path

import pytest
from sqlmodel import Session, create_engine

import rawscan.database as database
from conftest import make_raw_file, write_dicom
from rawscan import traversal
from rawscan.config import RawScanConfig, ReconConfig, ScanConfig, StagingConfig, ThumbnailConfig
from rawscan.errors import TraversalError
from rawscan.raw_image import PFILE
from rawscan.repository import Repository
from rawscan.scanner import datasets_in_directory, persist_datasets, scan_and_store, scan_tree


def _config(root, **scan_options) -> RawScanConfig:
    return RawScanConfig(
        scan=ScanConfig(root=root, **scan_options),
        staging=StagingConfig(),
        thumbnails=ThumbnailConfig(),
        recon=ReconConfig(),
    )


def _read_pfile(copy):
    return make_raw_file(copy.source.name, directory=copy.source.parent, file_type=PFILE)


@pytest.fixture
def temp_engine(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'rawscan.db'}")
    monkeypatch.setattr(database, "engine", engine)
    return engine


def test_scan_tree_finds_dicom_series(tmp_path, dicom_series):
    result = scan_tree(tmp_path, _config(tmp_path))

    assert result.errors == {}
    assert len(result.datasets) == 1
    dataset = result.datasets[0]
    assert dataset.directory == dicom_series
    assert dataset.rmr_number == "RMR001"
    assert dataset.glob == "I.*"
    assert dataset.file_count == 3
    assert len(dataset.raw_image_files) == 1


def test_read_all_headers(tmp_path, dicom_series):
    (dataset,) = datasets_in_directory(dicom_series, _config(tmp_path, read_all_headers=True))

    assert [f.filename for f in dataset.raw_image_files] == ["I.001", "I.002", "I.003"]


def test_bad_directory_is_recorded_and_scan_continues(tmp_path, dicom_series, caplog):
    broken = tmp_path / "s04_broken"
    broken.mkdir()
    write_dicom(broken / "I.001", station="")

    with caplog.at_level(logging.ERROR, logger="rawscan.scanner"):
        result = scan_tree(tmp_path, _config(tmp_path))

    assert [ds.directory for ds in result.datasets] == [dicom_series]
    assert list(result.errors) == [broken]
    assert "scanner source" in result.errors[broken]
    assert "s04_broken" in caplog.text


def test_pfiles_are_skipped_without_reader(tmp_path, caplog):
    raw = tmp_path / "raw"
    raw.mkdir()
    (raw / "P12345.7").write_bytes(b"p" * 64)

    with caplog.at_level(logging.INFO, logger="rawscan.scanner"):
        result = scan_tree(tmp_path, _config(tmp_path, min_pfile_size=32))

    assert result.datasets == []
    assert "no pfile reader" in caplog.text


def test_pfiles_with_reader(tmp_path):
    raw = tmp_path / "raw"
    raw.mkdir()
    (raw / "P12345.7").write_bytes(b"p" * 64)
    (raw / "P54321.7").write_bytes(b"p" * 64)
    (raw / "P00000.7").write_bytes(b"p" * 8)

    result = scan_tree(tmp_path, _config(tmp_path, min_pfile_size=32), pfile_reader=_read_pfile)

    assert sorted(ds.scanned_file for ds in result.datasets) == ["P12345.7", "P54321.7"]
    assert all(ds.file_count == 1 and ds.glob is None for ds in result.datasets)
    assert sorted(ds.relative_dataset_path(tmp_path) for ds in result.datasets) == [
        "raw/P12345.7",
        "raw/P54321.7",
    ]


def test_missing_root(tmp_path):
    with pytest.raises(TraversalError):
        scan_tree(tmp_path / "missing", _config(tmp_path))


class StaticRenderer:
    def __init__(self, path):
        self.path = path
        self.calls = 0

    def render(self, dataset):
        self.calls += 1
        return self.path


def test_persist_datasets_renders_thumbnails(tmp_path, dicom_series, temp_engine):
    database.init_db()
    datasets = scan_tree(tmp_path, _config(tmp_path)).datasets
    renderer = StaticRenderer(tmp_path / "thumb.png")

    with Session(temp_engine) as session:
        stats = persist_datasets(datasets, Repository(session), visit_id=5, renderer=renderer)
        (row,) = Repository(session).get_all_datasets()

    assert stats == {"added": 1, "updated": 0, "thumbnails": 1}
    assert renderer.calls == 1
    assert row.thumbnail == str(tmp_path / "thumb.png")
    assert row.visit_id == 5


def test_scan_and_store_is_idempotent(tmp_path, dicom_series, temp_engine):
    config = _config(tmp_path)

    first = scan_and_store(config, visit_id=1)
    second = scan_and_store(config)

    assert first == {"added": 1, "updated": 0, "thumbnails": 0, "errors": 0}
    assert second == {"added": 0, "updated": 1, "thumbnails": 0, "errors": 0}
    with Session(temp_engine) as session:
        (row,) = Repository(session).get_all_datasets()
    assert row.path == str(dicom_series)
    assert row.visit_id == 1
    assert row.slices_per_volume == 30


def test_unreadable_directory_is_reported_once(tmp_path, dicom_series, monkeypatch, caplog):
    bad = tmp_path / "s04_locked"
    bad.mkdir()
    real = traversal._list_entries
    calls = []

    def fake_list_entries(directory):
        if Path(directory) == bad:
            calls.append(directory)
            raise TraversalError(f"Unable to read directory {directory}", Path(directory))
        return real(directory)

    monkeypatch.setattr(traversal, "_list_entries", fake_list_entries)

    with caplog.at_level(logging.ERROR, logger="rawscan.scanner"):
        result = scan_tree(tmp_path, _config(tmp_path))

    assert len(calls) == 1
    assert list(result.errors) == [bad]
    assert [ds.directory for ds in result.datasets] == [dicom_series]
    assert caplog.text.count("s04_locked") == 1


def test_appledouble_files_do_not_hide_a_series(tmp_path, dicom_series):
    (dicom_series / "._I.001").write_bytes(b"\x00\x05\x16\x07resource fork")

    (dataset,) = datasets_in_directory(dicom_series, _config(tmp_path))

    assert dataset.scanned_file == "I.001"


def test_multi_valued_header_does_not_abort_scan(tmp_path, dicom_series):
    odd = tmp_path / "s02_multi_tr"
    odd.mkdir()
    write_dicom(odd / "I.001", RepetitionTime=[2000, 3000])
    write_dicom(odd / "I.002", RepetitionTime=[2000, 3000])

    result = scan_tree(tmp_path, _config(tmp_path, read_all_headers=True))

    assert result.errors == {}
    assert sorted(ds.directory.name for ds in result.datasets) == ["s02_multi_tr", "s03_bold"]
    multi = next(ds for ds in result.datasets if ds.directory == odd)
    assert multi.first_file.rep_time == pytest.approx(2.0)
