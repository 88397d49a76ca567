"""Tests for local staging and scoped cleanup."""

import bz2
import logging
import os
import shutil
import stat

import pytest

from rawscan.config import StagingConfig
from rawscan.errors import StagingError
from rawscan.staging import (
    each_pfile,
    first_dicom,
    local_name,
    PROVISIONED_MODE,
    provision_directory,
    remove_scratch,
    stage,
    stage_all,
    staged,
    with_staged,
)

needs_bunzip2 = pytest.mark.skipif(shutil.which("bunzip2") is None, reason="bunzip2 not installed")

MISSING_DECOMPRESSOR = StagingConfig(decompressor="/nonexistent/bunzip2")


def _write(path, data: bytes):
    path.write_bytes(data)
    return path


@pytest.fixture
def scratch(tmp_path):
    directory = tmp_path / "scratch"
    directory.mkdir()
    return directory


def test_local_name():
    assert local_name("/raw/s01/I.001.bz2") == "I.001"
    assert local_name("/raw/s01/T1 (ax).dcm") == "T1-ax-.dcm"
    assert local_name("/raw/P12345.7") == "P12345.7"


def test_stage_copies_bytes_verbatim(tmp_path, scratch):
    data = os.urandom(4096)
    src = _write(tmp_path / "I.001", data)

    copy = stage(src, scratch)

    assert copy.path == scratch / "I.001"
    assert copy.source == src
    assert copy.path.read_bytes() == data
    copy.delete()
    assert not copy.exists()
    assert src.read_bytes() == data


def test_stage_replaces_existing_destination(tmp_path, scratch):
    src = _write(tmp_path / "I.001", b"fresh")
    (scratch / "I.001").write_bytes(b"stale leftover from an earlier run")

    copy = stage(src, scratch)

    assert copy.path.read_bytes() == b"fresh"


def test_staged_deletes_copy_when_consumer_raises(tmp_path, scratch):
    src = _write(tmp_path / "I.001", b"slice")
    seen = []

    with pytest.raises(RuntimeError):
        with staged(src, scratch) as copy:
            seen.append(copy.path)
            assert copy.path.read_bytes() == b"slice"
            raise RuntimeError("consumer failed")

    assert not seen[0].exists()
    assert src.exists()
    assert list(scratch.iterdir()) == []


def test_staged_owns_and_removes_its_scratch_dir(tmp_path):
    parent = tmp_path / "scratch_parent"
    src = _write(tmp_path / "E001.dcm", b"slice")

    with staged(src, config=StagingConfig(scratch_dir=parent)) as copy:
        tempdir = copy.path.parent
        assert tempdir.parent == parent
        assert copy.exists()

    assert not tempdir.exists()
    assert list(parent.iterdir()) == []


def test_nested_scopes_clean_up_independently(tmp_path, scratch):
    outer_src = _write(tmp_path / "I.001", b"outer")
    inner_src = _write(tmp_path / "I.002", b"inner")

    with staged(outer_src, scratch) as outer:
        with staged(inner_src, scratch) as inner:
            assert inner.exists() and outer.exists()
        assert not inner.exists()
        assert outer.exists()
    assert not outer.exists()


def test_with_staged_runs_once_and_returns_result(tmp_path, scratch):
    src = _write(tmp_path / "I.001", b"abc")
    calls = []

    def consume(copy):
        calls.append(copy)
        return copy.path.read_bytes()

    assert with_staged(src, scratch, consume) == b"abc"
    assert len(calls) == 1
    assert not calls[0].exists()


@needs_bunzip2
def test_stage_decompresses_bz2_round_trip(tmp_path, scratch):
    original = os.urandom(20_000) + b"\x00" * 5000
    src = _write(tmp_path / "P12345.7.bz2", bz2.compress(original))

    with staged(src, scratch) as copy:
        assert copy.name == "P12345.7"
        assert copy.path.read_bytes() == original

    assert src.exists()
    assert not (scratch / "P12345.7").exists()


@needs_bunzip2
def test_stage_corrupt_bz2_raises_and_leaves_nothing(tmp_path, scratch):
    src = _write(tmp_path / "I.001.bz2", b"definitely not bzip2")

    with pytest.raises(StagingError) as excinfo:
        stage(src, scratch)

    assert excinfo.value.path == src
    assert list(scratch.iterdir()) == []


def test_stage_missing_decompressor_raises(tmp_path, scratch):
    src = _write(tmp_path / "I.001.bz2", bz2.compress(b"slice"))

    with pytest.raises(StagingError):
        stage(src, scratch, MISSING_DECOMPRESSOR)

    assert list(scratch.iterdir()) == []


def test_staged_propagates_staging_error_and_removes_owned_dir(tmp_path):
    parent = tmp_path / "scratch_parent"
    src = _write(tmp_path / "I.001.bz2", bz2.compress(b"slice"))
    config = StagingConfig(scratch_dir=parent, decompressor="/nonexistent/bunzip2")

    with pytest.raises(StagingError):
        with staged(src, config=config):
            pytest.fail("consumer must not run")

    assert list(parent.iterdir()) == []


def test_stage_all_stages_dicoms_and_cleans_up(tmp_path, scratch):
    series = tmp_path / "s01"
    series.mkdir()
    for name in ("I.001", "I.002", "I.003"):
        _write(series / name, name.encode())
    _write(series / "s01.yaml", b"meta")

    with pytest.raises(ValueError):
        with stage_all(series, scratch) as copies:
            staged_paths = [c.path for c in copies]
            assert [c.name for c in copies] == ["I.001", "I.002", "I.003"]
            assert all(p.parent == scratch for p in staged_paths)
            raise ValueError("consumer failed")

    assert not any(p.exists() for p in staged_paths)


def test_stage_all_skips_failures_and_logs(tmp_path, caplog):
    series = tmp_path / "s01"
    series.mkdir()
    _write(series / "I.001", b"one")
    _write(series / "I.002.bz2", bz2.compress(b"two"))
    _write(series / "I.003", b"three")

    with caplog.at_level(logging.ERROR, logger="rawscan.staging"):
        with stage_all(series, config=MISSING_DECOMPRESSOR) as copies:
            names = [c.name for c in copies]
            shared = copies[0].path.parent

    assert names == ["I.001", "I.003"]
    assert "I.002.bz2" in caplog.text
    assert not shared.exists()


def test_each_pfile_continues_after_consumer_error(tmp_path, caplog):
    visit = tmp_path / "raw"
    visit.mkdir()
    _write(visit / "P00001.7", b"a" * 50)
    _write(visit / "P00002.7", b"b" * 50)
    _write(visit / "P00003.7", b"c" * 10)

    def consume(copy):
        if copy.name == "P00001.7":
            raise RuntimeError("bad header")
        return copy.path.read_bytes()[:1]

    with caplog.at_level(logging.ERROR, logger="rawscan.staging"):
        results = each_pfile(visit, consume, min_size=50)

    assert results == [b"b"]
    assert "bad header" in caplog.text


def test_first_dicom(tmp_path):
    series = tmp_path / "s01"
    series.mkdir()
    assert first_dicom(series, lambda copy: copy.name) is None

    _write(series / "I.002", b"2")
    _write(series / "I.001", b"1")
    assert first_dicom(series, lambda copy: copy.path.read_bytes()) == b"1"


def test_first_dicom_logs_consumer_error(tmp_path, caplog):
    series = tmp_path / "s01"
    series.mkdir()
    _write(series / "I.001", b"1")

    def explode(copy):
        raise RuntimeError("unreadable")

    with caplog.at_level(logging.ERROR, logger="rawscan.staging"):
        assert first_dicom(series, explode) is None
    assert "unreadable" in caplog.text


def test_provision_directory(tmp_path):
    visit = tmp_path / "visit"
    visit.mkdir()
    (visit / "sub").mkdir()
    _write(visit / "I.001", b"slice")
    _write(visit / "P12345.7", b"pfile")
    _write(visit / "notes.yaml", b"skip me")
    _write(visit / ".DS_Store", b"hidden")

    tempdir = provision_directory(
        visit, ignore_patterns=("*.yaml",), config=StagingConfig(scratch_dir=tmp_path / "scratch")
    )
    try:
        assert tempdir.name.startswith("local_orig")
        assert sorted(p.name for p in tempdir.iterdir()) == ["I.001", "P12345.7"]
        mode = stat.S_IMODE((tempdir / "I.001").stat().st_mode)
        assert mode == PROVISIONED_MODE
        assert (tempdir / "P12345.7").read_bytes() == b"pfile"
    finally:
        remove_scratch(tempdir)

    assert not tempdir.exists()


def test_stage_all_skips_local_name_collisions(tmp_path, scratch, caplog):
    series = tmp_path / "s01"
    series.mkdir()
    _write(series / "I.001", b"plain")
    _write(series / "I.001.bz2", bz2.compress(b"compressed"))
    _write(series / "I.002", b"two")

    with caplog.at_level(logging.WARNING, logger="rawscan.staging"):
        with stage_all(series, scratch) as copies:
            assert [c.source.name for c in copies] == ["I.001", "I.002"]
            assert (scratch / "I.001").read_bytes() == b"plain"

    assert "I.001.bz2" in caplog.text
    assert list(scratch.iterdir()) == []
