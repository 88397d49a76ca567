"""Visit directory scanner for rawscan.

Walks a raw data tree, builds a :class:`RawImageDataset` for every directory
holding DICOM slices or large pfiles, and optionally syncs them into the
database. One bad directory is logged and recorded; the scan goes on.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
from pathlib import Path
from typing import Dict, List, Optional

from sqlmodel import Session

from .config import RawScanConfig
from .database import get_engine, init_db
from .dataset import RawImageDataset, build
from .errors import HeaderError, RawScanError, TraversalError
from .logging_config import get_logger
from .raw_image import HeaderReader, RawImageFile, read_dicom_header
from .repository import Repository
from .staging import each_pfile, first_dicom, stage_all
from .thumbnails import ThumbnailRenderer
from .traversal import find_large_pfile_candidates, walk_subdirectories
from .utils import short_path

logger = get_logger(__name__)


@dataclasses.dataclass
class ScanResult:
    datasets: List[RawImageDataset] = dataclasses.field(default_factory=list)
    errors: Dict[Path, str] = dataclasses.field(default_factory=dict)


def _all_dicom_headers(
    directory: Path, config: RawScanConfig, log: logging.Logger
) -> List[RawImageFile]:
    headers = []
    with stage_all(directory, config=config.staging, log=log) as copies:
        for copy in copies:
            try:
                headers.append(read_dicom_header(copy))
            except HeaderError as exc:
                log.warning(f"✗ {copy.source.name} - {exc}")
    return headers


def datasets_in_directory(
    directory: Path,
    config: RawScanConfig,
    pfile_reader: Optional[HeaderReader] = None,
    log: Optional[logging.Logger] = None,
) -> List[RawImageDataset]:
    """Build the datasets found directly in ``directory`` (not recursive).

    A directory of DICOM slices is one dataset, built from its first slice's
    header (or every slice's with ``scan.read_all_headers``). Each large pfile
    is a dataset of its own, and only read when ``pfile_reader`` is given.
    """
    log = log or logger
    datasets: List[RawImageDataset] = []

    if config.scan.read_all_headers:
        headers = _all_dicom_headers(directory, config, log)
    else:
        header = first_dicom(directory, read_dicom_header, config=config.staging, log=log)
        headers = [header] if header is not None else []
    if headers:
        datasets.append(build(directory, headers, log=log))

    if pfile_reader is not None:
        pfile_headers = each_pfile(
            directory,
            pfile_reader,
            min_size=config.scan.min_pfile_size,
            config=config.staging,
            log=log,
        )
        datasets.extend(build(directory, header, log=log) for header in pfile_headers)
    else:
        pfiles = find_large_pfile_candidates(directory, config.scan.min_pfile_size, log=log)
        if pfiles:
            log.info(f"Skipping {len(pfiles)} pfile(s) in {short_path(directory)}: no pfile reader")

    return datasets


def scan_tree(
    root: Path,
    config: RawScanConfig,
    pfile_reader: Optional[HeaderReader] = None,
    log: Optional[logging.Logger] = None,
) -> ScanResult:
    """Collect datasets from ``root`` and every visible subdirectory below it."""
    log = log or logger
    root = Path(root)
    if not root.is_dir():
        raise TraversalError(f"Scan root does not exist: {root}", root)

    result = ScanResult()

    def _on_unreadable(exc: TraversalError) -> None:
        log.error(f"✗ {exc}")
        result.errors[exc.path] = str(exc)

    for directory in itertools.chain(walk_subdirectories(root, onerror=_on_unreadable), [root]):
        if directory in result.errors:
            continue
        try:
            datasets = datasets_in_directory(directory, config, pfile_reader, log=log)
        except (RawScanError, OSError) as exc:
            log.error(f"✗ {short_path(directory)} - {exc}")
            result.errors[directory] = str(exc)
            continue

        if datasets:
            log.info(f"[SCAN] {short_path(directory)} ({len(datasets)} datasets)")
        result.datasets.extend(datasets)

    return result


def persist_datasets(
    datasets: List[RawImageDataset],
    repo: Repository,
    visit_id: Optional[int] = None,
    renderer: Optional[ThumbnailRenderer] = None,
    log: Optional[logging.Logger] = None,
) -> dict:
    """Insert or update each dataset. Returns counts of added/updated/thumbnails."""
    log = log or logger
    stats = {"added": 0, "updated": 0, "thumbnails": 0}

    for dataset in datasets:
        if renderer is not None and dataset.first_file.dicom:
            try:
                dataset.thumbnail_path(renderer)
                stats["thumbnails"] += 1
            except (RawScanError, OSError) as exc:
                log.warning(f"✗ thumbnail for {dataset.directory.name} - {exc}")

        _, created = repo.save_dataset(dataset.to_record(visit_id=visit_id))
        stats["added" if created else "updated"] += 1
        log.debug(f"{'+' if created else '~'} {dataset.dataset_key} {dataset.series_description}")

    repo.commit()
    return stats


def scan_and_store(
    config: RawScanConfig,
    root: Optional[Path] = None,
    visit_id: Optional[int] = None,
    renderer: Optional[ThumbnailRenderer] = None,
    pfile_reader: Optional[HeaderReader] = None,
) -> dict:
    """Scan ``root`` (default: the configured scan root) and sync to the database.

    :return: Dictionary with scan statistics (added, updated, thumbnails, errors).
    """
    base = (root or config.scan_root).resolve()
    result = scan_tree(base, config, pfile_reader=pfile_reader)

    init_db()
    with Session(get_engine()) as session:
        repo = Repository(session)
        stats = persist_datasets(result.datasets, repo, visit_id=visit_id, renderer=renderer)

    stats["errors"] = len(result.errors)
    return stats
