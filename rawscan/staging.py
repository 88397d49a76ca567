"""Local staging of raw scanner files.

Scanner output often sits on slow network mounts and is frequently bzipped.
Header readers work on a local, decompressed copy instead. Every copy made
through :func:`staged`, :func:`with_staged` or :func:`stage_all` is deleted when
its scope ends, whether the consumer returned normally or raised, and before
any scratch directory created for it is removed.
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, TypeVar

from .classifier import is_compressed
from .config import MIN_PFILE_SIZE, StagingConfig
from .errors import StagingError
from .logging_config import get_logger
from .path_utils import escape_filename, matches_any, strip_compression_suffix
from .traversal import (
    find_all_dicom_candidates,
    find_first_dicom_candidate,
    find_large_pfile_candidates,
    iter_visible_entries,
)

logger = get_logger(__name__)

T = TypeVar("T")

# r--r--r-- plus owner and group write, so provisioned copies can be cleaned up
PROVISIONED_MODE = 0o444 | 0o200 | 0o020


@dataclasses.dataclass(frozen=True)
class LocalCopy:
    """A staged file owned by whoever asked for it."""

    path: Path
    source: Path

    @property
    def name(self) -> str:
        return self.path.name

    def exists(self) -> bool:
        return self.path.exists()

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)


def local_name(source: Path) -> str:
    """Filename used for the local copy of ``source`` (``.bz2`` stripped, sanitised)."""
    return escape_filename(strip_compression_suffix(Path(source).name))


def _decompress(source: Path, dest: Path, config: StagingConfig) -> None:
    with dest.open("wb") as handle:
        subprocess.run(
            [config.decompressor, "-k", "-c", str(source)],
            stdout=handle,
            stderr=subprocess.PIPE,
            check=True,
            timeout=config.timeout,
        )


def stage(
    source: Path,
    scratch_dir: Path,
    config: Optional[StagingConfig] = None,
) -> LocalCopy:
    """Copy ``source`` into ``scratch_dir``, decompressing ``.bz2`` files.

    An existing file at the destination is replaced. On failure any partial
    destination is removed and :class:`StagingError` is raised.

    Returns:
        The :class:`LocalCopy`. The caller owns it and must delete it.
    """
    config = config or StagingConfig()
    source = Path(source)
    dest = Path(scratch_dir) / local_name(source)

    if dest.exists():
        dest.unlink()

    try:
        if is_compressed(source.name):
            _decompress(source, dest, config)
        else:
            shutil.copyfile(source, dest)
    except subprocess.CalledProcessError as exc:
        dest.unlink(missing_ok=True)
        stderr = (exc.stderr or b"").decode(errors="replace").strip()
        raise StagingError(f"Unable to decompress {source}: {stderr or exc}", source) from exc
    except (OSError, subprocess.SubprocessError) as exc:
        dest.unlink(missing_ok=True)
        raise StagingError(f"Unable to stage {source}: {exc}", source) from exc

    return LocalCopy(path=dest, source=source)


@contextlib.contextmanager
def _scratch(scratch_dir: Optional[Path], config: StagingConfig, prefix: str = "rawscan_") -> Iterator[Path]:
    """Yield ``scratch_dir`` or, when None, a temporary directory removed on exit."""
    if scratch_dir is not None:
        yield Path(scratch_dir)
        return
    parent = config.scratch_dir
    if parent is not None:
        parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix=prefix, dir=parent) as tempdir:
        yield Path(tempdir)


@contextlib.contextmanager
def staged(
    source: Path,
    scratch_dir: Optional[Path] = None,
    config: Optional[StagingConfig] = None,
) -> Iterator[LocalCopy]:
    """Stage ``source`` for the duration of a ``with`` block.

    Example:
        >>> with staged(Path("/raw/s3/I.001.bz2")) as copy:
        ...     header = read_header(copy.path)
    """
    config = config or StagingConfig()
    with _scratch(scratch_dir, config) as directory:
        copy = stage(source, directory, config)
        try:
            yield copy
        finally:
            copy.delete()


def with_staged(
    source: Path,
    scratch_dir: Optional[Path],
    fn: Callable[[LocalCopy], T],
    config: Optional[StagingConfig] = None,
) -> T:
    """Run ``fn`` once with a staged copy of ``source`` and return its result."""
    with staged(source, scratch_dir, config) as copy:
        return fn(copy)


@contextlib.contextmanager
def stage_all(
    directory: Path,
    scratch_dir: Optional[Path] = None,
    config: Optional[StagingConfig] = None,
    log: Optional[logging.Logger] = None,
) -> Iterator[List[LocalCopy]]:
    """Stage every DICOM candidate of ``directory`` into one shared scratch dir.

    Files that fail to stage are logged and left out of the list, as are files
    whose local name is already taken (``I.001`` next to ``I.001.bz2``).
    """
    config = config or StagingConfig()
    log = log or logger
    copies: List[LocalCopy] = []
    with _scratch(scratch_dir, config) as shared:
        try:
            for candidate in find_all_dicom_candidates(directory):
                name = local_name(candidate)
                if any(copy.name == name for copy in copies):
                    log.warning(f"✗ {candidate.name} - local name {name} already staged, skipping")
                    continue
                try:
                    copies.append(stage(candidate, shared, config))
                except StagingError as exc:
                    log.error(f"✗ {candidate.name} - {exc}")
            yield copies
        finally:
            for copy in copies:
                copy.delete()


def each_pfile(
    directory: Path,
    fn: Callable[[LocalCopy], T],
    min_size: int = MIN_PFILE_SIZE,
    scratch_dir: Optional[Path] = None,
    config: Optional[StagingConfig] = None,
    log: Optional[logging.Logger] = None,
) -> List[T]:
    """Call ``fn`` with a staged copy of each large pfile in ``directory``.

    A failure for one pfile (staging or inside ``fn``) is logged and the next
    pfile is processed. Returns the results of the successful calls.
    """
    log = log or logger
    results: List[T] = []
    for candidate in find_large_pfile_candidates(directory, min_size, log=log):
        try:
            results.append(with_staged(candidate, scratch_dir, fn, config))
        except Exception as exc:
            log.error(f"✗ {candidate.name} - {exc}")
    return results


def first_dicom(
    directory: Path,
    fn: Callable[[LocalCopy], T],
    scratch_dir: Optional[Path] = None,
    config: Optional[StagingConfig] = None,
    log: Optional[logging.Logger] = None,
) -> Optional[T]:
    """Call ``fn`` with a staged copy of the first DICOM slice in ``directory``.

    Returns None when the directory has no DICOM candidate or when staging or
    ``fn`` failed (the failure is logged).
    """
    log = log or logger
    candidate = find_first_dicom_candidate(directory)
    if candidate is None:
        return None
    try:
        return with_staged(candidate, scratch_dir, fn, config)
    except Exception as exc:
        log.error(f"✗ {candidate.name} - {exc}")
        return None


def provision_directory(
    directory: Path,
    ignore_patterns: Sequence[str] = (),
    config: Optional[StagingConfig] = None,
    log: Optional[logging.Logger] = None,
) -> Path:
    """Stage every visible file of ``directory`` into a new ``local_orig*`` dir.

    Subdirectories, hidden files, symlinks and names matching
    ``ignore_patterns`` are skipped. Copies are made read-only for others.
    The returned directory belongs to the caller, who must remove it.
    """
    config = config or StagingConfig()
    log = log or logger
    parent = config.scratch_dir
    if parent is not None:
        parent.mkdir(parents=True, exist_ok=True)
    tempdir = Path(tempfile.mkdtemp(prefix="local_orig", dir=parent))

    try:
        for branch in iter_visible_entries(directory):
            if branch.is_dir() or matches_any(branch.name, ignore_patterns):
                continue
            log.info(f"Locally provisioning {branch.name}")
            try:
                copy = stage(branch, tempdir, config)
            except StagingError as exc:
                log.error(f"✗ {branch.name} - {exc}")
                continue
            os.chmod(copy.path, PROVISIONED_MODE)
    except BaseException:
        shutil.rmtree(tempdir, ignore_errors=True)
        raise

    return tempdir


def remove_scratch(directory: Path) -> None:
    """Remove a directory returned by :func:`provision_directory`."""
    shutil.rmtree(directory, ignore_errors=True)
