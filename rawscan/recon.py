"""NIfTI reconstruction commands for raw image datasets.

A dataset's reconstruction behaviour is picked once, from its
:class:`DatasetType`, out of :data:`STRATEGIES`. Each strategy turns a dataset
into an AFNI ``to3d`` command line plus the path of the file it will write.
Building the command never runs it; :func:`run_reconstruction` does.
"""

from __future__ import annotations

import enum
import logging
import shlex
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Optional, Protocol, Tuple

from .errors import ReconstructionError
from .logging_config import get_logger

if TYPE_CHECKING:
    from .dataset import RawImageDataset

logger = get_logger(__name__)

NIFTI_SUFFIXES = (".nii", ".nii.gz")


class DatasetType(str, enum.Enum):
    UNKNOWN = "unknown"


class ReconstructionStrategy(Protocol):
    modality_directory: str

    def dataset_to_nifti(
        self,
        dataset: "RawImageDataset",
        output_dir: Path,
        filename: str,
        command: str = "to3d",
    ) -> Tuple[str, Path]:
        ...


def _nifti_filename(filename: str) -> str:
    if filename.endswith(NIFTI_SUFFIXES):
        return filename
    return f"{filename}.nii"


class UnknownImageDataset:
    """Generic to3d reconstruction driven by the dataset glob."""

    modality_directory = "unknown"

    def dataset_to_nifti(
        self,
        dataset: "RawImageDataset",
        output_dir: Path,
        filename: str,
        command: str = "to3d",
    ) -> Tuple[str, Path]:
        glob = dataset.glob
        if glob is None:
            raise ReconstructionError(
                f"No glob for {dataset.scanned_file} in {dataset.directory}; "
                "pfile datasets cannot be reconstructed with to3d"
            )

        output_file = Path(output_dir) / _nifti_filename(filename)
        # to3d expands the quoted glob itself; functional series have more
        # slices than a shell command line can hold.
        args = [
            command,
            "-session",
            str(output_dir),
            "-prefix",
            output_file.name,
            f"{dataset.directory}/{glob}",
        ]
        return shlex.join(args), output_file


STRATEGIES: Dict[DatasetType, Callable[[], ReconstructionStrategy]] = {
    DatasetType.UNKNOWN: UnknownImageDataset,
}


def strategy_for(dataset_type: DatasetType) -> ReconstructionStrategy:
    try:
        return STRATEGIES[dataset_type]()
    except KeyError:
        raise ReconstructionError(f"No reconstruction strategy for {dataset_type}") from None


def run_reconstruction(
    dataset: "RawImageDataset",
    output_dir: Path,
    filename: str,
    append_modality_directory: bool = False,
    command: str = "to3d",
    log: Optional[logging.Logger] = None,
) -> Tuple[str, Path]:
    """Build and execute the reconstruction command for ``dataset``.

    A failing command is logged as a warning; the command and the expected
    output file are returned either way.
    """
    log = log or logger
    recon_command, output_file = dataset.to_nifti(
        output_dir,
        filename,
        append_modality_directory=append_modality_directory,
        command=command,
    )
    output_file.parent.mkdir(parents=True, exist_ok=True)
    log.info(recon_command)

    try:
        result = subprocess.run(shlex.split(recon_command), capture_output=True, text=True)
    except OSError as exc:
        log.warning(f"Could not convert image dataset {dataset.directory} to {output_file}: {exc}")
        return recon_command, output_file

    if result.returncode != 0:
        log.warning(
            f"Could not convert image dataset {dataset.directory} to {output_file}: "
            f"{result.stderr.strip()}"
        )
    return recon_command, output_file
