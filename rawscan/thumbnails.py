"""Thumbnail generation for raw image datasets.

Renders a PNG from the first slice of a DICOM dataset, storing it under
`thumbnails/{dataset_key}.png`. Datasets call the renderer lazily, at most
once per instance.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol

import numpy as np
import pydicom
from PIL import Image

from .config import StagingConfig, ThumbnailConfig
from .errors import HeaderError, StructuralError
from .logging_config import get_logger
from .path_utils import escape_filename
from .staging import staged

if TYPE_CHECKING:
    from .dataset import RawImageDataset

logger = get_logger(__name__)


class ThumbnailRenderer(Protocol):
    def render(self, dataset: "RawImageDataset") -> Path:
        ...


def _to_uint8(pixels: np.ndarray) -> np.ndarray:
    """Window the full pixel range onto 0-255."""
    pixels = pixels.astype(np.float64)
    if pixels.ndim == 3 and pixels.shape[-1] not in (3, 4):
        pixels = pixels[pixels.shape[0] // 2]
    lo, hi = float(pixels.min()), float(pixels.max())
    if hi <= lo:
        return np.zeros(pixels.shape, dtype=np.uint8)
    return ((pixels - lo) / (hi - lo) * 255.0).astype(np.uint8)


def _save_thumbnail(pixels: np.ndarray, thumb_path: Path, width: int, height: int) -> None:
    thumb_path.parent.mkdir(parents=True, exist_ok=True)
    with Image.fromarray(_to_uint8(pixels)) as im:
        im = im.convert("L") if im.mode not in ("RGB", "RGBA") else im.convert("RGB")
        im.thumbnail((width, height))
        im.save(thumb_path, format="PNG", optimize=True)


class DicomThumbnailRenderer:
    """Render a dataset's first DICOM slice (staged locally) into a PNG."""

    def __init__(
        self,
        output_dir: Path,
        config: Optional[ThumbnailConfig] = None,
        staging: Optional[StagingConfig] = None,
    ):
        self.output_dir = Path(output_dir)
        self.config = config or ThumbnailConfig()
        self.staging = staging or StagingConfig()

    def thumbnail_path_for(self, dataset: "RawImageDataset") -> Path:
        return self.output_dir / f"{escape_filename(dataset.dataset_key)}.png"

    def render(self, dataset: "RawImageDataset") -> Path:
        first = dataset.first_file
        if not first.dicom:
            raise StructuralError(f"Cannot render a thumbnail for {first.filename}: not a DICOM dataset")

        thumb_path = self.thumbnail_path_for(dataset)
        with staged(first.path, config=self.staging) as copy:
            try:
                ds = pydicom.dcmread(copy.path, force=True)
                pixels = ds.pixel_array
            except Exception as exc:
                raise HeaderError(f"No pixel data in {first.filename}: {exc}") from exc
            _save_thumbnail(pixels, thumb_path, self.config.width, self.config.height)

        logger.debug(f"✓ thumbnail {thumb_path.name} for {dataset.directory.name}")
        return thumb_path
