"""Config management for rawscan.

Reads `config.ini` from the data directory (``RAWSCAN_DATA_DIR``, defaulting to
the project root).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .errors import ConfigurationError
from .logging_config import get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds all persistent state (config.ini, rawscan.db, thumbnails/).
DATA_DIR = pathlib.Path(os.environ.get("RAWSCAN_DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"

MIN_PFILE_SIZE = 10_000_000


@dataclasses.dataclass
class ScanConfig:
    root: pathlib.Path
    min_pfile_size: int = MIN_PFILE_SIZE
    ignore_patterns: tuple[str, ...] = ("*.yaml", "*.nii", "*.nii.gz")
    read_all_headers: bool = False


@dataclasses.dataclass
class StagingConfig:
    scratch_dir: Optional[pathlib.Path] = None
    decompressor: str = "bunzip2"
    timeout: Optional[float] = None


@dataclasses.dataclass
class ThumbnailConfig:
    width: int = 256
    height: int = 256


@dataclasses.dataclass
class ReconConfig:
    command: str = "to3d"
    output_dir: Optional[pathlib.Path] = None
    append_modality_directory: bool = False


@dataclasses.dataclass
class RawScanConfig:
    scan: ScanConfig
    staging: StagingConfig
    thumbnails: ThumbnailConfig
    recon: ReconConfig

    @property
    def scan_root(self) -> pathlib.Path:
        return self.scan.root

    @property
    def database_path(self) -> pathlib.Path:
        return DATA_DIR / "rawscan.db"

    @property
    def thumbnails_dir(self) -> pathlib.Path:
        return DATA_DIR / "thumbnails"


def _parse_bool(value: str, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _optional_path(value: str) -> Optional[pathlib.Path]:
    value = (value or "").strip()
    return pathlib.Path(value).expanduser() if value else None


def load_config(config_path: Optional[pathlib.Path] = None) -> RawScanConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in the data directory.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    scan = ScanConfig(
        root=pathlib.Path(
            parser.get("scan", "root", fallback="/path/to/raw")
        ).expanduser(),
        min_pfile_size=parser.getint(
            "scan", "min_pfile_size", fallback=MIN_PFILE_SIZE
        ),
        ignore_patterns=tuple(
            p.strip()
            for p in parser.get(
                "scan", "ignore_patterns", fallback="*.yaml,*.nii,*.nii.gz"
            ).split(",")
            if p.strip()
        ),
        read_all_headers=_parse_bool(
            parser.get("scan", "read_all_headers", fallback="false"), False
        ),
    )

    timeout = parser.get("staging", "timeout", fallback="").strip()
    staging = StagingConfig(
        scratch_dir=_optional_path(parser.get("staging", "scratch_dir", fallback="")),
        decompressor=parser.get("staging", "decompressor", fallback="bunzip2"),
        timeout=float(timeout) if timeout else None,
    )

    thumbs = ThumbnailConfig(
        width=parser.getint("thumbnails", "width", fallback=256),
        height=parser.getint("thumbnails", "height", fallback=256),
    )

    recon = ReconConfig(
        command=parser.get("recon", "command", fallback="to3d"),
        output_dir=_optional_path(parser.get("recon", "output_dir", fallback="")),
        append_modality_directory=_parse_bool(
            parser.get("recon", "append_modality_directory", fallback="false"),
            False,
        ),
    )

    return RawScanConfig(scan=scan, staging=staging, thumbnails=thumbs, recon=recon)


_cached_config: Optional[RawScanConfig] = None


def get_config() -> RawScanConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None


def write_default_config(
    scan_root: pathlib.Path, config_path: Optional[pathlib.Path] = None
) -> pathlib.Path:
    """Write a config.ini with default settings for the given raw data root.

    Also ensures the `thumbnails/` directory exists.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    parser = configparser.ConfigParser()
    parser["scan"] = {
        "root": str(scan_root.expanduser()),
        "min_pfile_size": str(MIN_PFILE_SIZE),
        "ignore_patterns": "*.yaml,*.nii,*.nii.gz",
        "read_all_headers": "false",
    }
    parser["staging"] = {
        "scratch_dir": "",
        "decompressor": "bunzip2",
        "timeout": "",
    }
    parser["thumbnails"] = {
        "width": "256",
        "height": "256",
    }
    parser["recon"] = {
        "command": "to3d",
        "output_dir": "",
        "append_modality_directory": "false",
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as handle:
        parser.write(handle)

    thumbnails_dir = path.parent / "thumbnails"
    thumbnails_dir.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Wrote default config to {path}")

    return path
