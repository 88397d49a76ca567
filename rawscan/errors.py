"""Exceptions raised across rawscan."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class RawScanError(Exception):
    """Base class for every error raised by rawscan."""


class ConfigurationError(RawScanError):
    """Raised for missing directories, config files or inputs. Not retried."""


class StructuralError(RawScanError):
    """Raised when dataset construction finds missing or mistyped metadata."""


class EmptyDatasetError(ConfigurationError, StructuralError):
    """Raised when a dataset is built from an empty file list."""


class StagingError(RawScanError, OSError):
    """Raised when a local copy cannot be produced (copy or decompression)."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class TraversalError(RawScanError, OSError):
    """Raised when a directory cannot be listed during traversal."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class HeaderError(RawScanError):
    """Raised when a staged file cannot be read as a raw image header."""


class ReconstructionError(RawScanError):
    """Raised when no reconstruction command can be built for a dataset."""
