"""Logging setup for the rawscan CLI.

Library modules only ask for loggers with :func:`get_logger` and accept an
optional ``log`` argument. Handlers are installed once, by the CLI, through
:func:`setup_logging`: a rich console on stderr and a rotating ``rawscan.log``
in the data directory.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_FILENAME = "rawscan.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# third-party loggers that are noisy at DEBUG/INFO
QUIET_LOGGERS = {
    "pydicom": logging.ERROR,  # warns on every non-conformant vendor header
    "PIL": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}

_configured = False


def _default_log_file() -> Path:
    # config.DATA_DIR, resolved here because config imports this module
    data_dir = os.environ.get("RAWSCAN_DATA_DIR")
    return Path(data_dir or Path(__file__).resolve().parents[1]) / LOG_FILENAME


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Attach the console and file handlers to the root logger.

    The console shows ``log_level`` and above; the file always gets DEBUG.
    Repeated calls are no-ops.
    """
    global _configured
    if _configured:
        return

    log_file = log_file or _default_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S")
    )

    console_handler = RichHandler(
        console=Console(stderr=True), show_time=False, show_path=False, rich_tracebacks=True
    )
    console_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
