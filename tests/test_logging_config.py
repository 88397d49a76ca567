"""Tests for CLI logging setup."""

import logging

import pytest
from rich.logging import RichHandler

from rawscan import logging_config


@pytest.fixture
def root_logger(monkeypatch):
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    monkeypatch.setattr(logging_config, "_configured", False)
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)


def test_setup_logging_installs_handlers_once(tmp_path, root_logger):
    log_file = tmp_path / "logs" / "rawscan.log"
    before = list(root_logger.handlers)

    logging_config.setup_logging("warning", log_file)
    logging_config.setup_logging("debug", log_file)

    added = [h for h in root_logger.handlers if h not in before]
    assert len(added) == 2
    console = next(h for h in added if isinstance(h, RichHandler))
    assert console.level == logging.WARNING
    assert logging.getLogger("pydicom").level == logging.ERROR

    logging_config.get_logger("rawscan.test").debug("written to file only")
    for handler in added:
        handler.flush()
    assert "written to file only" in log_file.read_text()
