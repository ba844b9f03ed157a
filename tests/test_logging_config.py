import logging
from logging.handlers import RotatingFileHandler

import pytest

from app.classroll.logging.logging_config import setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_installs_console_and_rotating_file(tmp_path, restore_root_logger):
    log_dir = tmp_path / "logs"

    setup_logging(level="debug", log_dir=str(log_dir))

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 2
    file_handler = next(h for h in root.handlers if isinstance(h, RotatingFileHandler))
    assert file_handler.maxBytes == 5 * 1024 * 1024
    assert (log_dir / "app.log").exists()
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_replaces_existing_handlers(tmp_path, restore_root_logger):
    setup_logging(log_dir=str(tmp_path))
    setup_logging(log_dir=str(tmp_path))

    assert len(restore_root_logger.handlers) == 2
