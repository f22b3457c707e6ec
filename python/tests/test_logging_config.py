"""
Tests for treewatch logging setup.
"""

import logging
import sys

import pytest

from treewatch.logging_config import LOGGER_NAME, FlushingHandler, get_logger, setup_logging


@pytest.fixture
def clean_logger():
    """Remove handlers installed by setup_logging() after each test."""
    logger = logging.getLogger(LOGGER_NAME)
    before = list(logger.handlers)
    level = logger.level
    yield logger
    for handler in list(logger.handlers):
        if handler not in before:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


def test_setup_logging_writes_daily_file(tmp_path, clean_logger):
    logger = setup_logging(log_dir=tmp_path / "logs")
    logger.info("watch started")

    log_files = list((tmp_path / "logs").glob("treewatch-*.log"))
    assert len(log_files) == 1
    assert "watch started" in log_files[0].read_text(encoding="utf-8")


def test_module_loggers_propagate_to_file(tmp_path, clean_logger):
    setup_logging(log_dir=tmp_path)
    logging.getLogger("treewatch.tree").warning("Could not watch /x")

    (log_file,) = tmp_path.glob("treewatch-*.log")
    assert "treewatch.tree" in log_file.read_text(encoding="utf-8")


def test_setup_logging_twice_adds_no_duplicate_handlers(tmp_path, clean_logger):
    setup_logging(log_dir=tmp_path, console=True)
    setup_logging(log_dir=tmp_path, console=True)

    file_handlers = [h for h in clean_logger.handlers if isinstance(h, FlushingHandler)]
    console_handlers = [
        h
        for h in clean_logger.handlers
        if type(h) is logging.StreamHandler and h.stream is sys.stderr
    ]
    assert len(file_handlers) == 1
    assert len(console_handlers) == 1


def test_setup_logging_sets_level(tmp_path, clean_logger):
    logger = setup_logging(log_dir=tmp_path, level=logging.DEBUG)
    assert logger.level == logging.DEBUG


def test_get_logger():
    assert get_logger() is logging.getLogger("treewatch")
    assert get_logger("treewatch.channel").name == "treewatch.channel"
