"""
Logging configuration for treewatch.

The library itself only logs through module loggers under the ``treewatch``
namespace and installs no handlers. Applications that want treewatch's logs
on disk call ``setup_logging()`` once at startup.

Logs go to file: .treewatch/logs/treewatch-YYYY-MM-DD.log (rotated daily).
Console logging to stderr can be enabled with console=True.
"""

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "treewatch"


class FlushingHandler(logging.handlers.TimedRotatingFileHandler):
    """Handler that flushes after every emit for immediate visibility."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def setup_logging(
    log_dir: Optional[Path] = None,
    level: int = logging.INFO,
    backup_count: int = 7,  # Keep a week of logs
    console: bool = False,
) -> logging.Logger:
    """
    Set up file-based logging for treewatch with daily rotation.

    Calling it again never adds duplicate handlers.

    Args:
        log_dir: Directory for log files (default: .treewatch/logs)
        level: Logging level (default: INFO)
        backup_count: Number of daily backup files to keep
        console: If True, also log to stderr

    Returns:
        Configured ``treewatch`` logger
    """
    if log_dir is None:
        log_dir = Path.cwd() / ".treewatch" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    has_file_handler = any(isinstance(h, FlushingHandler) for h in logger.handlers)
    has_console_handler = any(
        type(h) is logging.StreamHandler and h.stream is sys.stderr for h in logger.handlers
    )

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not has_file_handler:
        log_file = log_dir / f"treewatch-{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = FlushingHandler(
            log_file,
            when="midnight",
            interval=1,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.info(f"Logging to {log_file} (level {logging.getLevelName(level)})")

    if console and not has_console_handler:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """
    Get a treewatch logger instance.

    Args:
        name: Logger name (default: "treewatch")
    """
    return logging.getLogger(name)
