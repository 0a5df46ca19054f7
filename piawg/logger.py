#!/usr/bin/env python3

import logging
import sys
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "piawg"

LOG_LEVELS = {
    5: logging.DEBUG,      # DEBUG
    4: logging.DEBUG,      # VARIABLES (Mapped to DEBUG)
    3: logging.INFO,       # INFO
    2: logging.INFO,       # SUCCESS (Mapped to INFO)
    1: logging.ERROR,      # ERROR
    0: logging.INFO,       # STATUS (Mapped to INFO)
}

CONSOLE_FORMAT = '%(message)s'
FILE_FORMAT = '%(asctime)s - %(levelname)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

logger = logging.getLogger(LOGGER_NAME)


class _StatusFilter(logging.Filter):
    """Lets STATUS (level 0) records through regardless of verbosity."""

    def __init__(self, threshold):
        super().__init__()
        self.threshold = threshold

    def filter(self, record):
        if getattr(record, 'status', False):
            return True
        return record.levelno >= self.threshold


def setup_logging(verbosity_level: int = 3, log_file: Optional[Union[str, Path]] = None):
    """Configures logging based on the provided verbosity level."""
    log_level = LOG_LEVELS.get(verbosity_level, logging.ERROR) # Default to ERROR

    # Drop handlers from a previous call so repeated setup does not double output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    console_handler.addFilter(_StatusFilter(log_level))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode='a')
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        file_handler.addFilter(_StatusFilter(log_level))
        logger.addHandler(file_handler)

    log_message(3, f"Logging initialized with verbosity level {verbosity_level} ({logging.getLevelName(log_level)}).")

    return log_message


def log_message(level, message):
    """Map the numeric verbosity levels onto logging calls."""
    actual_level = LOG_LEVELS.get(level)
    if actual_level is None:
        return
    if level == 4:
        logger.debug(f"(VARIABLES) {message}")
    elif level == 2:
        logger.info(f"(SUCCESS) {message}")
    elif level == 0:
        logger.info(f"(STATUS) {message}", extra={'status': True})
    else:
        logger.log(actual_level, message)
