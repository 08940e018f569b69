"""Logging configuration for the application."""

import logging
import sys
import os
from typing import Optional

import config

LOGGER_NAME = "GradeLab"

_logger: Optional[logging.Logger] = None


def _console_handler(formatter: logging.Formatter) -> logging.Handler:
    # stderr, so extracted text and JSON printed on stdout stay clean
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name("console")
    handler.setLevel(config.LOG_LEVEL)
    handler.setFormatter(formatter)
    return handler


def _file_handler(formatter: logging.Formatter) -> Optional[logging.Handler]:
    try:
        os.makedirs(os.path.dirname(config.LOG_FILE) or ".", exist_ok=True)
        handler = logging.FileHandler(config.LOG_FILE, mode='a', encoding='utf-8')
    except OSError as e:
        sys.stderr.write(f"Could not open log file {config.LOG_FILE}: {e}. Logging to console only.\n")
        return None
    handler.set_name("file")
    handler.setLevel(logging.DEBUG if config.DEBUG else logging.INFO)
    handler.setFormatter(formatter)
    return handler


def setup_logger() -> logging.Logger:
    """Sets up and returns the "GradeLab" application logger.

    Logs go to the console and to ``config.LOG_FILE``. Batch workers log from
    their own threads through the same logger.
    """
    global _logger
    if _logger:
        return _logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    if not logger.handlers:
        formatter = logging.Formatter(config.LOG_FORMAT)
        logger.addHandler(_console_handler(formatter))
        file_handler = _file_handler(formatter)
        if file_handler:
            logger.addHandler(file_handler)

    _logger = logger
    if config.DEBUG:
        logger.debug("Logger initialized in DEBUG mode.")
    return logger


def set_console_level(level: int) -> None:
    """Changes how much reaches the terminal; the log file keeps its level."""
    for handler in get_logger().handlers:
        if handler.get_name() == "console":
            handler.setLevel(level)


def get_logger() -> logging.Logger:
    """Returns the singleton logger instance, setting it up if necessary."""
    if _logger is None:
        return setup_logger()
    return _logger
