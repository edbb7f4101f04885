"""
Logging Utilities

This module sets up logging for the project and maps the command line
verbosity names onto standard logging levels.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER_PREFIX = "pointcloud_registration"

# Verbosity names accepted on the command line
VERBOSE_LEVELS = {
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}


def setup_logger(name: str,
                 level: int = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path. If provided, logs will be written to this file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    console_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger


def parse_level(level: Union[str, int]) -> int:
    """
    Convert a verbosity name ('trace', 'warning', 'INFO', ...) or a numeric
    level into a logging level.
    """
    if isinstance(level, int):
        return level
    key = level.strip().lower()
    if key in VERBOSE_LEVELS:
        return VERBOSE_LEVELS[key]
    raise ValueError(
        f"Unknown verbosity level '{level}' (expected one of: {', '.join(VERBOSE_LEVELS)})"
    )


def set_log_level(level: Union[str, int], log_file: Optional[str] = None) -> None:
    """
    Apply a level to every logger of the package that was already created.

    Module loggers are created at import time with the default level, so the CLI
    calls this once the verbosity is known.

    Args:
        level: Verbosity name or logging level
        log_file: Optional log file, attached once to the package root logger;
            module loggers reach it through propagation
    """
    numeric = parse_level(level)
    package_logger = logging.getLogger(PACKAGE_LOGGER_PREFIX)
    names = [
        n for n in logging.root.manager.loggerDict
        if n.startswith(PACKAGE_LOGGER_PREFIX + ".")
    ]
    for logger in [package_logger] + [logging.getLogger(n) for n in names]:
        logger.setLevel(numeric)
        for handler in logger.handlers:
            handler.setLevel(numeric)

    if log_file and not any(isinstance(h, logging.FileHandler) for h in package_logger.handlers):
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        package_logger.addHandler(file_handler)
