"""Logging configuration for the helmsman command line."""

from __future__ import annotations

import logging
import os

CONSOLE_FORMAT = "%(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(verbose: bool = False, log_file: str | None = None) -> logging.Logger:
    """
    Configure console (stderr) and optional file logging for ``helmsman``.

    Args:
        verbose: DEBUG on the console instead of WARNING
        log_file: Path to a log file that receives everything at DEBUG

    Returns:
        The configured package logger
    """
    logger = logging.getLogger("helmsman")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
