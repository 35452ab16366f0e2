"""Centralized logging configuration for trello2planner."""

from __future__ import annotations

import logging
import sys

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure the ``trello2planner`` logger for an operator session.

    The console shows ``level`` and above. A migration can run for hours, so
    when ``log_file`` is given the file receives everything down to DEBUG
    (retries, per-card progress, worker thread names) regardless of the
    console level.

    Example:
        >>> setup_logging("WARNING", "migration.log")
    """
    console_level = LEVELS.get(level.upper(), logging.INFO)

    logger = logging.getLogger("trello2planner")
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(threadName)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(console_level)

    # Keep records away from the root logger's handlers
    logger.propagate = False
