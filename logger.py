"""Logging configuration for the API process."""

import logging
import sys

import settings


def setup_logging(level: str = None, name: str = "") -> logging.Logger:
    """Attach a stdout handler with the service format to the named logger.

    Calling it twice is harmless: a logger that already has handlers is
    returned unchanged.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = (level or settings.LOG_LEVEL).upper()
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    return logger
