"""Logging setup shared by the API process and the participant client."""
from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure root logging once and return the package logger."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    logger = logging.getLogger("callrelay")
    logger.debug("Logging initialised at %s", level.upper())
    return logger
