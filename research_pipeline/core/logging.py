"""Loguru configuration for the API process and scripts."""
from __future__ import annotations

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | {message}"
)


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default handler with the project console sink."""

    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
