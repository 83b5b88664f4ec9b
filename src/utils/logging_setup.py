"""Loguru sink configuration shared by the CLI entry points."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from loguru import logger

from src.utils.config import LoggingConfig

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)


def setup_logging(config: LoggingConfig | None = None, *, verbose: bool = False) -> None:
    """Replace the default sink with a stderr sink plus a rotating file sink."""
    config = config or LoggingConfig()
    level = "DEBUG" if verbose else os.getenv("CANON_LOG_LEVEL", config.level).upper()

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level)

    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            rotation=config.rotation,
            retention=config.retention,
            level="DEBUG",
        )
