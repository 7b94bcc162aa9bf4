"""Runtime logging helpers."""

from __future__ import annotations

import os
import sys

from loguru import logger

LOG_FORMAT = "{time:HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {message}"
DEFAULT_LOG_LEVEL = "WARNING"
_CONFIGURED = False


def configure_logging(level: str | None = None) -> None:
    """Configure process-level logging once."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    resolved = (level or os.getenv("FOOL_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
    logger.remove()
    logger.add(
        sys.stderr,
        level=resolved,
        format=LOG_FORMAT,
        backtrace=False,
        diagnose=False,
    )
    _CONFIGURED = True
