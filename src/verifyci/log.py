# log.py
from __future__ import annotations

import logging

from . import settings

_configured = False


def _ensure_base_logger() -> None:
    global _configured
    if _configured:
        return
    level = settings.LOG_LEVEL.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    _ensure_base_logger()
    return logging.getLogger(name)


def set_level(level: str | int) -> None:
    """Override the configured level (used by the CLI --debug flag)."""
    _ensure_base_logger()
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)
    logging.getLogger("verifyci").setLevel(level)
