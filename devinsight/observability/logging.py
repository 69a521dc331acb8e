"""
Process-wide logging setup.

All devinsight loggers share one stderr handler on the root logger, so CLI
stdout carries only command output. The level comes from DEVINSIGHT_LOG_LEVEL
unless the CLI overrides it with --log-level.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Final

_HANDLER_ATTACHED: bool = False
_LEVEL_OVERRIDE: int | None = None
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_PACKAGE: Final[str] = "devinsight"


def _parse_level(name: str) -> int | None:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else None


def _resolve_level() -> int:
    if _LEVEL_OVERRIDE is not None:
        return _LEVEL_OVERRIDE
    return _parse_level(os.getenv("DEVINSIGHT_LOG_LEVEL", "INFO")) or logging.INFO


def _ensure_handler(level: int) -> None:
    global _HANDLER_ATTACHED

    root = logging.getLogger()
    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        _HANDLER_ATTACHED = True
    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger at the resolved level."""
    level = _resolve_level()
    _ensure_handler(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


def set_log_level(name: str | None) -> int:
    """
    Override the level for every devinsight logger; None reverts to the env.

    Raises:
        ValueError: unknown level name

    Returns:
        The level now in effect
    """
    global _LEVEL_OVERRIDE

    if name is None:
        _LEVEL_OVERRIDE = None
    else:
        parsed = _parse_level(name)
        if parsed is None:
            raise ValueError(f"unknown log level: {name!r}")
        _LEVEL_OVERRIDE = parsed

    level = _resolve_level()
    _ensure_handler(level)
    for logger_name, logger in logging.root.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and (
            logger_name == _PACKAGE or logger_name.startswith(f"{_PACKAGE}.")
        ):
            logger.setLevel(level)
    return level
