"""Logging configuration for the ``finman`` package.

``configure_logging(...)`` attaches a console handler (and optionally an
operation-log file handler) to the package root logger ``"finman"``. The
entry point calls it once at startup.

``get_logger(name)`` is what library modules use. Until the package is
configured it keeps a ``NullHandler`` on the root logger so importing
``finman`` from other code stays silent.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import IO

_PKG_LOGGER_NAME = "finman"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv("FINMAN_LOG_LEVEL")
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level = level.strip().upper()
        if level.isdigit():
            return int(level)
        numeric = getattr(logging, level, None)
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
    log_file: str | Path | None = None,
) -> None:
    """Configure the package root logger exactly once.

    Parameters
    ----------
    level:
        Console level as ``int`` or level name. Defaults to the
        ``FINMAN_LOG_LEVEL`` environment variable, otherwise ``INFO``.
    fmt:
        Console format. Defaults to ``"%(levelname)s %(name)s: %(message)s"``.
    stream:
        Stream for the console handler.
    log_file:
        Optional path of the operation log. Every record at ``INFO`` or
        above is appended there with a timestamp. The parent directory is
        created when missing.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)

    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    console_level = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(console_level)
    handler.setFormatter(logging.Formatter(fmt or "%(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)

    root_level = console_level
    if log_file is not None:
        path = Path(log_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as e:
            logger.warning("Operation log disabled, cannot open %s: %s", path, e)
        else:
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(
                logging.Formatter("[%(asctime)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
            )
            logger.addHandler(file_handler)
            root_level = min(root_level, logging.INFO)

    logger.setLevel(root_level)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
