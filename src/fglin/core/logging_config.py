# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Logging helpers for fglin.

All modules log through ``get_logger(__name__)``, which places their loggers
under the ``fglin`` namespace. The library itself only installs a
``NullHandler``; applications (or tests) call ``configure_logging`` to get
console output and, optionally, a debug log file.
"""

from __future__ import annotations
import logging
from pathlib import Path

ROOT_LOGGER_NAME = "fglin"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

logging.getLogger(ROOT_LOGGER_NAME).addHandler(logging.NullHandler())


def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the ``fglin`` namespace."""
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def configure_logging(
    level: int = logging.INFO,
    log_file: str | Path | None = None,
) -> logging.Logger:
    """
    Attach handlers to the ``fglin`` root logger.

    Logs ``level`` and above to the console and, if ``log_file`` is given,
    everything down to DEBUG to that file. Calling it again replaces the
    handlers it installed before, so repeated configuration does not
    duplicate output.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    for handler in list(logger.handlers):
        if getattr(handler, "_fglin_handler", False):
            logger.removeHandler(handler)
            handler.close()

    logger.setLevel(logging.DEBUG if log_file is not None else level)

    # --- Console handler ---
    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    ch._fglin_handler = True
    logger.addHandler(ch)

    # --- File handler ---
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(FILE_FORMAT))
        fh._fglin_handler = True
        logger.addHandler(fh)

    return logger
