"""
Package logger setup.

Modules log through `logging.getLogger(__name__)`; this module configures
the shared "cuarrays" parent logger once, from `CUARRAYS_LOG_LEVEL`:

- level set: a stderr `StreamHandler` with a compact format
- level unset: a `NullHandler`, so library use stays silent by default
"""

from __future__ import annotations

import logging
import sys

from ._config import get_config

LOGGER_NAME = "cuarrays"

_FORMAT = "== cuarrays [%(relativeCreated)d] %(levelname)5s -- %(name)s: %(message)s"


def make_logger() -> logging.Logger:
    """
    Configure and return the package logger.

    An application that already attached handlers to the "cuarrays" logger
    is left untouched.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    level_name = get_config().log_level
    if level_name:
        level = getattr(logging, level_name, None)
        if not isinstance(level, int):
            level = logging.WARNING
        logger.setLevel(level)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT))
        logger.addHandler(handler)
    else:
        logger.addHandler(logging.NullHandler())
    return logger
