"""
Logging configuration for GhostBank.
"""

import logging
import sys
from typing import Union

LOG_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"


def setup_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """
    Route every ghostbank.* logger to stdout.

    Safe to call more than once (app restarts in tests); the handler is
    replaced, not duplicated.

    Args:
        level: Logging level or its name, e.g. "DEBUG"
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger("ghostbank")
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)

    # Own handler only; uvicorn configures the root logger separately
    logger.propagate = False
    return logger
