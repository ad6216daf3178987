import logging
import os
from typing import Optional


ROOT_LOGGER = "spreadscan"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a `spreadscan.<name>` logger with a single stream handler.

    The level is read from ``LOG_LEVEL`` on every call so tests and the CLI
    can change verbosity without reconfiguring handlers.
    """
    level_str = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_str, logging.INFO)

    full_name = f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER
    logger = logging.getLogger(full_name)
    if logger.handlers:
        logger.setLevel(level)
        return logger

    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
