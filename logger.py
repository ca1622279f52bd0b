"""Application-level logging utilities."""

import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv

# LOG_LEVEL / LOG_FILE may come from .env
load_dotenv()


def setup_logger(name: str = "dataset_bot", level: Optional[int] = None, log_file: Optional[str] = None) -> logging.Logger:
    """Return a configured logger instance writing to stdout (and LOG_FILE if set)."""
    if level is None:
        level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
        if not isinstance(level, int):
            level = logging.INFO
    if log_file is None:
        log_file = os.getenv("LOG_FILE") or None

    logger = logging.getLogger(name)
    logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.setLevel(level)
    logger.propagate = False

    return logger


LOGGER: logging.Logger = setup_logger()

__all__ = ["LOGGER", "setup_logger"]
