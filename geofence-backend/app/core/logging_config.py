"""
Logging configuration utilities.

Configures Python's logging module with the format used across the
service. Every area logs through a named logger (``geofences``, ``rules``,
``reports`` ...) so records can be filtered by component.
"""

import logging
import os
from typing import Optional


def setup_logging(level: Optional[int] = None, log_file: Optional[str] = None) -> None:
    """Configure root logger with a basic formatter.

    Parameters
    ----------
    level: Optional[int]
        Logging level (e.g. ``logging.INFO``). Defaults to ``LOG_LEVEL`` from
        the environment, falling back to INFO.
    log_file: Optional[str]
        Optional file path to log to. If provided, logs are also written to
        the specified file.
    """
    if level is None:
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
