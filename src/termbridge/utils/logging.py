"""Logging setup utilities for termbridge."""

from __future__ import annotations

import logging
import sys

from termbridge.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure the ``termbridge`` logger.

    Adds a stderr handler and, when ``config.file`` is set, a file handler,
    both using ``config.format``. Calling it again replaces the handlers
    installed by a previous call.
    """
    if config is None:
        config = LoggingConfig()

    root_logger = logging.getLogger("termbridge")
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.debug("Logging initialized at %s level", config.level)
