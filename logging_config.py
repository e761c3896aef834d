"""
Logging configuration for the keeper CLI.

Usage:
    import logging_config
    logging_config.setup_logging(level="INFO", log_file="logs/keeper.log")
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "converter_keeper"


def setup_logging(level: Union[str, int] = logging.INFO, log_file: Optional[str] = None):
    """
    Configure console (and optional rotating file) logging.

    - Package loggers keep their own console handlers from ``get_logger`` and
      stop at the package logger, so lines are printed once
    - Third-party loggers go through the root console handler
    - Noisy HTTP client loggers are limited to warnings
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    # Root logger - minimal format
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(
        logging.Formatter(fmt="%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S")
    )
    root.addHandler(console)

    package = logging.getLogger(PACKAGE_LOGGER)
    package.setLevel(level)
    package.propagate = False
    package.handlers.clear()
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s")
        )
        package.addHandler(file_handler)
        root.addHandler(file_handler)

    # Module loggers created by get_logger carry their own level
    for name, logger in logging.Logger.manager.loggerDict.items():
        if name.startswith(PACKAGE_LOGGER + ".") and isinstance(logger, logging.Logger):
            logger.setLevel(level)

    # Suppress noisy loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def setup_minimal():
    """Only warnings and errors."""
    setup_logging(level=logging.WARNING)


def setup_debug():
    """Verbose logging, including web3 provider traffic."""
    setup_logging(level=logging.DEBUG)
    logging.getLogger("web3").setLevel(logging.DEBUG)
