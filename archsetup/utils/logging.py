"""
Logging configuration utilities.

This module provides functions for setting up and configuring logging.
"""
import logging
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(debug: bool = False, log_file: Optional[str] = None) -> None:
    """
    Configure logging for the application.

    Args:
        debug: Whether to enable debug logging
        log_file: Optional path of a file receiving a copy of every record
    """
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT
    )

    logger = logging.getLogger('archsetup')
    logger.setLevel(level)

    if log_file:
        try:
            handler = logging.FileHandler(log_file)
        except OSError as e:
            logger.warning(f"Cannot write log file {log_file}: {e}")
            return
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        # The file always gets the full command trace
        handler.setLevel(logging.DEBUG)
        logger.addHandler(handler)
        if not debug:
            logger.setLevel(logging.DEBUG)
            for root_handler in logging.getLogger().handlers:
                root_handler.setLevel(logging.INFO)
