"""
Logging configuration for the forwarder
"""

import logging
import os
import sys

LOGGER_NAME = 'logdna_cloudtrail'


def setup_logging(level: str = None) -> logging.Logger:
    """
    Set up logging for both the Lambda runtime and the command line

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured forwarder logger
    """
    if level is None:
        level = os.environ.get('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, level, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )

    # Lambda installs its own handler on the root logger before our code runs
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers:
        handler.setLevel(log_level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)

    return logger


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance

    Args:
        name: Logger name (defaults to the package logger); module loggers
            passed as __name__ sit below it
    """
    if name is None:
        name = LOGGER_NAME

    return logging.getLogger(name)
