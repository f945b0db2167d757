"""Logging setup for the CLI."""

import logging

from rich.console import Console
from rich.logging import RichHandler

from cw.core.config import get_log_path, settings

LOG_FORMAT = "[%(asctime)s] %(levelname).3s: %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def level_for_verbosity(verbosity: int) -> int:
    """Map the number of ``-v`` flags to a logging level."""
    if verbosity <= 0:
        return logging.getLevelName(settings.log_level.upper())
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def setup_logging(verbosity: int = 0, log_path=None) -> logging.Logger:
    """Configure the ``cw`` logger.

    Records always go to the log file in the cache directory. With at least
    one ``-v`` they are mirrored to stderr.
    """
    logger = logging.getLogger("cw")
    logger.setLevel(level_for_verbosity(verbosity))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_path or get_log_path())
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(file_handler)

    if verbosity > 0:
        stderr_handler = RichHandler(
            console=Console(stderr=True), show_path=False, markup=False
        )
        logger.addHandler(stderr_handler)

    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)

    return logger
