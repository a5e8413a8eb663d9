import logging
import os

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["configure_logging"]

PACKAGE_LOGGER_NAME = "trajconserve"


def _resolve_log_level() -> str:
    return os.getenv(
        "TRAJCONSERVE_LOG_LEVEL",
        os.getenv("LOG_LEVEL", "INFO"),
    ).upper()


def configure_logging(logger_name: str = PACKAGE_LOGGER_NAME) -> logging.Logger:
    """
    Configure a rich logging handler on the package logger and return the
    logger for `logger_name`.

    Module loggers propagate to the package logger, which owns the only
    handler, so records are emitted once regardless of how many modules call
    this function.

    Args:
        logger_name (str): Name of the logger, usually `__name__`.

    Returns:
        logging.Logger: The configured logger.

    Examples:
        >>> logger = configure_logging("trajconserve.example")
        >>> logger.name
        'trajconserve.example'
    """
    log_level = _resolve_log_level()

    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    if not any(isinstance(h, RichHandler) for h in package_logger.handlers):
        console = Console(stderr=True)
        handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s %(message)s"))
        package_logger.addHandler(handler)
    package_logger.setLevel(log_level)

    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level)
    return logger
