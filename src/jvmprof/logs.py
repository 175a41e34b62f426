"""Logging setup for jvmprof."""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "jvmprof"


def configure_logging(level: str = "WARNING", console: Console | None = None) -> logging.Logger:
    """
    Install a rich handler on the package logger.

    Args:
        level: Log level name.
        console: Console to write to. Defaults to stderr.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    logger.propagate = False
    return logger
