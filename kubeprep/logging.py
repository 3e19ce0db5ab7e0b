"""Logging configuration for the kubeprep package."""
import logging
import sys

from .config import Config


class _BelowLevelFilter(logging.Filter):
    """Pass only records strictly below a level."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def setup_logging(debug_mode: bool = False, name: str = "kubeprep") -> logging.Logger:
    """
    Set up the package logger.

    Progress messages (below WARNING) go to stdout, diagnostics (WARNING and
    above) go to stderr, so an operator can separate the two streams.

    Args:
        debug_mode: Enable debug logging, including command output
        name: The name of the logger to configure

    Returns:
        Configured logger instance
    """
    level = logging.DEBUG if debug_mode else getattr(logging, Config.LOG_LEVEL, logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    # Rebind to the current streams on every call
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    formatter = logging.Formatter(Config.LOG_FORMAT, datefmt=Config.LOG_DATE_FORMAT)

    progress = logging.StreamHandler(sys.stdout)
    progress.addFilter(_BelowLevelFilter(logging.WARNING))
    progress.setFormatter(formatter)

    diagnostics = logging.StreamHandler(sys.stderr)
    diagnostics.setLevel(logging.WARNING)
    diagnostics.setFormatter(formatter)

    logger.addHandler(progress)
    logger.addHandler(diagnostics)

    # Disable debug logging for noisy libraries
    if not debug_mode:
        logging.getLogger('urllib3').setLevel(logging.WARNING)

    return logger
