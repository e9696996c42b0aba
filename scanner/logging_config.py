"""Logging configuration for the scanner."""

import logging

from rich.logging import RichHandler

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


def setup_logging(level: str = "info", verbose: bool = False) -> None:
    """Attach a Rich handler to the ``scanner`` logger.

    Args:
        level: one of the LOG_LEVEL values (debug, info, warn, error, fatal).
        verbose: force DEBUG and show timestamps and source paths.
    """
    logging.getLogger().setLevel(logging.WARNING)

    scanner_logger = logging.getLogger("scanner")
    scanner_logger.setLevel(logging.DEBUG if verbose else _LEVELS.get(level, logging.INFO))

    # Third-party noise
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    if not scanner_logger.handlers:
        handler = RichHandler(
            show_time=verbose,
            show_path=verbose,
            markup=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        scanner_logger.addHandler(handler)
        scanner_logger.propagate = False
