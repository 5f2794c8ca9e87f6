"""Logging configuration."""

import logging
import sys


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for sourcectl.

    Logs go to stderr, not mixed with CLI output (--json).

    Args:
        verbose: If True, log at DEBUG level; otherwise WARNING.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(name)s: %(levelname)s: %(threadName)s: %(message)s",
        stream=sys.stderr,
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (e.g., "provider")

    Returns:
        Logger instance
    """
    if name.startswith("sourcectl."):
        return logging.getLogger(name)
    return logging.getLogger(f"sourcectl.{name}")
