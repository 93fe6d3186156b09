"""Logging configuration for the treesnap command line."""

import logging

from rich.console import Console
from rich.logging import RichHandler

#diagnostics go to stderr so command output stays clean
console = Console(stderr=True)


def setup_logging(is_verbose=False):
    """
    Install a rich handler on the root logger.

    Args:
        is_verbose: log at DEBUG instead of WARNING

    """
    log_level = logging.DEBUG if is_verbose else logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicate logs if called multiple times
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.addHandler(RichHandler(
        level=log_level,
        console=console,
        rich_tracebacks=True,
        show_time=is_verbose,
        show_path=is_verbose,
    ))
