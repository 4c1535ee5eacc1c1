"""Logging setup for the CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

NOISY_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer")


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """Configure root logging with a rich handler on stderr.

    Args:
        level: Logging level name
        verbose: Show paths and keep AWS SDK loggers at the requested level
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    logging.basicConfig(level=numeric_level, format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)

    if not verbose:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
