"""structlog setup shared by the CLI and embedding applications."""

from __future__ import annotations

import logging
import sys

import structlog


def configure_logging(level: str = "info") -> None:
    """Install a filtering bound logger at the given level.

    Log lines go to stderr so command output on stdout stays machine-readable.
    """
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )
