"""Logging configuration for plmDCA runs.

Example:
    from plmdca_logging.logging_config import setup_logging

    setup_logging(verbose=True)

    with VerboseLogging():
        ...  # one run with iteration output on stderr
"""

from __future__ import annotations

import logging
import sys
from typing import List, Optional, TextIO, Tuple

SIMPLE_FORMAT = "%(message)s"
VERBOSE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

LOGGER_PREFIX = "plmdca"


def setup_logging(verbose: bool = False, stream: Optional[TextIO] = None, detailed: bool = False) -> logging.Logger:
    """Route plmdca log records to stderr (or ``stream``).

    Replaces handlers installed by a previous call, so repeated runs do not
    duplicate output.

    Args:
        verbose: INFO level when True, WARNING otherwise.
        stream: Output stream; defaults to stderr.
        detailed: Prefix messages with time, level and logger name.
    """
    logger = logging.getLogger(LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.INFO if verbose else logging.WARNING)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT if detailed else SIMPLE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


class VerboseLogging:
    """Context manager for verbose output during one run.

    Example:
        with VerboseLogging():
            fun.run(n)
        # plmdca logger back to its previous handlers, level and propagation
    """

    def __init__(self, stream: Optional[TextIO] = None, detailed: bool = False) -> None:
        self.stream = stream
        self.detailed = detailed
        self._saved: Optional[Tuple[List[logging.Handler], int, bool]] = None

    def __enter__(self) -> logging.Logger:
        logger = logging.getLogger(LOGGER_PREFIX)
        self._saved = (list(logger.handlers), logger.level, logger.propagate)
        return setup_logging(verbose=True, stream=self.stream, detailed=self.detailed)

    def __exit__(self, *exc_info) -> None:
        assert self._saved is not None, "VerboseLogging exited without entering"
        handlers, level, propagate = self._saved
        logger = logging.getLogger(LOGGER_PREFIX)
        logger.handlers[:] = handlers
        logger.setLevel(level)
        logger.propagate = propagate
        self._saved = None
