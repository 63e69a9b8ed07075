"""Logging configuration using structlog.

Three sinks, chosen at startup:

* a log file, when diagnostic mode is on (``PG_FANOUT_DEBUG`` or ``DEBUG``);
* stderr, with ``--verbose``;
* nothing at all otherwise, so the live status display owns the terminal.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import IO, Any

import structlog

DEFAULT_LOG_FILE = "debug.log"

_DEBUG_ENV_VARS = ("PG_FANOUT_DEBUG", "DEBUG")

_log_file: IO[str] | None = None


class _LazyStderrFactory:
    """Resolve sys.stderr at logger creation time, not at configure() time.

    PrintLoggerFactory(file=sys.stderr) captures the file handle once.
    Under CliRunner tests the captured handle becomes stale when stderr
    is closed between invocations.  This factory defers the lookup so
    each logger gets the *current* sys.stderr.
    """

    def __call__(self, *args: Any, **kwargs: Any) -> structlog.PrintLogger:
        return structlog.PrintLogger(file=sys.stderr)


def diagnostic_log_path() -> Path | None:
    """Return the diagnostic log file path if diagnostic mode is enabled."""
    if not any(os.environ.get(name) for name in _DEBUG_ENV_VARS):
        return None
    return Path(os.environ.get("PG_FANOUT_LOG_FILE", DEFAULT_LOG_FILE))


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Configure structlog for pg-fanout.

    Args:
        verbose: Log at DEBUG level to stderr.
        log_file: Append DEBUG-level lines to this file. Takes precedence
            over ``verbose``.
    """
    global _log_file
    close_log_file()

    logger_factory: Any
    if log_file is not None:
        _log_file = open(log_file, "a", encoding="utf-8")  # noqa: SIM115
        logger_factory = structlog.PrintLoggerFactory(file=_log_file)
        min_level = logging.DEBUG
        colors = False
    elif verbose:
        logger_factory = _LazyStderrFactory()
        min_level = logging.DEBUG
        colors = sys.stderr.isatty()
    else:
        # Rendered lines are returned to the caller and dropped.
        logger_factory = structlog.ReturnLoggerFactory()
        min_level = logging.CRITICAL
        colors = False

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=False,
    )


def close_log_file() -> None:
    global _log_file
    if _log_file is not None:
        _log_file.close()
        _log_file = None


def get_logger(name: str | None = None) -> Any:
    """Get a structlog logger, optionally bound with a name.

    IMPORTANT: Never call this at module level. Always call inside
    functions or __init__() after setup_logging() has been called.
    """
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger
