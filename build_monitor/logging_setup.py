from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog


_log_stream: TextIO | None = None


def _to_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = getattr(logging, str(level).upper(), None)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: str | int = "INFO", log_file: str | None = None) -> None:
    """
    Configure structlog for the monitor.

    stdout belongs to the dashboard, so logs go to stderr unless a log file is given.
    """
    global _log_stream

    lvl = _to_level(level)
    if _log_stream is not None:
        _log_stream.close()
        _log_stream = None

    if log_file:
        _log_stream = open(log_file, "a", encoding="utf-8")
        stream: TextIO = _log_stream
        colors = False
    else:
        stream = sys.stderr
        colors = stream.isatty()

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )

    # httpx logs every request at INFO; keep it out of the dashboard log.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def shutdown_logging() -> None:
    global _log_stream
    structlog.reset_defaults()
    if _log_stream is not None:
        _log_stream.close()
        _log_stream = None
