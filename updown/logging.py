"""
Centralized structured logging configuration.
Import and call `setup_logging()` once at application startup.

Log lines go to stderr; stdout is left to the CLI's trade ticker.
"""

import logging
import sys

import structlog


def _parse_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    parsed = logging.getLevelName(level.upper())
    return parsed if isinstance(parsed, int) else logging.INFO


def setup_logging(level: int | str = logging.INFO, json_output: bool = False) -> None:
    """
    Configure structlog for the trading process.

    Args:
        level: Minimum log level, as a number (10=DEBUG, 20=INFO, 30=WARNING)
               or a level name ("DEBUG", "INFO", ...). Unknown names mean INFO.
        json_output: If True, emit machine-readable JSON logs (for production).
                     If False, emit human-readable colored console logs.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_parse_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )

    # httpx logs every request at INFO; keep it out of the trading log
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def bind_session(*, simulated: bool, market_duration: str) -> None:
    """Tag every later log line with the session's execution mode and window."""
    structlog.contextvars.bind_contextvars(
        mode="simulated" if simulated else "live",
        market_duration=market_duration,
    )
