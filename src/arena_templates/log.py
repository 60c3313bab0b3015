"""Structured logging for the template source engine."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any, TextIO

import structlog


if TYPE_CHECKING:
    from collections.abc import Sequence


LogLevel = int | str

LOGGER_PREFIX = "arena_templates"
# chatty at INFO, only shown when debugging
NOISY_LOGGERS: Sequence[str] = ("httpx", "httpcore", "asyncio")


def _to_level(level: LogLevel) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        msg = f"unknown log level {level!r}"
        raise ValueError(msg)
    return value


def _processors(render_json: bool, use_colors: bool) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if render_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=use_colors))
    return processors


def configure_logging(
    level: LogLevel = "INFO",
    *,
    use_colors: bool | None = None,
    json_logs: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Route structlog through standard logging.

    Args:
        level: Logging level, as name or number
        use_colors: Whether to use colored output (auto-detected if None)
        json_logs: Render JSON lines even on a terminal
        stream: Stream to log to, defaults to stderr
    """
    numeric = _to_level(level)
    stream = stream or sys.stderr
    logging.basicConfig(
        level=numeric,
        handlers=[logging.StreamHandler(stream)],
        force=True,
        format="%(message)s",  # rendered by structlog
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    is_tty = stream.isatty()
    if use_colors is None:
        use_colors = is_tty and not json_logs
    structlog.configure(
        processors=_processors(json_logs or not (use_colors or is_tty), use_colors),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _qualified_name(name: str) -> str:
    if name.startswith(LOGGER_PREFIX):
        return name
    return f"{LOGGER_PREFIX}.{name}"


def get_logger(name: str, log_level: LogLevel | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for the given name.

    Module names from any of the arena_templates* packages are used as-is,
    everything else gets prefixed with 'arena_templates.'.

    Args:
        name: The name of the logger
        log_level: The logging level to set for the logger

    Returns:
        A structlog BoundLogger instance
    """
    qualified = _qualified_name(name)
    if log_level is not None:
        logging.getLogger(qualified).setLevel(_to_level(log_level))
    return structlog.get_logger(qualified)
