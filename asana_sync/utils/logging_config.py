"""
Logging configuration using structlog.

Inside GitHub Actions every log line is one JSON object on stdout, which the
workflow log viewer shows verbatim. Run locally from a terminal (for example
``asana-sync validate``) the output is rendered for humans instead.
"""

import os
import sys
from typing import Any

import structlog


def _use_console_renderer() -> bool:
    return os.environ.get("GITHUB_ACTIONS") != "true" and sys.stdout.isatty()


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog processors and the minimum level.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    renderer: Any = (
        structlog.dev.ConsoleRenderer() if _use_console_renderer() else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level.upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_event_context(event_name: str, action: str | None, number: int | None) -> None:
    """Attach the triggering event to every subsequent log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(event_name=event_name, event_action=action, number=number)


def get_logger(name: str | None = None) -> Any:
    """Get a logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("rules_loaded", count=3)
    """
    return structlog.get_logger(name)
